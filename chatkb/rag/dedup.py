"""Exact-match de-duplication of extracted Q&A pairs."""

from chatkb.models import QAPair


def qa_key(qa: QAPair) -> str:
    return f"{qa.question}|{qa.answer}"


def deduplicate_qas(qas: list[QAPair]) -> list[QAPair]:
    """Drop repeated question/answer pairs, keeping the first occurrence.

    Only exact string matches are merged; differently phrased questions
    with the same answer are kept.
    """
    seen: set[str] = set()
    unique: list[QAPair] = []
    for qa in qas:
        key = qa_key(qa)
        if key in seen:
            continue
        seen.add(key)
        unique.append(qa)
    return unique
