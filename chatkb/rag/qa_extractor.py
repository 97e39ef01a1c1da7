"""Q&A extraction combining pattern rules and an LLM.

Long text is split into windows that are sent to the completion provider
one at a time, with a pause between windows. Each window is retried with
back-off; a window that keeps failing contributes nothing and is counted
as an error, so one bad window never aborts the whole document.
"""

import json
import logging
import re
import time
from typing import Callable

from chatkb.config import ExtractionConfig
from chatkb.models import ExtractionResult, ExtractionStats, QAPair
from chatkb.rag.chunker import split_for_extraction
from chatkb.rag.dedup import deduplicate_qas
from chatkb.rag.generator import Completer, is_rate_limited
from chatkb.rag.pattern_extractor import extract_with_regex
from chatkb.rag.prompts import (
    AdaptivePromptStrategy,
    ContentType,
    PromptStrategy,
    detect_content_type,
)

logger = logging.getLogger(__name__)

LLM_CONFIDENCE = 0.7
MAX_BACKOFF_MS = 10_000

_ESCAPED_MARKDOWN = re.compile(r"\\([*_~`])")


def clean_markdown(text: str) -> str:
    """Unescape markdown characters the model escaped (\\*, \\_, \\~, \\`)."""
    return _ESCAPED_MARKDOWN.sub(r"\1", text)


def backoff_ms(attempt: int) -> int:
    return min(1000 * 2 ** (attempt - 1), MAX_BACKOFF_MS)


def parse_response(raw: str, chunk_index: int = 0) -> list[QAPair]:
    """Parse a completion into Q&A pairs.

    The JSON array is taken from the first '[' to the last ']' so prose
    around it is ignored. Any parse failure yields an empty list.
    """
    text = raw.replace("\\[", "[").replace("\\]", "]")
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        logger.warning(f"No JSON array found in response for chunk {chunk_index}")
        return []

    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        logger.warning(
            f"JSON parsing failed for chunk {chunk_index}: {e}; "
            f"response preview: {raw[:200]!r}"
        )
        return []

    if not isinstance(parsed, list):
        logger.warning(f"Parsed JSON is not an array for chunk {chunk_index}")
        return []

    qas: list[QAPair] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        question = item.get("question")
        answer = item.get("answer")
        if not isinstance(question, str) or not isinstance(answer, str):
            continue
        question = clean_markdown(question.strip())
        answer = clean_markdown(answer.strip())
        if question and answer:
            qas.append(
                QAPair(
                    question=question,
                    answer=answer,
                    source="llm",
                    confidence=LLM_CONFIDENCE,
                )
            )
    return qas


class QAExtractor:
    """Extracts Q&A pairs from document text.

    Args:
        completer: Completion provider; when None, LLM extraction is skipped.
        strategy: Prompt building and post-filtering; adaptive by default.
        sleep: Sleep function taking seconds, injectable for tests.
    """

    def __init__(
        self,
        completer: Completer | None = None,
        strategy: PromptStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.completer = completer
        self.strategy = strategy or AdaptivePromptStrategy()
        self.sleep = sleep

    def _pause(self, ms: int) -> None:
        if ms > 0:
            self.sleep(ms / 1000)

    def _process_chunk(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        content_type: ContentType,
        config: ExtractionConfig,
    ) -> list[QAPair]:
        prompt = self.strategy.build_prompt(
            chunk, chunk_index, total_chunks, content_type
        )
        raw = self.completer.complete(
            self.strategy.system_prompt,
            prompt,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        return parse_response(raw, chunk_index)

    def _process_chunk_with_retry(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        content_type: ContentType,
        config: ExtractionConfig,
        stats: ExtractionStats,
    ) -> list[QAPair]:
        attempts = max(1, config.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return self._process_chunk(
                    chunk, chunk_index, total_chunks, content_type, config
                )
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt}/{attempts} failed for chunk {chunk_index}: {e}"
                )
                if attempt == attempts:
                    break
                if is_rate_limited(e):
                    logger.info(
                        f"Rate limit hit. Waiting {config.rate_limit_delay_ms}ms..."
                    )
                    self._pause(config.rate_limit_delay_ms)
                else:
                    self._pause(backoff_ms(attempt))

        stats.errors += 1
        logger.error(f"All retry attempts failed for chunk {chunk_index}")
        return []

    def _extract_with_llm(
        self,
        text: str,
        content_type: ContentType,
        config: ExtractionConfig,
        stats: ExtractionStats,
    ) -> list[QAPair]:
        chunks = split_for_extraction(text, config.max_chunk_size)
        logger.info(
            f"Processing {len(chunks)} chunks with LLM ({content_type.label} content)"
        )

        qas: list[QAPair] = []
        for i, chunk in enumerate(chunks):
            qas.extend(
                self._process_chunk_with_retry(
                    chunk, i + 1, len(chunks), content_type, config, stats
                )
            )
            stats.chunks_processed += 1
            if i < len(chunks) - 1:
                self._pause(config.chunk_delay_ms)
        return qas

    def extract(
        self, text: str, config: ExtractionConfig | None = None
    ) -> ExtractionResult:
        """Extract Q&A pairs from text.

        Args:
            text: Raw document text.
            config: Extraction options; defaults apply when omitted.

        Returns:
            De-duplicated pairs (pattern pairs first) and run statistics.
        """
        config = config or ExtractionConfig()
        stats = ExtractionStats()
        start = time.monotonic()
        logger.info(
            f"Starting extraction (regex: {config.use_regex}, LLM: {config.use_llm})"
        )

        qas: list[QAPair] = []
        if config.use_regex:
            regex_qas = extract_with_regex(text)
            stats.regex_qas = len(regex_qas)
            qas.extend(regex_qas)
            logger.info(f"Extracted {len(regex_qas)} QAs using regex")

        content_type: ContentType | None = None
        if config.use_llm:
            if self.completer is None:
                logger.warning("LLM extraction requested but no completer configured")
            elif text.strip():
                content_type = detect_content_type(text)
                qas.extend(self._extract_with_llm(text, content_type, config, stats))

        qas = deduplicate_qas(qas)
        if content_type is not None:
            qas = self.strategy.post_filter(qas, content_type)

        stats.llm_qas = sum(1 for qa in qas if qa.source == "llm")
        stats.total_qas = len(qas)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Extraction completed in {elapsed_ms}ms. Total QAs: {stats.total_qas}"
        )
        return ExtractionResult(qas=qas, stats=stats)
