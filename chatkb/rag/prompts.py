"""Prompt construction for LLM Q&A extraction.

Content is classified into a closed set of types; each type carries its
own instructions and example questions. Prompt strategies combine prompt
building with a post-filter and are chosen when the extractor is built.
"""

from enum import Enum
import logging
from typing import Protocol

from chatkb.models import QAPair

logger = logging.getLogger(__name__)

BUSINESS_KEYWORDS = (
    "עסק", "חברה", "משרד", "שירות", "לקוחות", "מחיר", "תשלום", "הזמנה",
    "פתיחה", "סגירה", "טלפון", "כתובת", "סניף", "משלוח", "מנהל", "בעלים",
)

EDUCATIONAL_KEYWORDS = (
    "מחקר", "עובדות", "מידע", "הסבר", "תופעה", "מאפיינים", "מושג", "הגדרה",
    "תהליך", "מבנה", "פונקציה", "סיבה", "השפעה", "דוגמא", "למשל", "כלומר",
)

# Question terms that only make sense for a business.
BUSINESS_QUESTION_TERMS = (
    "שעות פעילות", "שעות פתיחה", "שירותים", "מחיר", "עלות", "תשלום",
    "הזמנה", "טלפון", "כתובת", "איך מגיעים", "משלוח", "מנהל", "בעלים",
)

DOMINANCE_RATIO = 1.5
MIXED_FLOOR = 2

JSON_REQUIREMENTS = """דרישות:
- החזר JSON תקין: [{"question": "שאלה", "answer": "תשובה"}]
- השתמש רק במידע שמופיע בטקסט
- ענה בעברית בלבד"""

BASIC_SYSTEM_PROMPT = (
    "אתה עוזר מומחה שמחלץ שאלות ותשובות רלוונטיות מטקסט עסקי בעברית. "
    "החזר תמיד JSON תקין בפורמט מערך של אובייקטים. "
    "אל תמציא מידע ואל תכלול שאלות ללא תשובה ברורה בטקסט."
)

ADAPTIVE_SYSTEM_PROMPT = """אתה עוזר מומחה שמחלץ שאלות ותשובות רלוונטיות מטקסט בעברית.
אתה מזהה את סוג התוכן ויוצר שאלות מתאימות:
- תוכן עסקי: שאלות על שירותים, מחירים, קשר
- תוכן מידעי/עיוני: שאלות על עובדות, הסברים, מאפיינים
- אל תערבב בין הסוגים!
החזר תמיד JSON תקין בפורמט מערך של אובייקטים."""


class ContentType(Enum):
    """Kind of content a document holds, with its prompt template."""

    BUSINESS = (
        "business",
        "נתח את הטקסט הבא והפק שאלות ותשובות שימושיות ללקוח פוטנציאלי של העסק.",
        """דוגמאות לשאלות מתאימות:
- מה הכתובת?
- מהן שעות הפעילות?
- איך ניתן ליצור קשר?
- אילו שירותים מוצעים?
- מהם המחירים?""",
    )
    EDUCATIONAL = (
        "educational",
        "נתח את הטקסט הבא והפק שאלות ותשובות שימושיות למי שרוצה ללמוד על הנושא.",
        """דוגמאות לשאלות מתאימות:
- מה המאפיינים העיקריים?
- איך זה עובד?
- מה ההבדל בין...?
- מדוע קורה...?
- איפה ניתן למצוא...?
- מהי ההשפעה של...?""",
    )
    INFORMATIONAL = (
        "informational",
        "נתח את הטקסט הבא והפק שאלות ותשובות שימושיות למי שמחפש מידע על הנושא.",
        """דוגמאות לשאלות מתאימות:
- מה זה...?
- איך...?
- מתי...?
- איפה...?
- למה...?
- כמה...?""",
    )
    MIXED = (
        "mixed",
        "נתח את הטקסט הבא והפק שאלות ותשובות מתאימות לסוג התוכן (עסקי או מידעי).",
        """התאם את השאלות לתוכן:
- עבור מידע עסקי: כתובת, טלפון, שעות, מחירים
- עבור מידע כללי: הסברים, מאפיינים, עובדות""",
    )

    def __init__(self, label: str, instructions: str, examples: str) -> None:
        self.label = label
        self.instructions = instructions
        self.examples = examples

    @property
    def excludes_business_questions(self) -> bool:
        return self in (ContentType.EDUCATIONAL, ContentType.INFORMATIONAL)

    def build_prompt(self, chunk: str, chunk_index: int, total_chunks: int) -> str:
        return f"""{self.instructions}

{self.examples}

{JSON_REQUIREMENTS}
- אל תכלול שאלות ללא תשובה ברורה
- **אל תיצור שאלות עסקיות (כמו "שעות פעילות" או "שירותים") לתוכן מידעי/עיוני**
- התמקד בשאלות שרלוונטיות לסוג התוכן

קטע {chunk_index}/{total_chunks}:
---
{chunk}
---

JSON:"""


def detect_content_type(text: str) -> ContentType:
    """Classify text by counting which domain keywords it contains.

    A category wins when its score exceeds the other by the dominance
    ratio; otherwise text scoring above the floor on both is mixed, and
    anything else is informational.
    """
    business = sum(1 for keyword in BUSINESS_KEYWORDS if keyword in text)
    educational = sum(1 for keyword in EDUCATIONAL_KEYWORDS if keyword in text)

    if business > educational * DOMINANCE_RATIO:
        return ContentType.BUSINESS
    if educational > business * DOMINANCE_RATIO:
        return ContentType.EDUCATIONAL
    if business > MIXED_FLOOR and educational > MIXED_FLOOR:
        return ContentType.MIXED
    return ContentType.INFORMATIONAL


def is_business_question(question: str) -> bool:
    lowered = question.lower()
    return any(term in lowered for term in BUSINESS_QUESTION_TERMS)


class PromptStrategy(Protocol):
    """Prompt building and post-filtering used by the extractor."""

    system_prompt: str

    def build_prompt(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        content_type: ContentType,
    ) -> str: ...

    def post_filter(
        self, qas: list[QAPair], content_type: ContentType
    ) -> list[QAPair]: ...


class BasicPromptStrategy:
    """Single business-oriented prompt with no post-filtering."""

    system_prompt = BASIC_SYSTEM_PROMPT

    def build_prompt(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        content_type: ContentType,
    ) -> str:
        return f"""נתח את הטקסט הבא והפק שאלות ותשובות שימושיות ללקוח פוטנציאלי.

{JSON_REQUIREMENTS}
- התמקד בשאלות פרקטיות (כתובת, טלפון, שעות, שירותים)
- אל תכלול שאלות ללא תשובה ברורה

קטע {chunk_index}/{total_chunks}:
---
{chunk}
---

JSON:"""

    def post_filter(
        self, qas: list[QAPair], content_type: ContentType
    ) -> list[QAPair]:
        return qas


class AdaptivePromptStrategy:
    """Content-type aware prompts that drop business questions from
    educational and informational content."""

    system_prompt = ADAPTIVE_SYSTEM_PROMPT

    def build_prompt(
        self,
        chunk: str,
        chunk_index: int,
        total_chunks: int,
        content_type: ContentType,
    ) -> str:
        return content_type.build_prompt(chunk, chunk_index, total_chunks)

    def post_filter(
        self, qas: list[QAPair], content_type: ContentType
    ) -> list[QAPair]:
        if not content_type.excludes_business_questions:
            return qas
        kept = [qa for qa in qas if not is_business_question(qa.question)]
        if len(kept) != len(qas):
            logger.info(
                f"Filtered {len(qas) - len(kept)} business questions from "
                f"{content_type.label} content"
            )
        return kept
