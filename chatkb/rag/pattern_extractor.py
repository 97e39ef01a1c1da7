"""Deterministic Q&A extraction from business text.

This module holds an ordered table of named regular-expression rules that
pull contact details, opening hours, services and branch listings out of
raw Hebrew business text. It makes no external calls, so the same input
always yields the same pairs in the same order.
"""

from dataclasses import dataclass, field
import logging
import re

from chatkb.models import QAPair

logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.8
BRANCH_CONFIDENCE = 0.9


@dataclass(frozen=True)
class PatternRule:
    """A named extraction rule.

    Attributes:
        name: Rule identifier.
        pattern: Compiled pattern whose first group captures the answer.
        questions: Questions emitted for every captured answer.
    """

    name: str
    pattern: re.Pattern
    questions: tuple[str, ...] = field(default_factory=tuple)


def _rule(name: str, pattern: str, *questions: str) -> PatternRule:
    return PatternRule(name, re.compile(pattern, re.IGNORECASE), tuple(questions))


PATTERN_RULES: tuple[PatternRule, ...] = (
    # Contact information
    _rule("address", r"כתובת[:\s]+([^\n]+)", "מה הכתובת?"),
    _rule("phone", r"טל(?:פון)?[׳']?[:\s]+([0-9\-\s()]+)", "מה הטלפון?"),
    _rule("fax", r"פקס[:\s]+([0-9\-\s()]+)", "מה מספר הפקס?"),
    _rule("whatsapp", r"וואטסאפ[:\s]+([0-9\-\s()]+)", "מה מספר הוואטסאפ?"),
    _rule(
        "email",
        r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})",
        "מה כתובת המייל?",
    ),
    _rule(
        "website",
        r"(https?://[\w.-]+\.[a-z]{2,}(?:/[\w\-/?=&#%]*)?)",
        "מה האתר של העסק?",
    ),
    # Hours and operations
    _rule("hours", r"שעות פתיחה[:\s]+([^\n]+)", "מהן שעות הפתיחה?"),
    _rule("delivery_areas", r"אזור(?:י)? משלוח[:\s]+([^\n]+)", "לאן ניתן להזמין משלוח?"),
    _rule("service_area", r"אזור(?:י)? שירות[:\s]+([^\n]+)", "מהו אזור השירות?"),
    # Business details
    _rule(
        "manager",
        r"(?:מנהל|בעלים|בעל העסק)[:\s]+([^\n]+)",
        "מי המנהל?",
        "מי הבעלים?",
    ),
    _rule(
        "business_number",
        r"(?:מספר עסק|מספר רישיון|רישיון עסק)[:\s]+(\w+)",
        "מה מספר העסק?",
        "מה מספר הרישיון?",
    ),
    _rule("founded", r"(?:שנת ייסוד|נוסד בשנת|הוקם בשנת)[:\s]*(\d{4})", "מתי נוסד העסק?"),
    _rule("branch_count", r"(?:מספר סניפים|כמות סניפים)[:\s]+(\d+)", "כמה סניפים יש לעסק?"),
    # Services and features
    _rule(
        "payment",
        r"(?:אמצעי|אפשרויות) תשלום[:\s]+([^\n]+)",
        "באילו אמצעי תשלום ניתן לשלם?",
    ),
    _rule("kosher", r"כשרות[:\s]+([^\n]+)", "האם המקום כשר?"),
    _rule("vegan", r"(?:טבעוני|צמחוני)[:\s]+([^\n]+)", "האם יש מנות טבעוניות/צמחוניות?"),
    _rule("parking", r"חניה[:\s]+([^\n]+)", "האם יש חניה?"),
    _rule("accessibility", r"נגישות[:\s]+([^\n]+)", "האם המקום נגיש?"),
    _rule("wifi", r"WiFi[:\s]+([^\n]+)", "האם יש WiFi?"),
    _rule(
        "reservation",
        r"(?:הזמנה מראש|הזמנות מראש)[:\s]+([^\n]+)",
        "האם צריך להזמין מקום מראש?",
    ),
    _rule("menu", r"תפריט(?:ים)?[:\s]*([^\n]+)", "האם יש תפריט?"),
    _rule(
        "loyalty_club",
        r"(?:מועדון לקוחות|מועדון חברים)[:\s]+([^\n]+)",
        "האם יש מועדון לקוחות?",
    ),
    _rule("app", r"אפליקציה[:\s]+([^\n]+)", "האם יש אפליקציה?"),
    _rule("languages", r"שפות[:\s]+([^\n]+)", "באילו שפות ניתן לקבל שירות?"),
    # General information
    _rule("about", r"(?:אודות|על העסק|מי אנחנו)[:\s]+([^\n]+)", "ספר לי על העסק."),
    _rule("reviews", r"ביקורות[:\s]+([^\n]+)", "מה חושבים על המקום?"),
    _rule("open_date", r"(?:נוסד|נפתח|הוקם)[:\s]+([^\n]+)", "מתי נפתח העסק?"),
    _rule("close_date", r"(?:נסגר|סגור)[:\s]+([^\n]+)", "מתי נסגר העסק?"),
)

# One record per line: "<brand> <location> <address>". Any line of three or
# more words matches, so plain prose also yields a branch pair; the pattern
# extractor does not try to tell listings from sentences.
BRANCH_LINE_PATTERN = re.compile(
    r"^( -  \S+|[\u0590-\u05FF\w]+)[ \t]+([\u0590-\u05FF\w]+)[ \t]+([\u0590-\u05FF\w \t\d\-,]+)",
    re.MULTILINE,
)

# Brand names that are commonly referred to with a category prefix.
BRAND_SYNONYM_PREFIX = "שווארמה"


def extract_branches(text: str) -> list[QAPair]:
    """Detect branch listings and emit one Q&A pair per brand-name variant."""
    brand_name = ""
    branches: list[str] = []
    for match in BRANCH_LINE_PATTERN.finditer(text):
        if not brand_name:
            brand_name = match.group(1).strip()
        branches.append(f"{match.group(2).strip()}: {match.group(3).strip()}")

    if not branches or not brand_name:
        return []

    variants = [brand_name]
    if BRAND_SYNONYM_PREFIX not in brand_name:
        variants.append(f"{BRAND_SYNONYM_PREFIX} {brand_name}")

    answer = "; ".join(branches)
    return [
        QAPair(
            question=f"מה הם הסניפים של {variant}?",
            answer=answer,
            source="regex",
            confidence=BRANCH_CONFIDENCE,
        )
        for variant in variants
    ]


def _apply_rule(text: str, rule: PatternRule) -> list[QAPair]:
    qas: list[QAPair] = []
    for match in rule.pattern.finditer(text):
        answer = (match.group(1) or "").strip()
        if not answer:
            continue
        for question in rule.questions:
            qas.append(
                QAPair(
                    question=question,
                    answer=answer,
                    source="regex",
                    confidence=RULE_CONFIDENCE,
                )
            )
    return qas


def extract_with_regex(text: str) -> list[QAPair]:
    """Extract Q&A pairs using the branch detector and the rule table.

    Args:
        text: Raw document text.

    Returns:
        Q&A pairs in rule order: branch pairs first, then each rule's
        matches in text order.
    """
    if not text:
        return []
    qas = extract_branches(text)
    for rule in PATTERN_RULES:
        qas.extend(_apply_rule(text, rule))
    logger.debug(f"Pattern extraction produced {len(qas)} QAs")
    return qas
