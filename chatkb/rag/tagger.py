"""Classification tags for document chunks."""

import logging
import re

from chatkb.rag.generator import Completer

logger = logging.getLogger(__name__)

FALLBACK_TAGS = ["general", "uncategorized"]
MIN_TAGS = 3
MAX_TAGS = 5
MAX_TAG_WORDS = 3
TAG_INPUT_CHARS = 2000

TAGGER_SYSTEM_PROMPT = "You are a helpful assistant that classifies business content."


def normalize_tag(tag: str) -> str:
    """Lowercase a tag, hyphenate spaces, drop other characters and keep
    at most three words."""
    tag = re.sub(r"\s+", "-", tag.strip().lower())
    tag = re.sub(r"[^a-z0-9\-_]", "", tag)
    return "-".join(tag.split("-")[:MAX_TAG_WORDS])


def parse_tags(raw: str) -> list[str]:
    raw = re.sub(r"tags\s*[:：]", "", raw, flags=re.IGNORECASE)
    tags = [normalize_tag(part) for part in raw.split(",")]
    return list(dict.fromkeys(tag for tag in tags if tag))


def classify_tags(completer: Completer, text: str) -> list[str]:
    """Ask the completion provider for 3-5 English classification tags.

    Falls back to generic tags when the call fails or the answer does not
    hold a usable tag list.
    """
    prompt = (
        "Analyze this content and return 3-5 concise classification tags in English.\n"
        f'Content:\n"""{text[:TAG_INPUT_CHARS]}"""\nTags (comma separated):'
    )
    try:
        raw = completer.complete(
            TAGGER_SYSTEM_PROMPT, prompt, temperature=0.2, max_tokens=50
        )
    except Exception as e:
        logger.error(f"Error classifying tags: {e}")
        return list(FALLBACK_TAGS)

    tags = parse_tags(raw)
    if not MIN_TAGS <= len(tags) <= MAX_TAGS:
        logger.warning(f"Invalid tags from classifier: {raw!r} -> {tags}")
        return list(FALLBACK_TAGS)
    return tags
