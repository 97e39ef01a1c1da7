"""Tests for the rule-based Q&A extractor."""

from chatkb.rag.pattern_extractor import (
    BRANCH_CONFIDENCE,
    PATTERN_RULES,
    RULE_CONFIDENCE,
    extract_branches,
    extract_with_regex,
)


SAMPLE_BUSINESS_TEXT = """כתובת: רחוב הרצל 1
טלפון: 03-1234567
שעות פתיחה: א-ה 9:00-18:00
מנהל: דני כהן
כשרות: בד"ץ
info@example.com"""


class TestExtractWithRegex:
    """Tests for extract_with_regex."""

    def test_address_and_phone(self) -> None:
        qas = extract_with_regex("כתובת: רחוב הרצל 1\nטלפון: 03-1234567")
        assert [(qa.question, qa.answer) for qa in qas] == [
            ("מה הכתובת?", "רחוב הרצל 1"),
            ("מה הטלפון?", "03-1234567"),
        ]
        assert all(qa.source == "regex" for qa in qas)
        assert all(qa.confidence == RULE_CONFIDENCE for qa in qas)

    def test_short_phone_prefix(self) -> None:
        qas = extract_with_regex("טל' 04-5551234")
        assert [(qa.question, qa.answer) for qa in qas] == [
            ("מה הטלפון?", "04-5551234")
        ]

    def test_is_deterministic(self) -> None:
        first = extract_with_regex(SAMPLE_BUSINESS_TEXT)
        second = extract_with_regex(SAMPLE_BUSINESS_TEXT)
        assert first == second
        assert len(first) > 0

    def test_multi_question_rule_emits_one_pair_per_question(self) -> None:
        qas = extract_with_regex("מנהל: דני כהן")
        assert [(qa.question, qa.answer) for qa in qas] == [
            ("מי המנהל?", "דני כהן"),
            ("מי הבעלים?", "דני כהן"),
        ]

    def test_whitespace_only_capture_is_discarded(self) -> None:
        assert extract_with_regex("פקס:   ") == []

    def test_email_and_website(self) -> None:
        qas = extract_with_regex(
            "צור קשר: info@example.com\nאתר: https://example.co.il/about"
        )
        assert [(qa.question, qa.answer) for qa in qas] == [
            ("מה כתובת המייל?", "info@example.com"),
            ("מה האתר של העסק?", "https://example.co.il/about"),
        ]

    def test_answers_are_trimmed(self) -> None:
        qas = extract_with_regex("כשרות:    בד\"ץ   ")
        assert qas[0].answer == 'בד"ץ'

    def test_empty_text(self) -> None:
        assert extract_with_regex("") == []

    def test_rule_names_are_unique(self) -> None:
        names = [rule.name for rule in PATTERN_RULES]
        assert len(names) == len(set(names))


class TestExtractBranches:
    """Tests for branch listing detection."""

    def test_branch_listing_with_synonym_variant(self) -> None:
        qas = extract_branches("פלאפל חיפה הרצל 5\nפלאפל ירושלים יפו 20")
        assert [qa.question for qa in qas] == [
            "מה הם הסניפים של פלאפל?",
            "מה הם הסניפים של שווארמה פלאפל?",
        ]
        assert all(qa.answer == "חיפה: הרצל 5; ירושלים: יפו 20" for qa in qas)
        assert all(qa.confidence == BRANCH_CONFIDENCE for qa in qas)

    def test_brand_with_category_has_single_variant(self) -> None:
        qas = extract_branches("שווארמה חיפה הרצל 5")
        assert [qa.question for qa in qas] == ["מה הם הסניפים של שווארמה?"]

    def test_branches_come_first(self) -> None:
        qas = extract_with_regex("פלאפל חיפה הרצל 5\nכתובת: רחוב יפו 3")
        assert qas[0].question.startswith("מה הם הסניפים")
        assert qas[-1].question == "מה הכתובת?"

    def test_labelled_lines_are_not_branches(self) -> None:
        assert extract_branches("כתובת: רחוב הרצל 1\nטלפון: 03-1234567") == []

    def test_prose_lines_are_read_as_branch_records(self) -> None:
        qas = extract_branches("פוטוסינתזה היא תהליך ביולוגי\nהצמח משתמש באור")
        assert [qa.question for qa in qas] == [
            "מה הם הסניפים של פוטוסינתזה?",
            "מה הם הסניפים של שווארמה פוטוסינתזה?",
        ]
        assert qas[0].answer == "היא: תהליך ביולוגי; משתמש: באור"
