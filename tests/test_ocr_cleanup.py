"""Tests for page text normalization."""

from __future__ import annotations

import pytest

from manual_rag.ocr_cleanup import normalize_text, strip_nul


# ── Individual Rules ──────────────────────────────────────────────


class TestNormalizeText:
    """Test each cleanup rule in isolation."""

    def test_empty_and_none(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""

    def test_crlf_and_cr_become_newline(self):
        assert normalize_text("one\r\ntwo\rthree") == "one\ntwo\nthree"

    def test_equals_padding_removed(self):
        assert normalize_text("Oil = = level") == "Oil level"

    def test_equals_padding_across_whitespace(self):
        assert normalize_text("A=   =B") == "A B"

    def test_single_equals_kept(self):
        assert normalize_text("1 qt = 0.95 L") == "1 qt = 0.95 L"

    def test_em_and_en_dashes_become_hyphen(self):
        assert normalize_text("pages 3–4 — see chart") == "pages 3-4 - see chart"

    def test_run_of_dashes_becomes_single_hyphen(self):
        assert normalize_text("a——b") == "a-b"

    def test_wrapped_word_rejoined(self):
        assert normalize_text("wind-\nshield") == "windshield"

    def test_chained_single_letter_wraps_joined_in_one_pass(self):
        assert normalize_text("a-\nb-\nc") == "abc"

    def test_wrapped_word_with_trailing_blanks(self):
        assert normalize_text("wind-  \n  shield") == "windshield"

    def test_hyphen_between_digits_not_joined(self):
        assert normalize_text("3-\n4") == "3-\n4"

    def test_trailing_whitespace_before_newline_stripped(self):
        assert normalize_text("line one \t\nline two") == "line one\nline two"

    def test_blank_lines_collapsed(self):
        assert normalize_text("a\n\n\n\nb") == "a\nb"

    def test_curly_quotes_straightened(self):
        assert normalize_text("“MAX” and don’t ‘x’") == "\"MAX\" and don't 'x'"

    def test_horizontal_whitespace_collapsed(self):
        assert normalize_text("a  \t b  c") == "a b c"

    def test_leading_whitespace_on_line_collapsed_into_space(self):
        assert normalize_text("a\n   b") == "a b"

    def test_outer_whitespace_trimmed(self):
        assert normalize_text("  \n text \n ") == "text"

    def test_full_page(self, manual_page_text):
        assert normalize_text(manual_page_text) == (
            "HEATING AND VENTILATION\n"
            "To clear the windshield of fog or frost, move the control lever to DEFROST. "
            "The blower - at high speed - directs\n"
            "warm air to the windshield outlets.\n"
            "\"MAX\" position gives the greatest air flow.\n"
            "Don't block the outlets."
        )


# ── Idempotence ───────────────────────────────────────────────────


_SAMPLES = [
    "",
    "plain text",
    "  padded  ",
    "a\r\n\r\nb",
    "= = = =",
    "===",
    "x= \n =y",
    "con-\ntrol — knob",
    "A-\n\n  b",
    "tab\t\tseparated\t\n\nlines",
    "“quoted” ‘single’",
    "a \nb",
    "trailing \n\n\n space \n",
    "\x0bvertical\x0ctab\x0c",
    "1.\n2.\n3.",
    "a-\nb-\nc",
    "aa-\na",
    "x-\n y-\n z-\n w",
]


class TestIdempotence:
    """normalize(normalize(x)) == normalize(x)."""

    @pytest.mark.parametrize("raw", _SAMPLES)
    def test_samples(self, raw):
        once = normalize_text(raw)
        assert normalize_text(once) == once

    def test_manual_page(self, manual_page_text):
        once = normalize_text(manual_page_text)
        assert normalize_text(once) == once


class TestStripNul:
    def test_removes_nul_bytes(self):
        assert strip_nul("a\x00b\x00") == "ab"

    def test_no_nul_unchanged(self):
        assert strip_nul("abc") == "abc"
