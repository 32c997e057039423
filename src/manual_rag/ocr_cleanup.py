"""Text normalization for extracted and OCR'd page text."""

from __future__ import annotations

import re

# Ordered (pattern, replacement) rules. Order matters: line terminators are
# unified before any newline-sensitive rule runs.
_NORMALIZATION_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\r\n?"), "\n"),                              # CRLF / CR -> LF
    (re.compile(r"=\s*="), " "),                               # "= =" padding artifacts
    (re.compile(r"[\u2014\u2013]+"), "-"),                     # em/en dashes
    (re.compile(r"([A-Za-z])-\s*\n\s*(?=[A-Za-z])"), r"\1"),   # re-join wrapped words
    (re.compile(r"[ \t]+\n"), "\n"),                           # trailing blanks
    (re.compile(r"\n{2,}"), "\n"),
    (re.compile(r"[\u201c\u201d]"), '"'),                      # curly double quotes
    (re.compile(r"[\u2018\u2019]"), "'"),                      # curly single quotes
    (re.compile(r"[^\S\n]+"), " "),
    (re.compile(r"\s{2,}"), " "),
]


def normalize_text(text: str | None) -> str:
    """Map raw page text to its canonical form.

    Idempotent: normalize_text(normalize_text(x)) == normalize_text(x).
    """
    if not text:
        return ""
    for pattern, replacement in _NORMALIZATION_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def strip_nul(text: str) -> str:
    """Remove NUL bytes some PDF text layers emit."""
    return text.replace("\x00", "")
