"""Canonical comparison forms for product names, strengths and sizes.

Spreadsheet rows and stored bottles spell the same product differently
("a-30mL Freeze" vs "Freeze", "6mg" vs "6"). These helpers reduce each value
to a form that compares equal when the products are the same. They never
raise: any input is coerced to its string form first.
"""

import re
from typing import Any

# SKU disambiguation token such as "a-30ml" / "b-60mL", at either end of a name
TRAILING_SIZE_SUFFIX = re.compile(r"\s*[a-z]-\d+ml$", re.IGNORECASE)
LEADING_SIZE_SUFFIX = re.compile(r"^[a-z]-\d+ml\s*", re.IGNORECASE)

NAME_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
WHITESPACE_RUN = re.compile(r"\s+")
DIGIT_RUN = re.compile(r"\d+")


def _as_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw)


def normalize_name(raw: Any) -> str:
    """
    Normalize a product name for matching.

    Lower-cases, strips a size suffix like 'a-30ml', removes punctuation
    ("MR." vs "MR") and collapses whitespace.
    """
    text = _as_text(raw).strip().lower()
    if not text:
        return ""

    text = TRAILING_SIZE_SUFFIX.sub("", text)
    text = LEADING_SIZE_SUFFIX.sub("", text)
    text = NAME_PUNCTUATION.sub("", text)
    text = WHITESPACE_RUN.sub(" ", text)
    return text.strip()


def normalize_strength(raw: Any) -> str:
    """
    Normalize a nicotine strength to its digits.

    Stored bottles carry "0", "3", "6"; sheets carry "0mg", "3mg", "6mg".
    Missing or digit-free values count as zero strength.
    """
    if not raw:
        return "0"
    match = DIGIT_RUN.search(_as_text(raw))
    return match.group(0) if match else "0"


def normalize_size(raw: Any) -> str:
    """Normalize a bottle size to its digits, keeping non-numeric placeholders as-is."""
    if not raw:
        return ""
    text = _as_text(raw).strip()
    match = DIGIT_RUN.search(text)
    return match.group(0) if match else text
