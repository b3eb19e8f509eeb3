"""Field extraction from raw label OCR text.

Each field gets its own ordered list of (pattern, validator) rules:
1. Patterns are tried in priority order, every occurrence of a pattern is
   checked before moving on to the next pattern
2. The first capture that passes the field's sanity check wins
3. Numeric fields fall back to the first digit run (range-checked),
   free-text fields fall back to line heuristics, and finally to ""
"""

import re
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence
from dataclasses import dataclass, field
import logging

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class LabelField(str, Enum):
    """Fields captured from a bottle label."""
    NAME = "name"
    BRAND = "brand"
    NICOTINE_STRENGTH = "nicotine_strength"
    BOTTLE_SIZE = "bottle_size"
    BATCH_NUMBER = "batch_number"
    EXPIRATION_DATE = "expiration_date"


class SourceMode(str, Enum):
    """Which extraction path produced a record."""
    AI_ENHANCED = "ai-enhanced"
    OCR_ONLY = "ocr-only"
    MULTI_FIELD = "multi-field"
    FAILED = "failed"


class ExtractionConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"


_TEXT_ALLOWLIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789 -&."

# Recommended OCR character allow-lists for per-field crops
FIELD_ALLOWLISTS: Dict[LabelField, str] = {
    LabelField.NAME: _TEXT_ALLOWLIST,
    LabelField.BRAND: _TEXT_ALLOWLIST,
    LabelField.NICOTINE_STRENGTH: "0123456789mgMG% ",
    LabelField.BOTTLE_SIZE: "0123456789mlML ",
    LabelField.BATCH_NUMBER: "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_",
    LabelField.EXPIRATION_DATE: "0123456789/-. ",
}

DIGIT_RUN = re.compile(r"\d+")

# Lines made only of digits, whitespace and symbols are never product names
NON_NAME_LINE = re.compile(r"^[\d\W_]+$")


@dataclass(frozen=True)
class PatternRule:
    """One extraction pattern; group(1) is the captured value."""
    pattern: "re.Pattern[str]"
    validator: Optional[Callable[[str], bool]] = None
    label: str = ""


@dataclass(frozen=True)
class PatternMatch:
    value: str
    rule: PatternRule
    matched_text: str


def first_validated_match(text: str, rules: Sequence[PatternRule]) -> Optional[PatternMatch]:
    """
    Return the first capture that passes its rule's validator, or None.

    Rules are tried in order; within a rule, occurrences are tried left to
    right, so a valid later occurrence beats an invalid earlier one.
    """
    if not text:
        return None

    for rule in rules:
        for match in rule.pattern.finditer(text):
            value = (match.group(1) or "").strip()
            if not value:
                continue
            if rule.validator is not None and not rule.validator(value):
                logger.debug(f"Rejected '{match.group(0)}' ({rule.label})")
                continue
            return PatternMatch(value=value, rule=rule, matched_text=match.group(0))

    return None


def in_range(low: int, high: int) -> Callable[[str], bool]:
    """Validator accepting integer strings within [low, high]."""
    def check(value: str) -> bool:
        return value.isdigit() and low <= int(value) <= high
    return check


@dataclass
class ExtractedRecord:
    """Typed result of one capture; every field may still be hand-corrected."""
    name: Optional[str] = None
    brand: Optional[str] = None
    nicotine_strength: Optional[str] = None
    bottle_size: Optional[str] = None
    batch_number: Optional[str] = None
    expiration_date: Optional[str] = None
    source_mode: SourceMode = SourceMode.OCR_ONLY
    confidence: ExtractionConfidence = ExtractionConfidence.MEDIUM
    raw_text: str = ""
    # Multi-field provenance, keyed by LabelField value
    raw_texts: Dict[str, str] = field(default_factory=dict)
    field_sources: Dict[str, str] = field(default_factory=dict)
    field_errors: Dict[str, str] = field(default_factory=dict)
    notes: str = ""

    def get(self, label_field: LabelField) -> Optional[str]:
        return getattr(self, label_field.value)

    def set(self, label_field: LabelField, value: Optional[str]) -> None:
        setattr(self, label_field.value, value)

    def field_values(self) -> Dict[str, Optional[str]]:
        """Field values keyed by field name."""
        return {f.value: self.get(f) for f in LabelField}

    @classmethod
    def empty(cls, source_mode: SourceMode, notes: str = "") -> "ExtractedRecord":
        """Record with every field blank, for captures where all strategies failed."""
        record = cls(source_mode=source_mode, notes=notes)
        for label_field in LabelField:
            record.set(label_field, "")
        return record


class FieldExtractor:
    """Extracts typed bottle fields from raw OCR text."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        s = self.settings

        self.strength_valid = in_range(s.strength_min, s.strength_max)
        self.size_valid = in_range(s.size_min, s.size_max)

        # Nicotine strength (order matters - unit forms before percentages)
        self.strength_rules = [
            # "6mg", "12 MG", "3mg/ml"
            PatternRule(re.compile(r"(\d+)\s*mg", re.IGNORECASE), self.strength_valid, "digits-unit"),
            # "MG 6"
            PatternRule(re.compile(r"mg\s*(\d+)", re.IGNORECASE), self.strength_valid, "unit-digits"),
            # "3%" (not the fraction part of "1.8%")
            PatternRule(re.compile(r"(?<![\d.])(\d+)\s*%"), self.strength_valid, "percent"),
        ]

        # Bottle size
        self.size_rules = [
            # "30ml", "60 mL"
            PatternRule(re.compile(r"(\d+)\s*ml", re.IGNORECASE), self.size_valid, "digits-unit"),
            # "ML 30"
            PatternRule(re.compile(r"ml\s*(\d+)", re.IGNORECASE), self.size_valid, "unit-digits"),
        ]

        # Batch / lot number - no validator; a labelled code must contain a digit so "LOTION" is skipped
        self.batch_rules = [
            # "Batch: A1234", "LOT NO. 2024-01", "BatchA1234" (crop read without separators)
            PatternRule(
                re.compile(
                    r"\b(?:batch|lot)\s*(?:no\.?|number|#)?\s*[:#.]?\s*(?=[A-Z_-]*\d)([A-Z0-9][A-Z0-9_-]*)",
                    re.IGNORECASE,
                ),
                label="labelled",
            ),
            # "B# 4471"
            PatternRule(re.compile(r"\bb#\s*([A-Z0-9][A-Z0-9_-]*)", re.IGNORECASE), label="b-hash"),
            # "GT20931"
            PatternRule(re.compile(r"\b([A-Z]{1,3}\d{4,})\b", re.IGNORECASE), label="prefixed-code"),
            # "20240117"
            PatternRule(re.compile(r"(?<!\d)(\d{6,})(?!\d)"), label="digit-run"),
        ]

        # Expiration date - first match wins, formatting happens downstream
        self.date_rules = [
            # MM/DD/YYYY or MM/DD/YY
            PatternRule(re.compile(r"(?<!\d)(\d{1,2}/\d{1,2}/\d{2,4})(?!\d)"), label="mm/dd/yyyy"),
            # DD-MM-YYYY or DD-MM-YY
            PatternRule(re.compile(r"(?<!\d)(\d{1,2}-\d{1,2}-\d{2,4})(?!\d)"), label="dd-mm-yyyy"),
            # YYYY-MM-DD
            PatternRule(re.compile(r"(?<!\d)(\d{4}-\d{1,2}-\d{1,2})(?!\d)"), label="yyyy-mm-dd"),
            # DD.MM.YYYY
            PatternRule(re.compile(r"(?<!\d)(\d{1,2}\.\d{1,2}\.\d{2,4})(?!\d)"), label="dd.mm.yyyy"),
            # MMDDYY or MMDDYYYY
            PatternRule(re.compile(r"(?<!\d)(\d{6,8})"), label="compact"),
        ]

        # Whole-label text often carries MFG and EXP dates; prefer the labelled one
        self.labelled_date_rules = [
            PatternRule(
                re.compile(
                    r"\b(?:exp[a-z]*|use\s*by|best\s*before)\.?[:\s]*"
                    r"(\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}|\d{4}-\d{1,2}-\d{1,2})(?!\d)",
                    re.IGNORECASE,
                ),
                label="labelled",
            ),
        ]

        self.skip_keyword_pattern = self._keyword_pattern(s.name_skip_keywords)
        self.anchor_patterns = [
            (brand, re.compile(r"\b" + re.escape(brand) + r"\b[A-Z \t]*", re.IGNORECASE))
            for brand in s.name_anchor_brands
            if brand.strip()
        ]

    @staticmethod
    def _keyword_pattern(keywords: List[str]) -> Optional["re.Pattern[str]"]:
        words = [re.escape(k) for k in keywords if k.strip()]
        if not words:
            return None
        return re.compile(r"^(?:" + "|".join(words) + ")", re.IGNORECASE)

    def allowlist_for(self, label_field: LabelField) -> str:
        """Recommended OCR character allow-list for a crop dedicated to one field."""
        return FIELD_ALLOWLISTS[label_field]

    def extract_all(self, raw_text: str) -> ExtractedRecord:
        """
        Extract every field from the text of one whole-label photo.

        Args:
            raw_text: OCR output for the full label

        Returns:
            ExtractedRecord tagged as plain OCR output
        """
        text = raw_text or ""
        return ExtractedRecord(
            name=self.extract_name(text),
            brand=self.extract_brand(text),
            nicotine_strength=self.extract_strength(text),
            bottle_size=self.extract_bottle_size(text),
            batch_number=self.extract_batch_number(text, whole_label=True),
            expiration_date=self.extract_expiration_date(text, whole_label=True),
            source_mode=SourceMode.OCR_ONLY,
            confidence=ExtractionConfidence.MEDIUM,
            raw_text=text,
        )

    def extract_field(self, label_field: LabelField, raw_text: str) -> str:
        """Extract one field from the text of a crop dedicated to that field."""
        text = raw_text or ""
        if label_field == LabelField.NAME:
            return self.extract_name(text)
        if label_field == LabelField.BRAND:
            return self.extract_brand(text, dedicated=True)
        if label_field == LabelField.NICOTINE_STRENGTH:
            return self.extract_strength(text)
        if label_field == LabelField.BOTTLE_SIZE:
            return self.extract_bottle_size(text)
        if label_field == LabelField.BATCH_NUMBER:
            return self.extract_batch_number(text)
        if label_field == LabelField.EXPIRATION_DATE:
            return self.extract_expiration_date(text)
        raise ValueError(f"Unknown label field: {label_field}")

    def extract_strength(self, text: str) -> str:
        """Nicotine strength in mg as a digit string, or ""."""
        return self._extract_bounded_number(text, self.strength_rules, self.strength_valid)

    def extract_bottle_size(self, text: str) -> str:
        """Bottle size in mL as a digit string, or ""."""
        return self._extract_bounded_number(text, self.size_rules, self.size_valid)

    def _extract_bounded_number(
        self,
        text: str,
        rules: Sequence[PatternRule],
        valid: Callable[[str], bool],
    ) -> str:
        match = first_validated_match(text, rules)
        if match:
            return match.value

        # Fall back to the first digit run anywhere in the text
        first_number = DIGIT_RUN.search(text or "")
        if first_number and valid(first_number.group(0)):
            return first_number.group(0)
        return ""

    def extract_batch_number(self, text: str, whole_label: bool = False) -> str:
        """
        Batch/lot code, or the cleaned crop text when no pattern matches.

        Batch codes vary too much for strict validation, so a dedicated crop
        falls back to its non-trivial lines joined by spaces. Whole-label
        text has no such fallback (it would return the entire label).
        """
        match = first_validated_match(text, self.batch_rules)
        if match:
            return match.value
        if whole_label:
            return ""

        min_length = self.settings.batch_fallback_min_length
        lines = [line.strip() for line in (text or "").splitlines()]
        return " ".join(line for line in lines if len(line) >= min_length)

    def extract_expiration_date(self, text: str, whole_label: bool = False) -> str:
        """Expiration date exactly as printed, or ""."""
        rules = self.date_rules
        if whole_label:
            rules = self.labelled_date_rules + self.date_rules
        match = first_validated_match(text, rules)
        return match.value if match else ""

    def extract_name(self, text: str) -> str:
        """
        Product name via line heuristics.

        Strategy:
        1. A configured trademark token anchors the name when present
        2. Otherwise the first line that is long enough, not purely
           numeric/symbolic and not a known label keyword line
        3. Otherwise the longest raw line
        """
        anchored = self._extract_anchored_name(text)
        if anchored:
            return anchored

        raw_lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
        for line in raw_lines:
            if self._is_name_candidate(line):
                return line

        if not raw_lines:
            return ""
        return max(raw_lines, key=len)

    def extract_brand(self, text: str, dedicated: bool = False) -> str:
        """
        Brand from a configured trademark token.

        A crop dedicated to the brand falls back to its first name-like line.
        """
        for brand, pattern in self.anchor_patterns:
            if pattern.search(text or ""):
                return brand
        if not dedicated:
            return ""

        for line in (text or "").splitlines():
            if self._is_name_candidate(line.strip()):
                return line.strip()
        return ""

    def _extract_anchored_name(self, text: str) -> str:
        for brand, pattern in self.anchor_patterns:
            match = pattern.search(text or "")
            if match:
                name = re.sub(r"\s+", " ", match.group(0)).strip()
                logger.debug(f"Name anchored on '{brand}': {name}")
                return name
        return ""

    def _is_name_candidate(self, line: str) -> bool:
        if len(line) < self.settings.name_min_length:
            return False
        if NON_NAME_LINE.match(line):
            return False
        if self.skip_keyword_pattern and self.skip_keyword_pattern.match(line):
            return False
        return True


def extract_strength(text: str) -> str:
    """
    Standalone function to extract nicotine strength.

    Args:
        text: Raw text to search

    Returns:
        Strength in mg as a digit string, or "" if not found
    """
    return FieldExtractor().extract_strength(text)


def extract_bottle_size(text: str) -> str:
    """Standalone function to extract bottle size in mL."""
    return FieldExtractor().extract_bottle_size(text)


def extract_batch_number(text: str) -> str:
    """Standalone function to extract a batch/lot number from a batch crop."""
    return FieldExtractor().extract_batch_number(text)


def extract_expiration_date(text: str) -> str:
    """Standalone function to extract an expiration date from a date crop."""
    return FieldExtractor().extract_expiration_date(text)


def extract_name(text: str) -> str:
    """Standalone function to extract a product name."""
    return FieldExtractor().extract_name(text)
