"""Extraction orchestration for one capture session.

Two capture modes:
- Single image: one whole-label photo, every field extractor runs on its text
- Multi image: one crop per field, each field's extractor runs on its own text

Vision Assist, when configured, is tried first and plain OCR is the fallback.
Strategies return tagged outcomes instead of raising, so extraction always
yields a best-effort record that the user can hand-correct.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar, Union

from ..config import Settings, get_settings
from .extraction import (
    ExtractedRecord,
    ExtractionConfidence,
    FieldExtractor,
    LabelField,
    SourceMode,
)
from .vision import VisionExtraction

logger = logging.getLogger(__name__)

T = TypeVar("T")

FIELD_SOURCE_VISION = "vision"
FIELD_SOURCE_OCR = "ocr"
FIELD_SOURCE_NONE = "none"


class TextRecognizer(Protocol):
    """OCR collaborator: image bytes in, raw text out."""

    def recognize(
        self,
        image_bytes: bytes,
        language_hint: Optional[str] = None,
        allowlist: Optional[str] = None,
    ) -> str: ...


class VisionExtractor(Protocol):
    """Vision collaborator returning structured fields directly."""

    @property
    def is_available(self) -> bool: ...

    def extract_label(self, image_bytes: bytes, ocr_text: str = "") -> VisionExtraction: ...

    def extract_field(self, label_field: LabelField, image_bytes: bytes) -> VisionExtraction: ...


@dataclass
class StrategyOutcome(Generic[T]):
    """Ok(value) or Err(reason) from one extraction strategy."""
    value: Optional[T] = None
    error: Optional[str] = None
    strategy: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, strategy: str = "") -> "StrategyOutcome[T]":
        return cls(value=value, strategy=strategy)

    @classmethod
    def failure(cls, reason: str, strategy: str = "") -> "StrategyOutcome[T]":
        return cls(error=reason, strategy=strategy)


Strategy = Tuple[str, Callable[[], StrategyOutcome]]


def first_successful(strategies: Sequence[Strategy]) -> StrategyOutcome:
    """
    Try strategies in order and return the first Ok outcome.

    Exceptions raised by a strategy count as Err. When every strategy fails,
    the returned Err lists each failure reason in order.
    """
    reasons = []
    for name, strategy in strategies:
        try:
            outcome = strategy()
        except Exception as e:
            outcome = StrategyOutcome.failure(str(e) or type(e).__name__, strategy=name)

        if outcome.ok:
            outcome.strategy = outcome.strategy or name
            return outcome

        logger.warning(f"Extraction strategy '{name}' failed: {outcome.error}")
        reasons.append(f"{name}: {outcome.error}")

    return StrategyOutcome.failure("; ".join(reasons) or "no strategies available")


@dataclass
class FieldOutcome:
    """Value for one field captured on its own image."""
    label_field: LabelField
    value: str
    source: str = FIELD_SOURCE_NONE
    raw_text: str = ""
    error: Optional[str] = None


class ExtractionOrchestrator:
    """Coordinates OCR, Vision Assist and field extractors for a capture."""

    def __init__(
        self,
        ocr: TextRecognizer,
        vision: Optional[VisionExtractor] = None,
        extractor: Optional[FieldExtractor] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.ocr = ocr
        self.vision = vision
        self.extractor = extractor or FieldExtractor(self.settings)

    def _vision_ready(self) -> bool:
        return self.vision is not None and self.vision.is_available

    def extract_single(self, image_bytes: bytes) -> ExtractedRecord:
        """
        Extract all fields from one whole-label photo.

        Never raises: if every strategy fails, the record has all fields
        empty and source_mode FAILED.
        """
        ocr_text, ocr_error = self._recognize(image_bytes)

        strategies = []
        if self._vision_ready():
            strategies.append(("vision", lambda: self._vision_label(image_bytes, ocr_text)))
        strategies.append(("ocr", lambda: self._ocr_label(ocr_text, ocr_error)))

        outcome = first_successful(strategies)
        if outcome.ok:
            logger.info(f"Label extracted via {outcome.strategy}")
            return outcome.value

        logger.warning(f"All extraction strategies failed: {outcome.error}")
        record = ExtractedRecord.empty(SourceMode.FAILED, notes=outcome.error)
        record.raw_text = ocr_text
        return record

    def extract_multi_field(
        self,
        images: Mapping[Union[LabelField, str], bytes],
        prefer_vision: bool = True,
    ) -> ExtractedRecord:
        """
        Extract each field from its own crop, running the crops concurrently.

        Args:
            images: field -> image bytes, at most one image per field
            prefer_vision: try Vision Assist per field before plain OCR

        Returns:
            ExtractedRecord with source_mode MULTI_FIELD; fields without an
            image stay None, fields whose strategies all failed are ""
        """
        field_images: Dict[LabelField, bytes] = {
            LabelField(key): data for key, data in images.items() if data
        }
        record = ExtractedRecord(source_mode=SourceMode.MULTI_FIELD)
        if not field_images:
            record.notes = "No field images provided"
            return record

        use_vision = prefer_vision and self._vision_ready()
        max_workers = max(1, min(self.settings.multi_field_max_workers, len(field_images)))

        outcomes: Dict[LabelField, FieldOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self._extract_one_field, label_field, data, use_vision): label_field
                for label_field, data in field_images.items()
            }
            for future in as_completed(futures):
                label_field = futures[future]
                try:
                    outcomes[label_field] = future.result()
                except Exception as e:
                    logger.exception(f"Worker error for field {label_field.value}: {e}")
                    outcomes[label_field] = FieldOutcome(label_field=label_field, value="", error=str(e))

        # Assemble in field order so raw_text is deterministic
        raw_lines = []
        for label_field in LabelField:
            outcome = outcomes.get(label_field)
            if outcome is None:
                continue
            record.set(label_field, outcome.value)
            record.raw_texts[label_field.value] = outcome.raw_text
            record.field_sources[label_field.value] = outcome.source
            if outcome.error:
                record.field_errors[label_field.value] = outcome.error
            if outcome.raw_text:
                raw_lines.append(outcome.raw_text)

        record.raw_text = "\n".join(raw_lines)
        all_vision = all(o.source == FIELD_SOURCE_VISION for o in outcomes.values())
        record.confidence = ExtractionConfidence.HIGH if all_vision else ExtractionConfidence.MEDIUM
        return record

    def extract_field(
        self,
        label_field: Union[LabelField, str],
        image_bytes: bytes,
        prefer_vision: bool = False,
    ) -> FieldOutcome:
        """Extract one field from a single re-taken crop."""
        label_field = LabelField(label_field)
        return self._extract_one_field(label_field, image_bytes, prefer_vision and self._vision_ready())

    def _extract_one_field(self, label_field: LabelField, image_bytes: bytes, use_vision: bool) -> FieldOutcome:
        strategies = []
        if use_vision:
            strategies.append(("vision", lambda: self._vision_field(label_field, image_bytes)))
        strategies.append(("ocr", lambda: self._ocr_field(label_field, image_bytes)))

        outcome = first_successful(strategies)
        if outcome.ok:
            return outcome.value

        # A failed field degrades to empty instead of failing the record
        return FieldOutcome(label_field=label_field, value="", error=outcome.error)

    def _recognize(self, image_bytes: bytes, allowlist: Optional[str] = None) -> Tuple[str, Optional[str]]:
        try:
            text = self.ocr.recognize(image_bytes, self.settings.ocr_lang, allowlist=allowlist)
            return text or "", None
        except Exception as e:
            logger.warning(f"OCR failed: {e}")
            return "", str(e) or type(e).__name__

    def _vision_label(self, image_bytes: bytes, ocr_text: str) -> StrategyOutcome[ExtractedRecord]:
        extraction = self.vision.extract_label(image_bytes, ocr_text)
        record = ExtractedRecord(
            source_mode=SourceMode.AI_ENHANCED,
            confidence=ExtractionConfidence.HIGH,
            raw_text=extraction.raw_text,
        )
        for label_field in LabelField:
            record.set(label_field, extraction.fields.get(label_field, ""))
        return StrategyOutcome.success(record, strategy="vision")

    def _ocr_label(self, ocr_text: str, ocr_error: Optional[str]) -> StrategyOutcome[ExtractedRecord]:
        if ocr_error:
            return StrategyOutcome.failure(ocr_error, strategy="ocr")
        return StrategyOutcome.success(self.extractor.extract_all(ocr_text), strategy="ocr")

    def _vision_field(self, label_field: LabelField, image_bytes: bytes) -> StrategyOutcome[FieldOutcome]:
        extraction = self.vision.extract_field(label_field, image_bytes)
        return StrategyOutcome.success(
            FieldOutcome(
                label_field=label_field,
                value=extraction.fields.get(label_field, ""),
                source=FIELD_SOURCE_VISION,
                raw_text=extraction.raw_text,
            ),
            strategy="vision",
        )

    def _ocr_field(self, label_field: LabelField, image_bytes: bytes) -> StrategyOutcome[FieldOutcome]:
        allowlist = self.extractor.allowlist_for(label_field)
        text, error = self._recognize(image_bytes, allowlist=allowlist)
        if error:
            return StrategyOutcome.failure(error, strategy="ocr")
        return StrategyOutcome.success(
            FieldOutcome(
                label_field=label_field,
                value=self.extractor.extract_field(label_field, text),
                source=FIELD_SOURCE_OCR,
                raw_text=text,
            ),
            strategy="ocr",
        )
