"""Tests for extraction orchestration and strategy fallback."""

import threading

import pytest
from bottle_inventory.config import Settings
from bottle_inventory.services.extraction import (
    ExtractionConfidence,
    FIELD_ALLOWLISTS,
    LabelField,
    SourceMode,
)
from bottle_inventory.services.ocr import OCRError
from bottle_inventory.services.orchestrator import (
    ExtractionOrchestrator,
    StrategyOutcome,
    first_successful,
    FIELD_SOURCE_OCR,
    FIELD_SOURCE_VISION,
)
from bottle_inventory.services.vision import VisionAssistError, VisionExtraction


LABEL_TEXT = "GHOST FREEZE\n6mg 30ml\nLOT AB1234\nEXP 12/31/2026"


class FakeOCR:
    """Returns canned text per image, or raises for images listed in `failing`."""

    def __init__(self, texts=None, failing=()):
        self.texts = texts or {}
        self.failing = set(failing)
        self.calls = []
        self.lock = threading.Lock()

    def recognize(self, image_bytes, language_hint=None, allowlist=None):
        with self.lock:
            self.calls.append((image_bytes, allowlist))
        if image_bytes in self.failing:
            raise OCRError("engine crashed")
        return self.texts.get(image_bytes, "")


class FakeVision:
    """Vision collaborator returning canned fields or raising."""

    def __init__(self, fields=None, error=None, available=True):
        self.fields = fields or {}
        self.error = error
        self.available = available
        self.label_calls = 0

    @property
    def is_available(self):
        return self.available

    def extract_label(self, image_bytes, ocr_text=""):
        self.label_calls += 1
        if self.error:
            raise self.error
        return VisionExtraction(fields=dict(self.fields), raw_text=ocr_text)

    def extract_field(self, label_field, image_bytes):
        if self.error:
            raise self.error
        value = self.fields.get(label_field, "")
        return VisionExtraction(fields={label_field: value}, raw_text=value)


@pytest.fixture
def settings():
    return Settings(multi_field_max_workers=3)


class TestFirstSuccessful:
    """Test the strategy composition function."""

    def test_returns_first_ok(self):
        """Test later strategies are not run after a success."""
        calls = []

        def ok():
            calls.append("ok")
            return StrategyOutcome.success(1)

        def never():
            calls.append("never")
            return StrategyOutcome.success(2)

        outcome = first_successful([("a", ok), ("b", never)])
        assert outcome.ok
        assert outcome.value == 1
        assert outcome.strategy == "a"
        assert calls == ["ok"]

    def test_exception_counts_as_err(self):
        """Test a raising strategy falls through."""
        def boom():
            raise VisionAssistError("timeout")

        outcome = first_successful([("vision", boom), ("ocr", lambda: StrategyOutcome.success("x"))])
        assert outcome.value == "x"
        assert outcome.strategy == "ocr"

    def test_all_fail_collects_reasons(self):
        """Test every failure reason is reported in order."""
        outcome = first_successful([
            ("vision", lambda: StrategyOutcome.failure("quota")),
            ("ocr", lambda: StrategyOutcome.failure("blank")),
        ])
        assert not outcome.ok
        assert outcome.error == "vision: quota; ocr: blank"

    def test_no_strategies(self):
        assert not first_successful([]).ok


class TestExtractSingle:
    """Test whole-label extraction."""

    def test_vision_first(self, settings):
        """Test Vision Assist result is used when available."""
        vision = FakeVision(fields={LabelField.NAME: "Freeze", LabelField.NICOTINE_STRENGTH: "6"})
        orchestrator = ExtractionOrchestrator(FakeOCR({b"img": LABEL_TEXT}), vision, settings=settings)

        record = orchestrator.extract_single(b"img")

        assert record.source_mode == SourceMode.AI_ENHANCED
        assert record.confidence == ExtractionConfidence.HIGH
        assert record.name == "Freeze"
        assert record.nicotine_strength == "6"
        assert record.batch_number == ""
        assert record.raw_text == LABEL_TEXT

    def test_vision_failure_falls_back_to_ocr(self, settings):
        """Test a throwing vision call leads to the OCR path, not an error."""
        vision = FakeVision(error=VisionAssistError("HTTP 500"))
        orchestrator = ExtractionOrchestrator(FakeOCR({b"img": LABEL_TEXT}), vision, settings=settings)

        record = orchestrator.extract_single(b"img")

        assert vision.label_calls == 1
        assert record.source_mode == SourceMode.OCR_ONLY
        assert record.confidence == ExtractionConfidence.MEDIUM
        assert record.name == "GHOST FREEZE"
        assert record.nicotine_strength == "6"
        assert record.bottle_size == "30"
        assert record.batch_number == "AB1234"
        assert record.expiration_date == "12/31/2026"

    def test_unavailable_vision_is_skipped(self, settings):
        """Test vision is not called when not configured."""
        vision = FakeVision(available=False)
        orchestrator = ExtractionOrchestrator(FakeOCR({b"img": LABEL_TEXT}), vision, settings=settings)

        record = orchestrator.extract_single(b"img")

        assert vision.label_calls == 0
        assert record.source_mode == SourceMode.OCR_ONLY

    def test_all_strategies_fail(self, settings):
        """Test OCR and vision both failing yields an empty FAILED record."""
        vision = FakeVision(error=VisionAssistError("bad JSON"))
        orchestrator = ExtractionOrchestrator(FakeOCR(failing=[b"img"]), vision, settings=settings)

        record = orchestrator.extract_single(b"img")

        assert record.source_mode == SourceMode.FAILED
        assert all(value == "" for value in record.field_values().values())
        assert "bad JSON" in record.notes
        assert "engine crashed" in record.notes

    def test_no_text_is_not_a_failure(self, settings):
        """Test a blank label is a soft miss on every field."""
        orchestrator = ExtractionOrchestrator(FakeOCR({b"img": ""}), settings=settings)

        record = orchestrator.extract_single(b"img")

        assert record.source_mode == SourceMode.OCR_ONLY
        assert record.name == ""
        assert record.nicotine_strength == ""


class TestExtractMultiField:
    """Test per-field multi-image extraction."""

    def test_ocr_per_field(self, settings):
        """Test each crop goes through its own extractor with its allow-list."""
        ocr = FakeOCR({
            b"name": "Blue Razz Ice",
            b"mg": "12mg",
            b"size": "60ml",
        })
        orchestrator = ExtractionOrchestrator(ocr, settings=settings)

        record = orchestrator.extract_multi_field({
            LabelField.NAME: b"name",
            "nicotine_strength": b"mg",
            LabelField.BOTTLE_SIZE: b"size",
        })

        assert record.source_mode == SourceMode.MULTI_FIELD
        assert record.confidence == ExtractionConfidence.MEDIUM
        assert record.name == "Blue Razz Ice"
        assert record.nicotine_strength == "12"
        assert record.bottle_size == "60"
        assert record.batch_number is None
        assert record.raw_texts["nicotine_strength"] == "12mg"
        assert record.field_sources["bottle_size"] == FIELD_SOURCE_OCR
        assert record.raw_text == "Blue Razz Ice\n12mg\n60ml"
        assert (b"mg", FIELD_ALLOWLISTS[LabelField.NICOTINE_STRENGTH]) in ocr.calls

    def test_failed_field_degrades_to_empty(self, settings):
        """Test one failing crop does not fail the others."""
        ocr = FakeOCR({b"mg": "6mg"}, failing=[b"batch"])
        orchestrator = ExtractionOrchestrator(ocr, settings=settings)

        record = orchestrator.extract_multi_field({
            LabelField.NICOTINE_STRENGTH: b"mg",
            LabelField.BATCH_NUMBER: b"batch",
        })

        assert record.nicotine_strength == "6"
        assert record.batch_number == ""
        assert "engine crashed" in record.field_errors["batch_number"]
        assert "nicotine_strength" not in record.field_errors

    def test_vision_per_field(self, settings):
        """Test all-vision captures are high confidence."""
        vision = FakeVision(fields={LabelField.NAME: "Freeze", LabelField.BOTTLE_SIZE: "30"})
        orchestrator = ExtractionOrchestrator(FakeOCR(), vision, settings=settings)

        record = orchestrator.extract_multi_field({LabelField.NAME: b"n", LabelField.BOTTLE_SIZE: b"s"})

        assert record.name == "Freeze"
        assert record.bottle_size == "30"
        assert record.confidence == ExtractionConfidence.HIGH
        assert record.field_sources == {"name": FIELD_SOURCE_VISION, "bottle_size": FIELD_SOURCE_VISION}

    def test_vision_failure_per_field_falls_back(self, settings):
        """Test each field falls back to OCR on its own."""
        vision = FakeVision(error=VisionAssistError("timeout"))
        orchestrator = ExtractionOrchestrator(FakeOCR({b"d": "EXP 01/02/2027"}), vision, settings=settings)

        record = orchestrator.extract_multi_field({LabelField.EXPIRATION_DATE: b"d"})

        assert record.expiration_date == "01/02/2027"
        assert record.field_sources["expiration_date"] == FIELD_SOURCE_OCR
        assert record.confidence == ExtractionConfidence.MEDIUM

    def test_prefer_vision_off(self, settings):
        """Test vision can be skipped per request."""
        vision = FakeVision(fields={LabelField.NAME: "From Vision"})
        orchestrator = ExtractionOrchestrator(FakeOCR({b"n": "From OCR"}), vision, settings=settings)

        record = orchestrator.extract_multi_field({LabelField.NAME: b"n"}, prefer_vision=False)

        assert record.name == "From OCR"

    def test_no_images(self, settings):
        """Test an empty capture."""
        orchestrator = ExtractionOrchestrator(FakeOCR(), settings=settings)
        record = orchestrator.extract_multi_field({})
        assert record.source_mode == SourceMode.MULTI_FIELD
        assert record.field_values() == {f.value: None for f in LabelField}


class TestExtractField:
    """Test single-field re-take."""

    def test_ocr(self, settings):
        orchestrator = ExtractionOrchestrator(FakeOCR({b"b": "Batch: X99"}), settings=settings)
        outcome = orchestrator.extract_field("batch_number", b"b")
        assert outcome.value == "X99"
        assert outcome.source == FIELD_SOURCE_OCR
        assert outcome.error is None

    def test_failure(self, settings):
        orchestrator = ExtractionOrchestrator(FakeOCR(failing=[b"b"]), settings=settings)
        outcome = orchestrator.extract_field(LabelField.BATCH_NUMBER, b"b")
        assert outcome.value == ""
        assert outcome.error

    def test_unknown_field(self, settings):
        orchestrator = ExtractionOrchestrator(FakeOCR(), settings=settings)
        with pytest.raises(ValueError):
            orchestrator.extract_field("colour", b"x")
