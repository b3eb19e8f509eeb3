"""EasyOCR text recognition for label photos and per-field crops.

The reader is loaded once per process and shared. Recognition output is
turned into plain text with one line per printed row, which is what the
field extractors consume.
"""

import logging
import os
import re
import threading
import unicodedata
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..config import get_settings
from .images import ImageLoader

logger = logging.getLogger(__name__)

# Bounds for the row height used to bucket boxes into lines (pixels)
MIN_ROW_HEIGHT = 12
MAX_ROW_HEIGHT = 60


class OCRError(Exception):
    """Raised when the OCR engine cannot produce text for an image."""


@dataclass
class OCRBox:
    """One recognized text fragment and its quadrilateral on the image."""
    text: str
    confidence: float
    corners: List[List[int]]  # four [x, y] points, clockwise from top-left

    @classmethod
    def from_detection(cls, detection: Sequence) -> "OCRBox":
        """Build from an EasyOCR (points, text, confidence) triple."""
        points, text, confidence = detection
        return cls(
            text=clean_fragment(text),
            confidence=float(confidence),
            corners=[[int(x), int(y)] for x, y in points],
        )

    @property
    def top(self) -> int:
        return min(y for _, y in self.corners)

    @property
    def left(self) -> int:
        return min(x for x, _ in self.corners)

    @property
    def height(self) -> int:
        return max(y for _, y in self.corners) - self.top


@dataclass
class OCRResult:
    """Recognized fragments of one image and the text assembled from them."""
    boxes: List[OCRBox]
    raw_text: str

    @property
    def mean_confidence(self) -> float:
        if not self.boxes:
            return 0.0
        return sum(b.confidence for b in self.boxes) / len(self.boxes)

    @classmethod
    def empty(cls) -> "OCRResult":
        return cls(boxes=[], raw_text="")


def clean_fragment(text: str) -> str:
    """NFKC-normalize a fragment and collapse its whitespace."""
    return re.sub(r"\s+", " ", unicodedata.normalize("NFKC", text or "")).strip()


def group_boxes_into_lines(boxes: List[OCRBox]) -> List[str]:
    """
    Order boxes top-to-bottom, left-to-right and join each row into a line.

    Row height comes from the median box height so that words on one
    printed line land in the same bucket.
    """
    if not boxes:
        return []

    row_height = int(np.median([b.height for b in boxes]))
    row_height = max(MIN_ROW_HEIGHT, min(row_height, MAX_ROW_HEIGHT))

    rows = {}
    for box in sorted(boxes, key=lambda b: (b.top // row_height, b.left)):
        rows.setdefault(box.top // row_height, []).append(box.text)
    return [" ".join(words) for _, words in sorted(rows.items())]


class OCRService:
    """Process-wide EasyOCR reader with bounded concurrent use."""

    _instance: Optional["OCRService"] = None
    _reader = None
    _lock = threading.Lock()
    _gate: Optional[threading.Semaphore] = None

    def __new__(cls):
        # One reader per process; the model load takes seconds
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        self.settings = get_settings()
        self.image_loader = ImageLoader()
        if OCRService._gate is None:
            OCRService._gate = threading.Semaphore(self.settings.ocr_max_concurrent)

    def initialize(self) -> bool:
        """
        Load the EasyOCR reader if it is not loaded yet.

        Safe to call from several threads; called from the app lifespan and
        again lazily on first use if startup loading failed.

        Returns:
            True when the reader is available
        """
        with self._lock:
            if OCRService._reader is not None:
                return True

            try:
                import easyocr

                options = {"gpu": self.settings.ocr_gpu, "verbose": False}
                model_dir = self.settings.ocr_model_dir or os.environ.get("EASYOCR_MODULE_PATH")
                if model_dir:
                    options["model_storage_directory"] = model_dir

                logger.info(f"Loading EasyOCR reader for '{self.settings.ocr_lang}'...")
                OCRService._reader = easyocr.Reader([self.settings.ocr_lang], **options)
                logger.info("EasyOCR reader loaded")
                return True
            except Exception as e:
                logger.error(f"Could not load EasyOCR reader: {e}")
                return False

    @property
    def is_ready(self) -> bool:
        """Whether the reader has been loaded."""
        return OCRService._reader is not None

    def recognize(
        self,
        image_bytes: bytes,
        language_hint: Optional[str] = None,
        allowlist: Optional[str] = None,
    ) -> str:
        """
        Run OCR on an uploaded image and return its text, one line per row.

        Args:
            image_bytes: Encoded image (PNG/JPEG)
            language_hint: Must match the loaded reader language when given
            allowlist: Characters the recognizer may emit (e.g. "0123456789mg ")

        Raises:
            OCRError: if the engine is unavailable or recognition fails
        """
        if language_hint and language_hint != self.settings.ocr_lang:
            logger.warning(
                f"Language hint '{language_hint}' ignored; reader loaded for '{self.settings.ocr_lang}'"
            )

        try:
            image = self.image_loader.load(image_bytes)
        except ValueError as e:
            raise OCRError(str(e)) from e

        return self.read(image, allowlist=allowlist).raw_text

    def read(self, image: np.ndarray, allowlist: Optional[str] = None) -> OCRResult:
        """
        Recognize text on a decoded BGR image.

        Raises:
            OCRError: if the engine is unavailable or recognition fails
        """
        if not self.is_ready and not self.initialize():
            raise OCRError("OCR engine not initialized")

        options = {"decoder": "greedy", "batch_size": 1, "paragraph": False}
        if allowlist:
            options["allowlist"] = allowlist

        with self._gate:
            try:
                detections = OCRService._reader.readtext(image, **options)
            except Exception as e:
                raise OCRError(f"OCR processing failed: {e}") from e

        boxes = [box for box in map(OCRBox.from_detection, detections or []) if box.text]
        if not boxes:
            logger.warning("No text recognized on image")
            return OCRResult.empty()

        result = OCRResult(boxes=boxes, raw_text="\n".join(group_boxes_into_lines(boxes)))
        logger.debug(f"Recognized {len(boxes)} fragments (mean confidence {result.mean_confidence:.2f})")
        return result
