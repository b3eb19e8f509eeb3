"""Services for OCR, field extraction, orchestration, and inventory reconciliation."""

from .images import ImageLoader
from .ocr import OCRService, OCRResult, OCRBox, OCRError
from .vision import VisionAssistService, VisionAssistError, VisionExtraction
from .normalization import normalize_name, normalize_strength, normalize_size
from .similarity import name_similarity
from .extraction import (
    LabelField,
    SourceMode,
    ExtractionConfidence,
    ExtractedRecord,
    FieldExtractor,
    PatternRule,
    first_validated_match,
    extract_strength,
    extract_bottle_size,
    extract_batch_number,
    extract_expiration_date,
    extract_name,
)
from .dates import ExpirationState, ExpirationStatus, format_expiration_date, expiration_status
from .orchestrator import ExtractionOrchestrator, FieldOutcome, StrategyOutcome, first_successful
from .sheets import CellUpdate, CsvSheetTransport, SheetError, column_letter, cell_address
from .store import BottleRecord, BottleStore, StoreError
from .reconciliation import (
    InventoryKey,
    MatchKind,
    MatchResult,
    SheetRow,
    ReconcileConfig,
    InventoryReconciler,
    InventorySyncService,
    ReconcileStatus,
    ReconcileSummary,
    ReconciliationError,
    build_count_index,
)

__all__ = [
    "ImageLoader",
    "OCRService",
    "OCRResult",
    "OCRBox",
    "OCRError",
    "VisionAssistService",
    "VisionAssistError",
    "VisionExtraction",
    "normalize_name",
    "normalize_strength",
    "normalize_size",
    "name_similarity",
    "LabelField",
    "SourceMode",
    "ExtractionConfidence",
    "ExtractedRecord",
    "FieldExtractor",
    "PatternRule",
    "first_validated_match",
    "extract_strength",
    "extract_bottle_size",
    "extract_batch_number",
    "extract_expiration_date",
    "extract_name",
    "ExpirationState",
    "ExpirationStatus",
    "format_expiration_date",
    "expiration_status",
    "ExtractionOrchestrator",
    "FieldOutcome",
    "StrategyOutcome",
    "first_successful",
    "CellUpdate",
    "CsvSheetTransport",
    "SheetError",
    "column_letter",
    "cell_address",
    "BottleRecord",
    "BottleStore",
    "StoreError",
    "InventoryKey",
    "MatchKind",
    "MatchResult",
    "SheetRow",
    "ReconcileConfig",
    "InventoryReconciler",
    "InventorySyncService",
    "ReconcileStatus",
    "ReconcileSummary",
    "ReconciliationError",
    "build_count_index",
]
