"""API route definitions."""

import time
from functools import lru_cache
from fastapi import APIRouter, UploadFile, File, Form, HTTPException
from typing import Dict, Optional
import logging

from ..models import (
    ExtractedBottle,
    ExtractionResponse,
    FieldExtractionResponse,
    BottleCreate,
    BottleResponse,
    ReconcileRequest,
    ReconcileResponse,
    RowMatch,
    ErrorResponse,
    HealthResponse,
)
from ..services import (
    ImageLoader,
    OCRService,
    VisionAssistService,
    ExtractionOrchestrator,
    ExtractedRecord,
    LabelField,
    BottleRecord,
    BottleStore,
    StoreError,
    CsvSheetTransport,
    InventorySyncService,
    ReconcileConfig,
    ReconcileSummary,
    ReconciliationError,
    format_expiration_date,
    expiration_status,
)
from ..config import get_settings
from .. import __version__

logger = logging.getLogger(__name__)
router = APIRouter()

# Initialize services
image_loader = ImageLoader()
ocr_service = OCRService()
vision_service = VisionAssistService()
orchestrator = ExtractionOrchestrator(ocr=ocr_service, vision=vision_service)


@lru_cache()
def get_store() -> BottleStore:
    return BottleStore(get_settings().database_path)


@lru_cache()
def get_sync_service() -> InventorySyncService:
    settings = get_settings()
    return InventorySyncService(
        store=get_store(),
        transport=CsvSheetTransport(settings.sheets_directory),
        config=ReconcileConfig.from_settings(settings),
    )


def _to_extracted(record: ExtractedRecord) -> ExtractedBottle:
    status = expiration_status(record.expiration_date)
    iso = format_expiration_date(record.expiration_date) if status.days_left is not None else None
    return ExtractedBottle(
        **record.field_values(),
        expiration_iso=iso,
        expiration_status=status.state.value,
        expiration_label=status.label,
        source_mode=record.source_mode.value,
        confidence=record.confidence.value,
        raw_text=record.raw_text,
        raw_texts=record.raw_texts,
        field_sources=record.field_sources,
        field_errors=record.field_errors,
        notes=record.notes,
    )


def _to_reconcile_response(summary: ReconcileSummary) -> ReconcileResponse:
    return ReconcileResponse(
        status=summary.status.value,
        matched_count=summary.matched_count,
        not_found_count=summary.not_found_count,
        rows_written=summary.rows_written,
        rows=[
            RowMatch(
                row_number=r.row.row_number,
                name=r.row.name,
                strength=r.row.strength,
                size=r.size,
                count=r.match.count,
                match_kind=r.match.match_kind.value,
                matched_name=r.match.matched_key.name if r.match.matched_key else None,
                similarity_score=r.match.similarity_score,
            )
            for r in summary.results
        ],
        detail=summary.detail,
    )


async def _read_upload(upload: UploadFile) -> bytes:
    """Read and validate an uploaded label image, raising 400 on bad input."""
    try:
        image_bytes = await upload.read()
    except Exception as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read uploaded image")

    is_valid, error_msg = image_loader.validate_image(image_bytes, upload.filename or "unknown")
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_msg)
    return image_bytes


def _parse_field(value: str) -> LabelField:
    try:
        return LabelField(value)
    except ValueError:
        allowed = ", ".join(f.value for f in LabelField)
        raise HTTPException(status_code=400, detail=f"Unknown field '{value}'. Allowed: {allowed}")


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check API health, OCR readiness and Vision Assist availability."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        ocr_ready=ocr_service.is_ready,
        vision_available=vision_service.is_available,
    )


@router.post(
    "/extract",
    response_model=ExtractionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
    },
    tags=["Extraction"]
)
async def extract_label(
    image: UploadFile = File(..., description="Whole-label photo"),
):
    """
    Extract bottle fields from one whole-label photo.

    Vision Assist is tried first when configured; plain OCR is the fallback.
    A capture where every strategy failed still returns a record
    (source_mode "failed") so the fields can be entered by hand.
    """
    start_time = time.time()
    image_bytes = await _read_upload(image)

    record = orchestrator.extract_single(image_bytes)
    total_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Label extracted via {record.source_mode.value} ({total_ms}ms)")

    return ExtractionResponse(
        success=record.source_mode.value != "failed",
        extracted=_to_extracted(record),
        error=record.notes or None,
        processing_time_ms=total_ms,
    )


@router.post(
    "/extract-multi",
    response_model=ExtractionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
    },
    tags=["Extraction"]
)
async def extract_multi(
    name: Optional[UploadFile] = File(None, description="Crop of the product name"),
    brand: Optional[UploadFile] = File(None, description="Crop of the brand"),
    nicotine_strength: Optional[UploadFile] = File(None, description="Crop of the nicotine strength"),
    bottle_size: Optional[UploadFile] = File(None, description="Crop of the bottle size"),
    batch_number: Optional[UploadFile] = File(None, description="Crop of the batch/lot number"),
    expiration_date: Optional[UploadFile] = File(None, description="Crop of the expiration date"),
    use_vision: bool = Form(True, description="Try Vision Assist per field before OCR"),
):
    """
    Extract bottle fields from one crop per field.

    Fields run concurrently. A field whose extraction fails comes back
    empty with its error in field_errors; the others are unaffected.
    """
    start_time = time.time()
    uploads = {
        LabelField.NAME: name,
        LabelField.BRAND: brand,
        LabelField.NICOTINE_STRENGTH: nicotine_strength,
        LabelField.BOTTLE_SIZE: bottle_size,
        LabelField.BATCH_NUMBER: batch_number,
        LabelField.EXPIRATION_DATE: expiration_date,
    }

    images: Dict[LabelField, bytes] = {}
    for label_field, upload in uploads.items():
        if upload is not None:
            images[label_field] = await _read_upload(upload)

    if not images:
        raise HTTPException(status_code=400, detail="Upload at least one field image")

    record = orchestrator.extract_multi_field(images, prefer_vision=use_vision)
    total_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Multi-field extraction of {len(images)} fields ({total_ms}ms)")

    return ExtractionResponse(
        success=True,
        extracted=_to_extracted(record),
        processing_time_ms=total_ms,
    )


@router.post(
    "/extract-field",
    response_model=FieldExtractionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input or unknown field"},
    },
    tags=["Extraction"]
)
async def extract_field(
    image: UploadFile = File(..., description="Crop of one field"),
    field: str = Form(..., description="Field identifier, e.g. nicotine_strength"),
    use_vision: bool = Form(False, description="Try Vision Assist before OCR"),
):
    """Re-take a single field from its own crop."""
    label_field = _parse_field(field)
    image_bytes = await _read_upload(image)

    outcome = orchestrator.extract_field(label_field, image_bytes, prefer_vision=use_vision)
    return FieldExtractionResponse(
        success=outcome.error is None,
        field=label_field.value,
        value=outcome.value,
        source=outcome.source,
        raw_text=outcome.raw_text,
        error=outcome.error,
    )


@router.post(
    "/bottles",
    response_model=BottleResponse,
    responses={
        500: {"model": ErrorResponse, "description": "Store error"}
    },
    tags=["Inventory"]
)
async def add_bottle(bottle: BottleCreate):
    """Store a captured bottle. The expiration date is normalized to YYYY-MM-DD when possible."""
    record = BottleRecord(
        owner_scope=bottle.owner_scope,
        name=bottle.name.strip(),
        brand=bottle.brand.strip(),
        nicotine_strength=bottle.nicotine_strength.strip(),
        bottle_size=bottle.bottle_size.strip(),
        batch_number=bottle.batch_number.strip(),
        expiration_date=format_expiration_date(bottle.expiration_date),
    )
    try:
        with get_store().session() as session:
            bottle_id = session.add_record(record)
    except StoreError as e:
        logger.exception(f"Failed to store bottle: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return BottleResponse(
        bottle_id=bottle_id,
        owner_scope=record.owner_scope,
        name=record.name,
        brand=record.brand,
        nicotine_strength=record.nicotine_strength,
        bottle_size=record.bottle_size,
        batch_number=record.batch_number,
        expiration_date=record.expiration_date,
    )


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No sheet configured"},
        502: {"model": ErrorResponse, "description": "Store or sheet write failed"}
    },
    tags=["Inventory"]
)
async def reconcile_inventory(request: ReconcileRequest):
    """
    Write current bottle counts into the inventory sheet.

    Each product row's quantity cell gets the count of matching bottles
    (0 when no bottle matches). An unreadable or empty sheet returns
    status "no_data" without writing anything.
    """
    sheet_id = request.sheet_id or get_settings().default_sheet_id
    if not sheet_id:
        raise HTTPException(status_code=400, detail="No sheet_id given and no default sheet configured")

    start_time = time.time()
    try:
        summary = get_sync_service().reconcile(request.owner_scope, sheet_id)
    except ReconciliationError as e:
        logger.error(f"Reconciliation failed at stage '{e.stage}': {e.message}")
        raise HTTPException(status_code=502, detail=f"Reconciliation failed at stage '{e.stage}': {e.message}")

    total_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Reconciliation of '{sheet_id}' finished ({total_ms}ms)")
    return _to_reconcile_response(summary)
