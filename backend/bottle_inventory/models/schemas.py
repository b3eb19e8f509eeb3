"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, Field
from typing import Dict, Optional

from ..services.extraction import SourceMode
from ..services.reconciliation import MatchKind


class ExtractedBottle(BaseModel):
    """Fields extracted from one capture. None means the field was not captured."""
    name: Optional[str] = None
    brand: Optional[str] = None
    nicotine_strength: Optional[str] = None
    bottle_size: Optional[str] = None
    batch_number: Optional[str] = None
    expiration_date: Optional[str] = None
    expiration_iso: Optional[str] = Field(None, description="Expiration date as YYYY-MM-DD when parseable")
    expiration_status: str = "unknown"
    expiration_label: str = Field("Unknown", description="Display text such as \"12 days left\"")
    source_mode: SourceMode
    confidence: str
    raw_text: str = ""
    raw_texts: Dict[str, str] = Field(default_factory=dict)
    field_sources: Dict[str, str] = Field(default_factory=dict)
    field_errors: Dict[str, str] = Field(default_factory=dict)
    notes: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "name": "GHOST FREEZE",
                "brand": "",
                "nicotine_strength": "6",
                "bottle_size": "30",
                "batch_number": "AB1234",
                "expiration_date": "12/31/2026",
                "expiration_iso": "2026-12-31",
                "expiration_status": "good",
                "expiration_label": "Good",
                "source_mode": "ocr-only",
                "confidence": "medium",
                "raw_text": "GHOST FREEZE\n6mg 30ml\nLOT AB1234\nEXP 12/31/2026",
            }
        }


class ExtractionResponse(BaseModel):
    """Response for whole-label and multi-image extraction."""
    success: bool
    extracted: Optional[ExtractedBottle] = None
    error: Optional[str] = None
    processing_time_ms: int = 0


class FieldExtractionResponse(BaseModel):
    """Response for a single re-taken field."""
    success: bool
    field: str
    value: str = ""
    source: str = "none"
    raw_text: str = ""
    error: Optional[str] = None


class BottleCreate(BaseModel):
    """A captured (possibly hand-corrected) bottle to store."""
    owner_scope: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    brand: str = ""
    nicotine_strength: str = ""
    bottle_size: str = ""
    batch_number: str = ""
    expiration_date: str = ""


class BottleResponse(BottleCreate):
    """Stored bottle."""
    bottle_id: int


class ReconcileRequest(BaseModel):
    """Reconcile one owner's inventory into a sheet."""
    owner_scope: Optional[str] = Field(None, description="Owner whose bottles are counted; omit to count all")
    sheet_id: Optional[str] = Field(None, description="Target sheet; defaults to the configured sheet")

    class Config:
        json_schema_extra = {
            "example": {
                "owner_scope": "store-1",
                "sheet_id": "inventory",
            }
        }


class RowMatch(BaseModel):
    """Resolution of one spreadsheet row."""
    row_number: int
    name: str
    strength: str
    size: str
    count: int
    match_kind: MatchKind
    matched_name: Optional[str] = None
    similarity_score: Optional[int] = None


class ReconcileResponse(BaseModel):
    """Summary of one reconciliation run."""
    status: str
    matched_count: int
    not_found_count: int
    rows_written: int
    rows: list[RowMatch] = Field(default_factory=list)
    detail: str = ""


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Invalid image format",
                "detail": "Allowed formats: JPEG, JPG, PNG"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    ocr_ready: bool
    vision_available: bool
