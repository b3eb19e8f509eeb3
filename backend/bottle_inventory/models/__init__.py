"""Pydantic models for request/response schemas."""

from .schemas import (
    SourceMode,
    MatchKind,
    ExtractedBottle,
    ExtractionResponse,
    FieldExtractionResponse,
    BottleCreate,
    BottleResponse,
    ReconcileRequest,
    RowMatch,
    ReconcileResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "SourceMode",
    "MatchKind",
    "ExtractedBottle",
    "ExtractionResponse",
    "FieldExtractionResponse",
    "BottleCreate",
    "BottleResponse",
    "ReconcileRequest",
    "RowMatch",
    "ReconcileResponse",
    "ErrorResponse",
    "HealthResponse",
]
