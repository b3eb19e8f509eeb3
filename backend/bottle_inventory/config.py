"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Bottle Inventory API"
    debug: bool = False

    # CORS - Allow all origins for prototype (restrict in production)
    cors_origins: list[str] = ["*"]

    # Upload limits (HTTP layer only)
    max_upload_size_mb: int = 10
    allowed_extensions: set = {"png", "jpg", "jpeg"}

    # OCR settings
    ocr_lang: str = "en"
    ocr_gpu: bool = False
    ocr_max_concurrent: int = 1  # Single shared EasyOCR reader, one inference at a time
    ocr_model_dir: str | None = None

    # Vision Assist (optional cloud extraction, tried before plain OCR)
    vision_assist_enabled: bool = False
    openai_api_key: str | None = None
    vision_model: str = "gpt-4o-mini"
    vision_timeout_s: float = 30.0
    vision_max_tokens: int = 300

    # Field extraction ranges (product-specific tuning)
    strength_min: int = 0
    strength_max: int = 50  # Nicotine strength ceiling in mg
    size_min: int = 10
    size_max: int = 1000  # Bottle size in mL

    # Product name heuristics
    name_anchor_brands: list[str] = ["GHOST"]  # Trademark tokens that anchor the name
    name_skip_keywords: list[str] = [
        "batch", "lot", "exp", "made", "mfg", "warning",
        "this", "product", "tobacco", "nicotine",
    ]
    name_min_length: int = 4
    batch_fallback_min_length: int = 4

    # Multi-field capture (one OCR call per field image)
    multi_field_max_workers: int = 5

    # Spreadsheet reconciliation
    similarity_threshold: int = 90  # Kept high: "Freeze" vs "Squeeze" must not merge
    sheet_name: str = "Sheet1"
    sheet_name_column: int = 0  # Column A
    sheet_strength_column: int = 1  # Column B
    sheet_quantity_column: int = 2  # Column C (in-stock quantity)
    default_bottle_size: str = "30"
    default_strength: str = "0mg"
    sheet_skip_markers: list[str] = ["osuna", "rsv house"]  # Header/footer rows
    default_sheet_id: str | None = None

    # Storage and spreadsheet transport
    database_path: str = "bottles.sqlite3"
    sheets_directory: str = "sheets"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
