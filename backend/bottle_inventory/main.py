"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .services import OCRService
from .config import get_settings
from . import __version__

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_DESCRIPTION = """
Reads bottle labels and keeps an inventory spreadsheet in sync.

- `POST /api/v1/extract`: all fields from one whole-label photo
- `POST /api/v1/extract-multi`: one crop per field, read concurrently
- `POST /api/v1/extract-field`: re-take a single field
- `POST /api/v1/bottles`: store a reviewed capture
- `POST /api/v1/reconcile`: write bottle counts into the inventory sheet
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the OCR reader at startup so the first capture is not slow."""
    logger.info(f"Starting {app.title} {__version__}")
    if OCRService().initialize():
        logger.info("OCR reader warm")
    else:
        logger.warning("OCR reader not loaded; it will be loaded on first capture")
    yield
    logger.info(f"Stopping {app.title}")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": settings.app_name, "version": __version__, "docs": "/docs"}

    return app


app = create_app()
