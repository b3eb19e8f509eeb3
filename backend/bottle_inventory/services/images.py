"""Decoding and upload checks for label photos."""

import io
import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import get_settings

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class ImageLoader:
    """Turns uploaded label photos into arrays the OCR reader accepts."""

    def __init__(self):
        self.settings = get_settings()

    def load(self, image_bytes: bytes) -> np.ndarray:
        """
        Decode a PNG/JPEG upload into a BGR array.

        Raises:
            ValueError: if the bytes are not a readable image
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as photo:
                rgb = np.array(photo.convert("RGB"))
        except (UnidentifiedImageError, OSError) as e:
            raise ValueError(f"Unable to read image: {e}") from e
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

    def validate_image(self, image_bytes: bytes, filename: str) -> Tuple[bool, str]:
        """
        Check an upload before it is sent to OCR or Vision Assist.

        Returns:
            (True, "") for an acceptable photo, otherwise (False, reason)
        """
        allowed = self.settings.allowed_extensions
        extension = filename.rpartition(".")[2].lower() if "." in filename else ""
        if extension not in allowed:
            return False, f"Invalid file type. Allowed formats: {', '.join(sorted(allowed)).upper()}"

        if not image_bytes:
            return False, "Image file is empty"

        limit_mb = self.settings.max_upload_size_mb
        if len(image_bytes) > limit_mb * BYTES_PER_MB:
            return False, f"Image exceeds {limit_mb}MB upload limit."

        try:
            with Image.open(io.BytesIO(image_bytes)) as photo:
                photo.verify()
        except Exception as e:
            logger.info(f"Rejected unreadable upload '{filename}': {e}")
            return False, f"Unable to read image: {e}"

        return True, ""
