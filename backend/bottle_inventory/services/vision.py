"""Vision Assist: structured label extraction via an OpenAI vision model.

Optional. When enabled it is tried before plain OCR; every failure surfaces
as VisionAssistError so the orchestrator can fall back.
"""

import base64
import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from openai import OpenAI
from PIL import Image

from ..config import Settings, get_settings
from .extraction import LabelField

logger = logging.getLogger(__name__)


class VisionAssistError(Exception):
    """Raised for any failure of the vision collaborator (network, quota, bad JSON)."""


# JSON keys requested from the model for a whole-label photo
LABEL_JSON_KEYS: Dict[LabelField, str] = {
    LabelField.NAME: "name",
    LabelField.BRAND: "brand",
    LabelField.NICOTINE_STRENGTH: "mg",
    LabelField.BOTTLE_SIZE: "bottleSize",
    LabelField.BATCH_NUMBER: "batchNumber",
    LabelField.EXPIRATION_DATE: "expirationDate",
}

FIELD_PROMPTS: Dict[LabelField, str] = {
    LabelField.NAME: "Extract ONLY the product name from this image. Return just the name, nothing else.",
    LabelField.BRAND: "Extract ONLY the brand name from this image. Return just the brand name, nothing else.",
    LabelField.NICOTINE_STRENGTH: (
        "Extract ONLY the nicotine strength number (without 'mg') from this image. Return just the number."
    ),
    LabelField.BOTTLE_SIZE: (
        "Extract ONLY the bottle size number in ml (without 'ml') from this image. Return just the number."
    ),
    LabelField.BATCH_NUMBER: "Extract ONLY the batch or lot number from this image. Return just the code.",
    LabelField.EXPIRATION_DATE: (
        "Extract ONLY the expiration date from this image. Format as MM/DD/YYYY. Return just the date."
    ),
}


def _label_prompt(ocr_text: str) -> str:
    keys = ",".join(f'"{key}":""' for key in LABEL_JSON_KEYS.values())
    return (
        f'OCR extracted this text from a bottle label: "{ocr_text}"\n\n'
        "Please extract and validate:\n"
        "1. Product name\n"
        "2. Brand\n"
        "3. Nicotine strength (mg) - number only\n"
        "4. Bottle size (ml) - number only\n"
        "5. Batch/Lot number\n"
        "6. Expiration date (MM/DD/YYYY)\n\n"
        "Also analyze the image to fill in any missing or incorrect data.\n"
        f"Return ONLY valid JSON: {{{keys}}}"
    )


def clean_field_value(label_field: LabelField, value: Any) -> str:
    """Strip quoting noise from a model answer and keep only the field's characters."""
    text = re.sub(r"[`'\"]", "", str(value or "")).strip()
    if label_field in (LabelField.NICOTINE_STRENGTH, LabelField.BOTTLE_SIZE):
        return re.sub(r"[^\d]", "", text)
    if label_field == LabelField.EXPIRATION_DATE:
        return re.sub(r"[^\d/\-]", "", text)
    return text


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the model's JSON answer, tolerating code fences and surrounding prose.

    Raises:
        VisionAssistError: if no JSON object can be recovered
    """
    candidates = [text.strip()]
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise VisionAssistError(f"Vision response is not a JSON object: {text[:200]!r}")


@dataclass
class VisionExtraction:
    """Fields returned by the vision model plus the text it was given/returned."""
    fields: Dict[LabelField, str] = field(default_factory=dict)
    raw_text: str = ""


class VisionAssistService:
    """Wraps the OpenAI chat completions API for label photos."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[OpenAI] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def is_available(self) -> bool:
        """Vision Assist is usable only when enabled and configured."""
        if self._client is not None:
            return True
        return self.settings.vision_assist_enabled and bool(self.settings.openai_api_key)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.is_available:
                raise VisionAssistError("Vision Assist is not configured")
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.vision_timeout_s,
                max_retries=0,  # Fallback to OCR instead of retrying
            )
        return self._client

    def extract_label(self, image_bytes: bytes, ocr_text: str = "") -> VisionExtraction:
        """
        Extract every field from a whole-label photo.

        Raises:
            VisionAssistError: on any failure
        """
        content = self._complete(_label_prompt(ocr_text), image_bytes, self.settings.vision_max_tokens)
        data = parse_json_object(content)

        fields = {
            label_field: clean_field_value(label_field, data.get(key, ""))
            for label_field, key in LABEL_JSON_KEYS.items()
        }
        return VisionExtraction(fields=fields, raw_text=ocr_text or content)

    def extract_field(self, label_field: LabelField, image_bytes: bytes) -> VisionExtraction:
        """
        Extract one field from a crop dedicated to it.

        Raises:
            VisionAssistError: on any failure
        """
        content = self._complete(FIELD_PROMPTS[label_field], image_bytes, 100)
        return VisionExtraction(
            fields={label_field: clean_field_value(label_field, content)},
            raw_text=content,
        )

    def _complete(self, prompt: str, image_bytes: bytes, max_tokens: int) -> str:
        try:
            completion = self.client.chat.completions.create(
                model=self.settings.vision_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": _data_url(image_bytes), "detail": "low"},
                        },
                    ],
                }],
                max_tokens=max_tokens,
            )
        except VisionAssistError:
            raise
        except Exception as e:
            raise VisionAssistError(f"Vision request failed: {e}") from e

        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        text = choice.message.content if choice and getattr(choice, "message", None) else None
        if not text:
            raise VisionAssistError("Vision response was empty")

        logger.debug(f"Vision completion id={getattr(completion, 'id', None)}")
        return text.strip()


def _data_url(image_bytes: bytes) -> str:
    mime = "image/jpeg"
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.format == "PNG":
                mime = "image/png"
    except Exception:
        logger.debug("Could not sniff image format; sending as JPEG")
    b64 = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime};base64,{b64}"
