"""Tests for Vision Assist response handling."""

import io
from types import SimpleNamespace

import pytest
from PIL import Image
from bottle_inventory.config import Settings
from bottle_inventory.services.extraction import LabelField
from bottle_inventory.services.vision import (
    VisionAssistError,
    VisionAssistService,
    clean_field_value,
    parse_json_object,
)


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (20, 20), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(id="cmpl-1", choices=[SimpleNamespace(message=message)])


def fake_client(content=None, error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestCleanFieldValue:
    """Test model answer cleanup."""

    def test_numeric_fields_keep_digits(self):
        assert clean_field_value(LabelField.NICOTINE_STRENGTH, "`6 mg`") == "6"
        assert clean_field_value(LabelField.BOTTLE_SIZE, "30ml") == "30"

    def test_date_keeps_separators(self):
        assert clean_field_value(LabelField.EXPIRATION_DATE, '"12/31/2026."') == "12/31/2026"

    def test_text_strips_quotes(self):
        assert clean_field_value(LabelField.NAME, "'Blue Razz'") == "Blue Razz"
        assert clean_field_value(LabelField.BRAND, None) == ""


class TestParseJsonObject:
    """Test JSON recovery from model output."""

    def test_plain(self):
        assert parse_json_object('{"name": "Freeze"}') == {"name": "Freeze"}

    def test_code_fence(self):
        text = 'Here you go:\n```json\n{"mg": "6"}\n```'
        assert parse_json_object(text) == {"mg": "6"}

    def test_embedded(self):
        assert parse_json_object('Result: {"bottleSize": "30"} done') == {"bottleSize": "30"}

    def test_not_json(self):
        with pytest.raises(VisionAssistError):
            parse_json_object("I cannot read this label")

    def test_array_rejected(self):
        with pytest.raises(VisionAssistError):
            parse_json_object('["a"]')


class TestVisionAssistService:
    """Test the service with a fake OpenAI client."""

    def test_unavailable_by_default(self):
        service = VisionAssistService(Settings(vision_assist_enabled=False))
        assert not service.is_available
        with pytest.raises(VisionAssistError):
            service.extract_label(png_bytes())

    def test_extract_label(self):
        client, completions = fake_client(
            '{"name": "Freeze", "brand": "GHOST", "mg": "6mg", "bottleSize": "30",'
            ' "batchNumber": "AB1", "expirationDate": "12/31/2026"}'
        )
        service = VisionAssistService(Settings(), client=client)

        extraction = service.extract_label(png_bytes(), ocr_text="GHOST FREEZE")

        assert extraction.fields[LabelField.NAME] == "Freeze"
        assert extraction.fields[LabelField.NICOTINE_STRENGTH] == "6"
        assert extraction.fields[LabelField.BATCH_NUMBER] == "AB1"
        assert extraction.raw_text == "GHOST FREEZE"

        request = completions.requests[0]
        content = request["messages"][0]["content"]
        assert "GHOST FREEZE" in content[0]["text"]
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_missing_keys_are_empty(self):
        client, _ = fake_client('{"name": "Freeze"}')
        extraction = VisionAssistService(Settings(), client=client).extract_label(png_bytes())
        assert extraction.fields[LabelField.BOTTLE_SIZE] == ""

    def test_extract_field(self):
        client, completions = fake_client("12 mg")
        service = VisionAssistService(Settings(), client=client)

        extraction = service.extract_field(LabelField.NICOTINE_STRENGTH, png_bytes())

        assert extraction.fields == {LabelField.NICOTINE_STRENGTH: "12"}
        assert "nicotine strength" in completions.requests[0]["messages"][0]["content"][0]["text"]

    def test_request_error_wrapped(self):
        client, _ = fake_client(error=TimeoutError("timed out"))
        service = VisionAssistService(Settings(), client=client)
        with pytest.raises(VisionAssistError):
            service.extract_field(LabelField.NAME, png_bytes())

    def test_empty_response(self):
        client, _ = fake_client("")
        service = VisionAssistService(Settings(), client=client)
        with pytest.raises(VisionAssistError):
            service.extract_field(LabelField.NAME, png_bytes())
