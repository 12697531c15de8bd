import json
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from receipts.schemas.ocr import ExtractedReceiptData
from receipts.services.ocr.base import OcrResult, parse_date
from receipts.services.ocr.vision_api_provider import (
    ClaudeOcrEngine,
    GoogleAiOcrEngine,
    OpenAiOcrEngine,
    VisionApiEngine,
    extract_json_from_content,
)
from receipts.services.ocr.ollama_provider import OllamaOcrEngine
from receipts.services.ocr.pytesseract_provider import TesseractOcrEngine

RECEIPT_JSON = '{"provider": "Corner Shop", "amount": "1 234,50", "date": "2024-03-15", "currency": "usd"}'


def openai_envelope(content):
    return json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]})


def claude_envelope(content):
    return json.dumps({"content": [{"type": "text", "text": content}]})


def google_envelope(content):
    return json.dumps({"candidates": [{"content": {"parts": [{"text": content}]}}]})


# --- extracted data schema ---

def test_schema_normalizes_values():
    data = ExtractedReceiptData.model_validate(json.loads(RECEIPT_JSON))

    assert data.provider == "Corner Shop"
    assert data.amount == 1234.5
    assert data.currency == "USD"


@pytest.mark.parametrize("raw, expected", [
    (42.5, 42.5),
    ("1,234.56", 1234.56),
    ("12,50", 12.5),
    ("", None),
    (None, None),
])
def test_schema_amount_formats(raw, expected):
    assert ExtractedReceiptData(amount=raw).amount == expected


def test_schema_rejects_negative_amount():
    with pytest.raises(ValidationError):
        ExtractedReceiptData(amount=-1)


def test_schema_blank_values():
    data = ExtractedReceiptData(provider="  ", date="null", currency="dollars")

    assert data.provider is None
    assert data.date is None
    assert data.currency is None


# --- helpers ---

def test_extract_json_from_wrapped_content():
    content = 'Here is the data:\n```json\n{"amount": 5}\n```'

    assert extract_json_from_content(content) == '{"amount": 5}'
    assert extract_json_from_content("no json") == "no json"


@pytest.mark.parametrize("raw, expected", [
    ("2024-03-15", date(2024, 3, 15)),
    ("03/15/2024", date(2024, 3, 15)),
    ("2024/03/15", date(2024, 3, 15)),
    ("15 March", None),
    (None, None),
])
def test_parse_date(raw, expected):
    assert parse_date(raw) == expected


def test_failure_result_defaults():
    result = OcrResult.failure("nope")

    assert not result.success
    assert result.raw_json == "{}"
    assert result.error_message == "nope"


# --- vision API engines ---

@pytest.mark.parametrize("engine_cls, envelope, name", [
    (OpenAiOcrEngine, openai_envelope, "OpenAI GPT-4 Vision"),
    (ClaudeOcrEngine, claude_envelope, "Anthropic Claude Vision"),
    (GoogleAiOcrEngine, google_envelope, "Google AI Gemini Vision"),
])
def test_vision_engines_parse_their_envelope(engine_cls, envelope, name):
    engine = engine_cls("key")
    body = envelope(RECEIPT_JSON)

    result = engine.parse_response(body, processing_time_ms=120)

    assert engine.name == name
    assert result.success
    assert result.raw_json == body
    assert result.extracted_provider == "Corner Shop"
    assert result.extracted_amount == 1234.5
    assert result.extracted_date == date(2024, 3, 15)
    assert result.extracted_currency == "USD"
    assert result.processing_time_ms == 120


def test_vision_engine_invalid_json():
    result = OpenAiOcrEngine("key").parse_response("<html>bad gateway</html>")

    assert not result.success
    assert result.error_message.startswith("Failed to parse OpenAI response")
    assert result.raw_json == "<html>bad gateway</html>"


def test_vision_engine_empty_content():
    result = ClaudeOcrEngine("key").parse_response(json.dumps({"content": []}))

    assert not result.success
    assert result.error_message == "Empty content in Claude response"


def test_vision_engine_unparseable_receipt():
    result = GoogleAiOcrEngine("key").parse_response(google_envelope("I cannot read this image"))

    assert not result.success
    assert result.error_message.startswith("Failed to parse receipt data")


def test_vision_engine_availability():
    assert OpenAiOcrEngine("sk-test").is_available()
    assert not OpenAiOcrEngine(None).is_available()
    assert not ClaudeOcrEngine("   ").is_available()


def test_mime_types(tmp_path):
    assert OpenAiOcrEngine("k").mime_type(tmp_path / "a.PNG") == "image/png"
    assert OpenAiOcrEngine("k").mime_type(tmp_path / "a.tiff") == "image/jpeg"
    assert GoogleAiOcrEngine("k").mime_type(tmp_path / "a.pdf") == "application/pdf"


def test_google_key_in_url():
    assert GoogleAiOcrEngine("g-key").request_url().endswith(":generateContent?key=g-key")


def test_vision_engine_base_needs_provider_hooks():
    with pytest.raises(TypeError):
        VisionApiEngine("key")

    class NoContentEngine(VisionApiEngine):
        def build_payload(self, encoded_image, mime_type):
            return {}

    with pytest.raises(TypeError):
        NoContentEngine("key")


@pytest.mark.asyncio
async def test_vision_engine_process_file(receipt_image):
    engine = OpenAiOcrEngine("sk-test")
    engine._post = AsyncMock(return_value=openai_envelope(RECEIPT_JSON))

    result = await engine.process_file(receipt_image)

    assert result.success
    assert result.extracted_amount == 1234.5
    payload = engine._post.call_args.args[0]
    image_url = payload["messages"][0]["content"][1]["image_url"]["url"]
    assert image_url.startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_vision_engine_http_error_becomes_failure(receipt_image):
    engine = ClaudeOcrEngine("key")
    engine._post = AsyncMock(side_effect=RuntimeError("HTTP 529: overloaded"))

    result = await engine.process_file(receipt_image)

    assert not result.success
    assert result.error_message == "Claude API error: HTTP 529: overloaded"


@pytest.mark.asyncio
async def test_vision_engine_unreadable_file(tmp_path):
    engine = OpenAiOcrEngine("sk-test")
    engine._post = AsyncMock()

    result = await engine.process_file(tmp_path / "missing.jpg")

    assert not result.success
    assert result.error_message.startswith("OpenAI API error:")
    engine._post.assert_not_called()


@pytest.mark.asyncio
async def test_vision_engine_without_key(receipt_image):
    result = await GoogleAiOcrEngine(None).process_file(receipt_image)

    assert not result.success
    assert "not available" in result.error_message


# --- local engines ---

def test_ollama_engine_name_and_initial_availability():
    engine = OllamaOcrEngine("http://localhost:11434/", "llava")

    assert engine.name == "ollama_llava"
    assert engine.ollama_host == "http://localhost:11434"
    assert not engine.is_available()


@pytest.fixture
def tesseract():
    with patch.object(TesseractOcrEngine, "_check_availability", return_value=True):
        yield TesseractOcrEngine()


def test_tesseract_extracts_fields(tesseract):
    text = "CORNER SHOP\n12 Main St\nDate: 03/15/2024\nMilk 2.50\nTOTAL: $42.50\n"

    assert tesseract.is_available()
    assert tesseract._extract_amount(text) == 42.5
    assert tesseract._extract_date(text) == date(2024, 3, 15)
    assert tesseract._extract_provider(text) == "CORNER SHOP"


@pytest.mark.parametrize("text, amount", [
    ("Amount due 1,234.56", 1234.56),
    ("Summe EUR\n€ 12,50", 12.5),
    ("nothing here", None),
])
def test_tesseract_amounts(tesseract, text, amount):
    assert tesseract._extract_amount(text) == amount


@pytest.mark.asyncio
async def test_tesseract_process_file(tesseract, receipt_image):
    with patch.object(TesseractOcrEngine, "_image_to_string", return_value="SHOP\n2024-01-31\nTotal 9.99"):
        result = await tesseract.process_file(receipt_image)

    assert result.success
    assert result.extracted_amount == 9.99
    assert result.extracted_date == date(2024, 1, 31)
    assert json.loads(result.raw_json)["text"].startswith("SHOP")


@pytest.mark.asyncio
async def test_tesseract_without_amount_fails(tesseract, receipt_image):
    with patch.object(TesseractOcrEngine, "_image_to_string", return_value="blurry"):
        result = await tesseract.process_file(receipt_image)

    assert not result.success
    assert result.error_message == "No total amount recognized"


@pytest.mark.asyncio
async def test_tesseract_rejects_pdf(tesseract, tmp_path):
    pdf = tmp_path / "bill.pdf"
    pdf.write_bytes(b"%PDF-1.4")

    result = await tesseract.process_file(pdf)

    assert not result.success
    assert "PDF" in result.error_message
