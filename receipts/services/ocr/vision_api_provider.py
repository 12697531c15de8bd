"""Hosted vision model OCR engines (OpenAI, Anthropic Claude, Google Gemini)"""

import asyncio
import base64
import json
import logging
import time
from abc import abstractmethod
from pathlib import Path
from typing import Optional

import aiohttp
from pydantic import ValidationError

from receipts.schemas.ocr import ExtractedReceiptData
from .base import OcrEngine, OcrResult, parse_date


RECEIPT_ANALYSIS_PROMPT = (
    "Analyze this receipt image and extract the following information in JSON format:\n"
    "{\n"
    '    "provider": "merchant/store name",\n'
    '    "amount": total_amount_as_number,\n'
    '    "date": "YYYY-MM-DD",\n'
    '    "currency": "currency_code"\n'
    "}\n"
    "\n"
    "Instructions:\n"
    "- Extract the exact merchant name as it appears on the receipt\n"
    "- Use the total amount (including tax if shown)\n"
    "- Date should be in YYYY-MM-DD format\n"
    "- Currency should be 3-letter code (USD, EUR, etc.)\n"
    "- If any field cannot be determined, use null\n"
    "- Return only valid JSON, no additional text or explanation"
)

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
}

MAX_TOKENS = 500


def extract_json_from_content(content: str) -> str:
    """Cut the outermost {...} block out of model output that may contain extra text"""
    start = content.find('{')
    end = content.rfind('}')
    if start != -1 and end != -1 and end > start:
        return content[start:end + 1]
    return content


class VisionApiEngine(OcrEngine):
    """Common flow for HTTP vision APIs: encode image, post prompt, parse JSON answer"""

    api_url: str = ""
    engine_name: str = ""
    short_name: str = ""

    def __init__(self, api_key: Optional[str], request_timeout: float = 30):
        self.api_key = api_key
        self.request_timeout = request_timeout

    def is_available(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def name(self) -> str:
        return self.engine_name

    async def process_file(self, file_path: Path) -> OcrResult:
        start = time.monotonic()
        file_path = Path(file_path)

        if not self.is_available():
            return OcrResult.failure(f"{self.short_name} OCR engine is not available", processing_time_ms=self._elapsed(start))

        try:
            logging.debug(f"Processing file with {self.short_name}: {file_path.name}")
            image_bytes = await asyncio.to_thread(file_path.read_bytes)
            encoded_image = base64.b64encode(image_bytes).decode('utf-8')
            payload = self.build_payload(encoded_image, self.mime_type(file_path))
            response_text = await self._post(payload)
        except Exception as e:
            logging.error(f"Error processing file with {self.short_name}: {file_path.name}: {e}")
            return OcrResult.failure(f"{self.short_name} API error: {e}", processing_time_ms=self._elapsed(start))

        return self.parse_response(response_text, self._elapsed(start))

    def mime_type(self, file_path: Path) -> str:
        return MIME_TYPES.get(file_path.suffix.lower().lstrip('.'), "image/jpeg")

    def request_url(self) -> str:
        return self.api_url

    def request_headers(self) -> dict:
        return {}

    @abstractmethod
    def build_payload(self, encoded_image: str, mime_type: str) -> dict:
        """Provider specific request body for one image"""

    @abstractmethod
    def extract_content(self, response: dict) -> Optional[str]:
        """Model answer text from the decoded response, None if absent"""

    async def _post(self, payload: dict) -> str:
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.request_url(), json=payload, headers=self.request_headers()) as response:
                body = await response.text()
                if response.status != 200:
                    raise RuntimeError(f"HTTP {response.status}: {body[:200]}")
                if not body:
                    raise RuntimeError(f"Empty response from {self.short_name} API")
                return body

    def parse_response(self, response_text: str, processing_time_ms: Optional[int] = None) -> OcrResult:
        """Turn the raw API response into an OcrResult (raw response is kept as raw_json)"""
        try:
            content = self.extract_content(json.loads(response_text))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logging.error(f"Error parsing {self.short_name} response: {e}")
            return OcrResult.failure(f"Failed to parse {self.short_name} response: {e}", response_text, processing_time_ms)

        if not content or not content.strip():
            return OcrResult.failure(f"Empty content in {self.short_name} response", response_text, processing_time_ms)

        try:
            data = ExtractedReceiptData.model_validate(json.loads(extract_json_from_content(content)))
        except (ValueError, ValidationError) as e:
            logging.error(f"Error parsing receipt data from content: {content}: {e}")
            return OcrResult.failure(f"Failed to parse receipt data: {e}", response_text, processing_time_ms)

        extracted_date = parse_date(data.date)
        if data.date and extracted_date is None:
            logging.warning(f"Could not parse date: {data.date}")

        return OcrResult.success_result(
            raw_json=response_text,
            provider=data.provider,
            amount=data.amount,
            extracted_date=extracted_date,
            currency=data.currency,
            processing_time_ms=processing_time_ms
        )

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)


class OpenAiOcrEngine(VisionApiEngine):
    api_url = "https://api.openai.com/v1/chat/completions"
    engine_name = "OpenAI GPT-4 Vision"
    short_name = "OpenAI"
    model = "gpt-4o-mini"

    def request_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_payload(self, encoded_image: str, mime_type: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": RECEIPT_ANALYSIS_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded_image}"}},
                    ],
                }
            ],
            "max_tokens": MAX_TOKENS,
        }

    def extract_content(self, response: dict) -> Optional[str]:
        choices = response.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("message") or {}).get("content")


class ClaudeOcrEngine(VisionApiEngine):
    api_url = "https://api.anthropic.com/v1/messages"
    engine_name = "Anthropic Claude Vision"
    short_name = "Claude"
    model = "claude-3-haiku-20240307"
    anthropic_version = "2023-06-01"

    def request_headers(self) -> dict:
        return {"x-api-key": self.api_key, "anthropic-version": self.anthropic_version}

    def build_payload(self, encoded_image: str, mime_type: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": mime_type, "data": encoded_image},
                        },
                        {"type": "text", "text": RECEIPT_ANALYSIS_PROMPT},
                    ],
                }
            ],
        }

    def extract_content(self, response: dict) -> Optional[str]:
        content = response.get("content") or []
        if content and content[0].get("type") == "text":
            return content[0].get("text")
        return None


class GoogleAiOcrEngine(VisionApiEngine):
    api_url = "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
    engine_name = "Google AI Gemini Vision"
    short_name = "Google AI"

    def mime_type(self, file_path: Path) -> str:
        # Gemini accepts PDF documents inline
        if file_path.suffix.lower() == ".pdf":
            return "application/pdf"
        return super().mime_type(file_path)

    def request_url(self) -> str:
        return f"{self.api_url}?key={self.api_key}"

    def build_payload(self, encoded_image: str, mime_type: str) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": RECEIPT_ANALYSIS_PROMPT},
                        {"inline_data": {"mime_type": mime_type, "data": encoded_image}},
                    ]
                }
            ],
            "generationConfig": {"maxOutputTokens": MAX_TOKENS, "temperature": 0.1},
        }

    def extract_content(self, response: dict) -> Optional[str]:
        candidates = response.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return None
        return parts[0].get("text")
