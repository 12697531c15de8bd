"""Local vision model OCR engine (Ollama/LLaVA)"""

import logging
import asyncio
import base64
import json
import time
from pathlib import Path

import aiohttp
from pydantic import ValidationError

from receipts.schemas.ocr import ExtractedReceiptData
from .base import OcrEngine, OcrResult, parse_date
from .vision_api_provider import RECEIPT_ANALYSIS_PROMPT, extract_json_from_content


class OllamaOcrEngine(OcrEngine):
    """Ollama OCR engine - uses a locally served vision model"""

    def __init__(self, ollama_host: str, model_name: str, request_timeout: float = 60):
        self.ollama_host = ollama_host.rstrip('/')
        self.model_name = model_name
        self.request_timeout = request_timeout
        self.available = False

    async def check_availability(self) -> bool:
        """Check if Ollama is reachable"""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"{self.ollama_host}/api/tags", timeout=aiohttp.ClientTimeout(total=2)) as resp:
                    self.available = resp.status == 200
                    return self.available
        except Exception as e:
            logging.debug(f"Ollama not available: {e}")
            self.available = False
            return False

    def is_available(self) -> bool:
        return self.available

    @property
    def name(self) -> str:
        return f"ollama_{self.model_name}"

    async def process_file(self, file_path: Path) -> OcrResult:
        """Recognize receipt using Ollama vision model"""
        start = time.monotonic()
        file_path = Path(file_path)

        image_bytes = await asyncio.to_thread(file_path.read_bytes)
        encoded_image = base64.b64encode(image_bytes).decode('utf-8')
        payload = {
            "model": self.model_name,
            "prompt": RECEIPT_ANALYSIS_PROMPT,
            "images": [encoded_image],
            "stream": False,
            "format": "json"
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.ollama_host}/api/generate",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            ) as response:
                if response.status != 200:
                    logging.warning(f"Ollama returned {response.status}")
                    return OcrResult.failure(f"Ollama HTTP error {response.status}")

                raw = await response.text()

        elapsed = int((time.monotonic() - start) * 1000)
        try:
            response_text = (json.loads(raw).get("response") or "").strip()
        except ValueError as e:
            return OcrResult.failure(f"Failed to parse Ollama response: {e}", raw, elapsed)

        if not response_text:
            return OcrResult.failure("Empty content in Ollama response", raw, elapsed)

        try:
            data = ExtractedReceiptData.model_validate(json.loads(extract_json_from_content(response_text)))
        except (ValueError, ValidationError) as e:
            logging.error(f"Ollama JSON parse error: {e}, Text: {response_text}")
            return OcrResult.failure(f"Failed to parse receipt data: {e}", raw, elapsed)

        return OcrResult.success_result(
            raw_json=raw,
            provider=data.provider,
            amount=data.amount,
            extracted_date=parse_date(data.date, ["%Y-%m-%d", "%d.%m.%Y", "%Y/%m/%d", "%d/%m/%Y"]),
            currency=data.currency,
            confidence=0.9 if data.amount is not None else 0.5,
            processing_time_ms=elapsed
        )
