"""Pytesseract OCR engine (local fallback)"""

import asyncio
import io
import json
import logging
import re
import time
from pathlib import Path
from typing import Optional
from datetime import date, datetime
from .base import OcrEngine, OcrResult


AMOUNT_PATTERNS = [
    r'(?:total|amount due|balance due|sum|to pay)[:\s]*[$€£]?\s*(\d[\d\s,]*[.,]\d{2})',
    r'[$€£]\s*(\d{1,3}(?:[\s,]\d{3})*[.,]\d{2})',
    r'(\d{1,3}(?:[\s,]\d{3})*[.,]\d{2})\s*(?:usd|eur|gbp|[$€£])',
]

DATE_PATTERNS = [
    (r'\d{4}-\d{2}-\d{2}', '%Y-%m-%d'),
    (r'\d{2}/\d{2}/\d{4}', '%m/%d/%Y'),
    (r'\d{2}\.\d{2}\.\d{4}', '%d.%m.%Y'),
    (r'\d{2}/\d{2}/\d{2}', '%m/%d/%y'),
]


class TesseractOcrEngine(OcrEngine):
    """Pytesseract OCR engine - works offline, lowest accuracy"""

    def __init__(self, lang: str = "eng"):
        self.lang = lang
        self.available = self._check_availability()

    def _check_availability(self) -> bool:
        """Check if tesseract binary is installed"""
        try:
            import pytesseract
            pytesseract.get_tesseract_version()
            return True
        except Exception as e:
            logging.warning(f"Pytesseract not available: {e}")
            return False

    def is_available(self) -> bool:
        return self.available

    @property
    def name(self) -> str:
        return "pytesseract"

    async def process_file(self, file_path: Path) -> OcrResult:
        """Recognize text from image using pytesseract"""
        start = time.monotonic()
        file_path = Path(file_path)

        if file_path.suffix.lower() == ".pdf":
            return OcrResult.failure("PDF documents are not supported by pytesseract")

        # pytesseract shells out to the tesseract binary, keep the event loop free
        image_bytes = await asyncio.to_thread(file_path.read_bytes)
        text = await asyncio.to_thread(self._image_to_string, image_bytes)
        elapsed = int((time.monotonic() - start) * 1000)

        amount = self._extract_amount(text)
        parsed_date = self._extract_date(text)
        raw_json = json.dumps({'text': text})

        if amount is None:
            return OcrResult.failure("No total amount recognized", raw_json, elapsed)

        return OcrResult.success_result(
            raw_json=raw_json,
            provider=self._extract_provider(text),
            amount=amount,
            extracted_date=parsed_date,
            confidence=0.7 if parsed_date else 0.5,
            processing_time_ms=elapsed
        )

    def _image_to_string(self, file_bytes: bytes) -> str:
        import pytesseract
        from PIL import Image

        image = Image.open(io.BytesIO(file_bytes))
        return pytesseract.image_to_string(image, lang=self.lang)

    def _extract_amount(self, text: str) -> Optional[float]:
        """Extract total amount from OCR text"""
        for pattern in AMOUNT_PATTERNS:
            match = re.search(pattern, text.lower(), re.IGNORECASE)
            if match:
                amount_str = match.group(1).replace(' ', '')
                # "1,234.56" -> thousands separator, "12,50" -> decimal comma
                if '.' in amount_str:
                    amount_str = amount_str.replace(',', '')
                else:
                    amount_str = amount_str.replace(',', '.')
                try:
                    return float(amount_str)
                except ValueError:
                    continue

        return None

    def _extract_date(self, text: str) -> Optional[date]:
        """Extract date from OCR text"""
        for pattern, fmt in DATE_PATTERNS:
            match = re.search(pattern, text)
            if match:
                try:
                    return datetime.strptime(match.group(0), fmt).date()
                except ValueError:
                    continue

        return None

    def _extract_provider(self, text: str) -> Optional[str]:
        """First non-empty line usually carries the merchant name"""
        for line in text.splitlines():
            line = line.strip()
            if len(line) >= 3 and re.search(r'[A-Za-z]', line):
                return line[:255]
        return None
