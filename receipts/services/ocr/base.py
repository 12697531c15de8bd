"""Base OCR engine interface"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from datetime import date, datetime


@dataclass
class OcrResult:
    """Unified OCR result from any engine"""
    success: bool
    raw_json: Optional[str] = None
    extracted_amount: Optional[float] = None
    extracted_date: Optional[date] = None
    extracted_provider: Optional[str] = None
    extracted_currency: Optional[str] = None
    confidence: Optional[float] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None

    @classmethod
    def success_result(
        cls,
        raw_json: str,
        provider: Optional[str] = None,
        amount: Optional[float] = None,
        extracted_date: Optional[date] = None,
        currency: Optional[str] = None,
        confidence: Optional[float] = None,
        processing_time_ms: Optional[int] = None
    ) -> "OcrResult":
        return cls(
            success=True,
            raw_json=raw_json,
            extracted_amount=amount,
            extracted_date=extracted_date,
            extracted_provider=provider,
            extracted_currency=currency,
            confidence=confidence,
            processing_time_ms=processing_time_ms
        )

    @classmethod
    def failure(
        cls,
        error_message: str,
        raw_json: str = "{}",
        processing_time_ms: Optional[int] = None
    ) -> "OcrResult":
        return cls(
            success=False,
            raw_json=raw_json,
            error_message=error_message,
            processing_time_ms=processing_time_ms
        )

    def to_extracted_json(self) -> str:
        """Extracted fields as JSON (what the audit ledger stores)"""
        return json.dumps({
            'provider': self.extracted_provider,
            'amount': self.extracted_amount,
            'date': self.extracted_date.isoformat() if self.extracted_date else None,
            'currency': self.extracted_currency,
        })


DATE_FORMATS = ["%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d"]


def parse_date(date_str: Optional[str], formats=DATE_FORMATS) -> Optional[date]:
    """Parse date from various formats, None if nothing matches"""
    if not date_str:
        return None

    for fmt in formats:
        try:
            return datetime.strptime(date_str.strip(), fmt).date()
        except ValueError:
            continue

    return None


class OcrEngine(ABC):
    """Abstract OCR engine interface"""

    @abstractmethod
    async def process_file(self, file_path: Path) -> OcrResult:
        """Extract receipt information from a stored document"""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if engine is configured and ready"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine name for logging and the audit ledger"""
        pass
