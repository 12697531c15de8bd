"""OCR engine abstraction for receipt recognition"""

from .base import OcrEngine, OcrResult
from .manager import OcrService, ocr_service

__all__ = ['OcrEngine', 'OcrResult', 'OcrService', 'ocr_service']
