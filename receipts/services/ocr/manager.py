"""OCR Service - selects engines, falls back between them and audits tracked runs"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession

from receipts.config import config
from receipts.database.models import EntityType, OcrProcessingStatus
from receipts.services.ocr_attempt_service import record_ocr_attempt, update_attempt_status
from .base import OcrEngine, OcrResult

NO_ENGINE_NAME = "NONE"
NO_ENGINES_ERROR = "No available OCR engines"


def build_engine(key: str) -> Optional[OcrEngine]:
    """Create engine registered under OCR_ENGINE_ORDER key, None if it is not configured"""
    # Imports are local: optional engines pull heavy dependencies (pytesseract, PIL)
    if key == "openai" and config.OPENAI_API_KEY:
        from .vision_api_provider import OpenAiOcrEngine
        return OpenAiOcrEngine(config.OPENAI_API_KEY)
    if key == "claude" and config.CLAUDE_API_KEY:
        from .vision_api_provider import ClaudeOcrEngine
        return ClaudeOcrEngine(config.CLAUDE_API_KEY)
    if key == "google" and config.GOOGLE_AI_API_KEY:
        from .vision_api_provider import GoogleAiOcrEngine
        return GoogleAiOcrEngine(config.GOOGLE_AI_API_KEY)
    if key == "ollama" and config.OLLAMA_HOST:
        from .ollama_provider import OllamaOcrEngine
        return OllamaOcrEngine(config.OLLAMA_HOST, config.OLLAMA_MODEL)
    if key == "tesseract" and config.TESSERACT_ENABLED:
        from .pytesseract_provider import TesseractOcrEngine
        return TesseractOcrEngine(config.TESSERACT_LANG)
    return None


class OcrService:
    """
    Orchestrates configured OCR engines.

    Two ways to run OCR:
    - process_file_with_fallback: tries every available engine in order, nothing is audited
    - process_entity_with_ocr_tracking: only the first available engine, one audited attempt
    """

    def __init__(self, engines: Optional[Sequence[OcrEngine]] = None, engine_timeout: Optional[float] = None):
        self.engines: List[OcrEngine] = list(engines or [])
        self.engine_timeout = engine_timeout
        self._initialized = engines is not None

    async def initialize(self):
        """Build engines from config (call once at startup)"""
        if self._initialized:
            return

        for key in config.OCR_ENGINE_ORDER:
            engine = build_engine(key)
            if engine is None:
                logging.debug(f"OCR engine '{key}' is not configured")
                continue

            # Local model server has to be checked before it reports availability
            check_availability = getattr(engine, "check_availability", None)
            if check_availability is not None:
                await check_availability()

            self.engines.append(engine)
            logging.info(f"OCR engine registered: {engine.name} (available: {engine.is_available()})")

        self._initialized = True

        if not self.has_available_engines():
            logging.warning("No OCR engines available!")

    def has_available_engines(self) -> bool:
        return any(engine.is_available() for engine in self.engines)

    def get_available_engine_names(self) -> List[str]:
        return [engine.name for engine in self.engines if engine.is_available()]

    def _primary_engine(self) -> Optional[OcrEngine]:
        for engine in self.engines:
            if engine.is_available():
                return engine
        return None

    async def _call_engine(self, engine: OcrEngine, file_path: Path) -> OcrResult:
        if self.engine_timeout:
            return await asyncio.wait_for(engine.process_file(file_path), timeout=self.engine_timeout)
        return await engine.process_file(file_path)

    def _describe_error(self, engine: OcrEngine, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"{engine.name} timed out after {self.engine_timeout}s"
        return str(error)

    async def process_file_with_fallback(self, file_path: Path) -> OcrResult:
        """Try engines in configured order until one succeeds"""
        last_error = None

        for engine in self.engines:
            if not engine.is_available():
                logging.debug(f"Skipping unavailable OCR engine: {engine.name}")
                continue

            try:
                logging.info(f"Trying OCR engine: {engine.name}")
                result = await self._call_engine(engine, file_path)
            except Exception as e:
                logging.error(f"OCR engine {engine.name} failed: {self._describe_error(engine, e)}")
                last_error = f"Engine error: {self._describe_error(engine, e)}"
                continue

            if result.success:
                logging.info(f"OCR success with {engine.name}: amount={result.extracted_amount}")
                return result

            logging.warning(f"OCR engine {engine.name} returned failure: {result.error_message}")
            last_error = result.error_message

        if last_error is None:
            logging.warning("No OCR engines available for fallback processing")
            return OcrResult.failure(NO_ENGINES_ERROR)

        return OcrResult.failure(f"All OCR engines failed. Last error: {last_error}")

    async def process_file(self, file_path: Path) -> OcrResult:
        """Run primary engine only, without auditing"""
        engine = self._primary_engine()
        if engine is None:
            return OcrResult.failure(NO_ENGINES_ERROR)

        try:
            return await self._call_engine(engine, file_path)
        except Exception as e:
            logging.error(f"OCR engine {engine.name} failed: {self._describe_error(engine, e)}")
            return OcrResult.failure(f"OCR engine failed: {self._describe_error(engine, e)}")

    async def process_entity_with_ocr_tracking(
        self,
        session: AsyncSession,
        entity_type: EntityType,
        entity_id: int,
        user_email: str,
        file_path: Path
    ) -> OcrResult:
        """Run primary engine and keep exactly one audited attempt for the call"""
        engine = self._primary_engine()
        if engine is None:
            logging.warning(f"No OCR engine for {entity_type.value} {entity_id}")
            await record_ocr_attempt(
                session, entity_type, entity_id, user_email,
                ocr_engine_used=NO_ENGINE_NAME,
                processing_status=OcrProcessingStatus.failed,
                error_message=NO_ENGINES_ERROR
            )
            return OcrResult.failure(NO_ENGINES_ERROR)

        attempt = await record_ocr_attempt(
            session, entity_type, entity_id, user_email,
            ocr_engine_used=engine.name,
            processing_status=OcrProcessingStatus.in_progress
        )

        try:
            logging.info(f"Processing {entity_type.value} {entity_id} with {engine.name}")
            result = await self._call_engine(engine, file_path)
        except Exception as e:
            logging.error(f"OCR engine {engine.name} failed on {entity_type.value} {entity_id}: {self._describe_error(engine, e)}")
            result = OcrResult.failure(f"OCR engine failed: {self._describe_error(engine, e)}")

        if attempt is not None:
            if result.success:
                await update_attempt_status(
                    session, attempt.id, OcrProcessingStatus.success,
                    extracted_data_json=result.to_extracted_json(),
                    raw_response=result.raw_json
                )
            else:
                await update_attempt_status(
                    session, attempt.id, OcrProcessingStatus.failed,
                    error_message=result.error_message,
                    raw_response=result.raw_json
                )

        return result

    def resolve_path(self, file_path: str) -> Path:
        """Stored paths may be relative to the storage root"""
        path = Path(file_path)
        if not path.is_absolute():
            path = Path(config.STORAGE_PATH) / path
        return path

    async def _process_stored_document(self, session: AsyncSession, entity_type: EntityType, document, user_email: str) -> OcrResult:
        path = self.resolve_path(document.file_path)
        if not path.is_file():
            logging.warning(f"File not found on disk for {entity_type.value} {document.id}: {path}")
            return OcrResult.failure(f"File not found on disk: {path}")

        return await self.process_entity_with_ocr_tracking(session, entity_type, document.id, user_email, path)

    async def process_incoming_file(self, session: AsyncSession, incoming_file, user_email: str) -> OcrResult:
        return await self._process_stored_document(session, EntityType.incoming_file, incoming_file, user_email)

    async def process_bill(self, session: AsyncSession, bill, user_email: str) -> OcrResult:
        return await self._process_stored_document(session, EntityType.bill, bill, user_email)

    async def process_receipt(self, session: AsyncSession, receipt, user_email: str) -> OcrResult:
        if not receipt.has_file_metadata:
            return OcrResult.failure("Receipt has no stored file")
        return await self._process_stored_document(session, EntityType.receipt, receipt, user_email)


# Global instance
ocr_service = OcrService(engine_timeout=config.engine_timeout)
