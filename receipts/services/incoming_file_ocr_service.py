"""
IncomingFile OCR workflow.

pending -> processing -> approved | rejected
A file is never left in processing once the OCR call has finished or failed.
Without any engine the file goes straight to rejected.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from receipts.database.models import IncomingFile, ItemStatus
from receipts.services.ocr import OcrResult, OcrService, ocr_service
from receipts.services.user_service import get_user_by_email

NO_ENGINES_MESSAGE = "No OCR engines available. Please configure at least one API key (OpenAI, Claude, or Google AI)."


def _reject(incoming_file: IncomingFile, message: str):
    incoming_file.status = ItemStatus.rejected.value
    incoming_file.ocr_processed_at = datetime.now(timezone.utc)
    incoming_file.ocr_error_message = message


def _apply_result(incoming_file: IncomingFile, result: OcrResult):
    incoming_file.status = ItemStatus.approved.value if result.success else ItemStatus.rejected.value
    incoming_file.ocr_raw_json = result.raw_json
    incoming_file.extracted_amount = result.extracted_amount
    incoming_file.extracted_date = result.extracted_date
    incoming_file.extracted_provider = result.extracted_provider
    incoming_file.ocr_error_message = result.error_message
    incoming_file.ocr_processed_at = datetime.now(timezone.utc)


def _clear_ocr_results(incoming_file: IncomingFile):
    incoming_file.status = ItemStatus.pending.value
    incoming_file.ocr_raw_json = None
    incoming_file.extracted_amount = None
    incoming_file.extracted_date = None
    incoming_file.extracted_provider = None
    incoming_file.ocr_processed_at = None
    incoming_file.ocr_error_message = None


async def process_incoming_file(
    session: AsyncSession,
    incoming_file: IncomingFile,
    user_email: str,
    ocr: OcrService = ocr_service
) -> IncomingFile:
    """Run OCR for an uploaded file and resolve its status"""
    await ocr.initialize()

    if not ocr.has_available_engines():
        logging.warning(f"Rejecting IncomingFile {incoming_file.id}: no OCR engines configured")
        _reject(incoming_file, NO_ENGINES_MESSAGE)
        await session.commit()
        return incoming_file

    incoming_file.status = ItemStatus.processing.value
    await session.commit()
    file_id = incoming_file.id
    logging.info(f"Started OCR for IncomingFile {file_id} ({incoming_file.filename})")

    try:
        result = await ocr.process_incoming_file(session, incoming_file, user_email)
        _apply_result(incoming_file, result)
    except Exception as e:
        logging.exception(f"OCR processing failed for IncomingFile {file_id}")
        # A failed write leaves the session unusable until rolled back.
        # Rollback expires the file, reload it before rejecting.
        await session.rollback()
        await session.refresh(incoming_file)
        _reject(incoming_file, f"OCR processing failed: {e}")

    await session.commit()
    logging.info(f"IncomingFile {file_id} OCR finished with status {incoming_file.status}")
    return incoming_file


async def retry_ocr_processing(
    session: AsyncSession,
    file_id: int,
    user_email: str,
    ocr: OcrService = ocr_service
) -> Optional[IncomingFile]:
    """Drop previous OCR results and run the whole workflow again"""
    user = await get_user_by_email(session, user_email)
    if not user:
        logging.warning(f"OCR retry refused: user {user_email} not found")
        return None

    incoming_file = await session.get(IncomingFile, file_id)
    if not incoming_file or incoming_file.user_id != user.id:
        logging.warning(f"OCR retry refused: IncomingFile {file_id} not found for {user_email}")
        return None

    await ocr.initialize()

    if not ocr.has_available_engines():
        _reject(incoming_file, NO_ENGINES_MESSAGE)
        await session.commit()
        return incoming_file

    logging.info(f"Retrying OCR for IncomingFile {file_id}")
    _clear_ocr_results(incoming_file)
    await session.commit()

    return await process_incoming_file(session, incoming_file, user_email, ocr)


async def is_ocr_processing_available(ocr: OcrService = ocr_service) -> bool:
    await ocr.initialize()
    return ocr.has_available_engines()


async def get_available_ocr_engines(ocr: OcrService = ocr_service) -> List[str]:
    await ocr.initialize()
    return ocr.get_available_engine_names()
