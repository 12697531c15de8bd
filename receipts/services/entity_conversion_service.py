"""
Entity Conversion Service - moves a document between its shapes.

IncomingFile -> Bill / Receipt and back. The new row, its copied OCR history
and the removal of the old row are committed together, a failure leaves
the database as it was.
"""
import logging
from typing import Optional, Tuple, Type, Union
from sqlalchemy.ext.asyncio import AsyncSession

from receipts.database.models import Bill, EntityType, IncomingFile, ItemStatus, Receipt, User
from receipts.services.ocr_attempt_service import transfer_ocr_history
from receipts.services.user_service import get_user_by_email

Document = Union[IncomingFile, Bill, Receipt]

OCR_FIELDS = (
    "ocr_raw_json",
    "extracted_amount",
    "extracted_date",
    "extracted_provider",
    "ocr_processed_at",
    "ocr_error_message",
)


def _document_fields(source: Document) -> dict:
    """Filename, path, upload date, checksum and OCR bundle of a document"""
    fields = {name: getattr(source, name) for name in ("filename", "file_path", "checksum") + OCR_FIELDS}
    fields["user_id"] = source.user_id
    if source.upload_date is not None:
        fields["upload_date"] = source.upload_date
    return fields


async def _get_owned(
    session: AsyncSession,
    model: Type[Document],
    entity_id: int,
    user_email: str
) -> Tuple[Optional[User], Optional[Document]]:
    user = await get_user_by_email(session, user_email)
    if not user:
        logging.warning(f"User {user_email} not found")
        return None, None

    entity = await session.get(model, entity_id)
    # Foreign documents look exactly like missing ones
    if not entity or entity.user_id != user.id:
        logging.warning(f"{model.__name__} {entity_id} not found for {user_email}")
        return user, None

    return user, entity


async def _replace(
    session: AsyncSession,
    source: Document,
    source_type: EntityType,
    target: Document,
    target_type: EntityType,
    user_email: str
) -> Document:
    source_id = source.id
    try:
        session.add(target)
        await session.flush()
        await transfer_ocr_history(session, source_type, source_id, target_type, target.id, user_email, commit=False)
        await session.delete(source)
        await session.commit()
    except Exception:
        logging.exception(f"Conversion of {source_type.value} {source_id} to {target_type.value} failed, rolling back")
        await session.rollback()
        raise

    logging.info(f"Converted {source_type.value} {source_id} to {target_type.value} {target.id}")
    return target


async def convert_incoming_file_to_bill(session: AsyncSession, file_id: int, user_email: str) -> Optional[Bill]:
    _, incoming_file = await _get_owned(session, IncomingFile, file_id, user_email)
    if not incoming_file:
        return None

    bill = Bill(
        **_document_fields(incoming_file),
        status=ItemStatus.pending.value,
        original_incoming_file_id=incoming_file.id
    )
    return await _replace(session, incoming_file, EntityType.incoming_file, bill, EntityType.bill, user_email)


async def convert_incoming_file_to_receipt(session: AsyncSession, file_id: int, user_email: str) -> Optional[Receipt]:
    _, incoming_file = await _get_owned(session, IncomingFile, file_id, user_email)
    if not incoming_file:
        return None

    receipt = Receipt(
        **_document_fields(incoming_file),
        status=ItemStatus.pending.value,
        original_incoming_file_id=incoming_file.id
    )
    return await _replace(session, incoming_file, EntityType.incoming_file, receipt, EntityType.receipt, user_email)


def _incoming_file_from(source: Document) -> IncomingFile:
    fields = _document_fields(source)
    # checksum is mandatory on incoming files
    fields["checksum"] = fields["checksum"] or ""
    return IncomingFile(**fields, status=ItemStatus.pending.value)


async def revert_bill_to_incoming_file(session: AsyncSession, bill_id: int, user_email: str) -> Optional[IncomingFile]:
    _, bill = await _get_owned(session, Bill, bill_id, user_email)
    if not bill:
        return None

    incoming_file = _incoming_file_from(bill)
    return await _replace(session, bill, EntityType.bill, incoming_file, EntityType.incoming_file, user_email)


async def revert_receipt_to_incoming_file(session: AsyncSession, receipt_id: int, user_email: str) -> Optional[IncomingFile]:
    _, receipt = await _get_owned(session, Receipt, receipt_id, user_email)
    if not receipt:
        return None

    if not receipt.has_file_metadata:
        logging.warning(f"Receipt {receipt_id} has no file metadata, cannot revert to IncomingFile")
        return None

    incoming_file = _incoming_file_from(receipt)
    return await _replace(session, receipt, EntityType.receipt, incoming_file, EntityType.incoming_file, user_email)


async def can_revert_to_incoming_file(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    user_email: str
) -> bool:
    if entity_type == EntityType.bill:
        _, bill = await _get_owned(session, Bill, entity_id, user_email)
        return bill is not None and bill.original_incoming_file_id is not None

    if entity_type == EntityType.receipt:
        _, receipt = await _get_owned(session, Receipt, entity_id, user_email)
        return receipt is not None and receipt.has_file_metadata

    # Incoming file is already the base shape
    return False
