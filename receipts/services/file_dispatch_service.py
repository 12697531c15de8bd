"""
File Dispatch Service - promotes approved, OCR complete incoming files to bills
without user interaction (runs from the scheduler).
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from receipts.database.models import Bill, IncomingFile, ItemStatus


@dataclass
class DispatchStatistics:
    total_approved_files: int
    ready_for_dispatch: int
    needs_manual_review: int


def is_file_ready_for_dispatch(incoming_file: IncomingFile) -> bool:
    """File must be approved and have OCR results"""
    return (
        incoming_file.status == ItemStatus.approved.value
        and incoming_file.ocr_raw_json is not None
        and incoming_file.ocr_processed_at is not None
    )


def _bill_from(incoming_file: IncomingFile) -> Bill:
    return Bill(
        user_id=incoming_file.user_id,
        filename=incoming_file.filename,
        file_path=incoming_file.file_path,
        upload_date=incoming_file.upload_date,
        checksum=incoming_file.checksum,
        # Source file was approved, so is the bill
        status=ItemStatus.approved.value,
        ocr_raw_json=incoming_file.ocr_raw_json,
        extracted_amount=incoming_file.extracted_amount,
        extracted_date=incoming_file.extracted_date,
        extracted_provider=incoming_file.extracted_provider,
        ocr_processed_at=incoming_file.ocr_processed_at,
        ocr_error_message=incoming_file.ocr_error_message,
        original_incoming_file_id=incoming_file.id
    )


async def dispatch_incoming_file(session: AsyncSession, incoming_file: IncomingFile) -> Optional[Bill]:
    if not is_file_ready_for_dispatch(incoming_file):
        logging.warning(f"IncomingFile {incoming_file.id} is not ready for dispatch (status: {incoming_file.status})")
        return None

    bill = _bill_from(incoming_file)
    session.add(bill)
    await session.commit()

    logging.info(f"Dispatched IncomingFile {incoming_file.id} to Bill {bill.id}")
    return bill


async def _approved_files(session: AsyncSession) -> List[IncomingFile]:
    stmt = select(IncomingFile).where(IncomingFile.status == ItemStatus.approved.value).order_by(IncomingFile.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _already_dispatched(session: AsyncSession) -> Set[Tuple[int, Optional[str]]]:
    """
    (incoming file id, checksum) pairs that already have a Bill.
    Ids alone are not enough, some backends reuse the id of a deleted row.
    """
    stmt = (
        select(Bill.original_incoming_file_id, Bill.checksum)
        .where(Bill.original_incoming_file_id.is_not(None))
    )
    result = await session.execute(stmt)
    return {tuple(row) for row in result.all()}


async def dispatch_all_ready_files(session: AsyncSession) -> List[Bill]:
    """Dispatch every ready file, one failing file does not stop the batch"""
    logging.info("Starting batch dispatch of ready IncomingFiles")

    approved_files = await _approved_files(session)
    dispatched = await _already_dispatched(session)
    ready_files = [
        f for f in approved_files
        if is_file_ready_for_dispatch(f) and (f.id, f.checksum) not in dispatched
    ]
    logging.info(f"Found {len(ready_files)} IncomingFiles ready for dispatch out of {len(approved_files)} approved")

    bills = []
    failed = 0
    for file_id in [f.id for f in ready_files]:
        try:
            # Re-read: a rollback of a previous file expires everything loaded
            incoming_file = await session.get(IncomingFile, file_id)
            bill = await dispatch_incoming_file(session, incoming_file)
            if bill:
                bills.append(bill)
        except Exception as e:
            logging.error(f"Failed to dispatch IncomingFile {file_id}: {e}")
            await session.rollback()
            failed += 1

    if failed:
        for bill in bills:
            await session.refresh(bill)

    logging.info(f"Batch dispatch finished: {len(bills)} Bills created")
    return bills


async def get_dispatch_statistics(session: AsyncSession) -> DispatchStatistics:
    approved_files = await _approved_files(session)
    ready = sum(1 for f in approved_files if is_file_ready_for_dispatch(f))

    return DispatchStatistics(
        total_approved_files=len(approved_files),
        ready_for_dispatch=ready,
        needs_manual_review=len(approved_files) - ready
    )


async def convert_to_bill_and_return(session: AsyncSession, file_id: int) -> Optional[Tuple[IncomingFile, Bill]]:
    incoming_file = await session.get(IncomingFile, file_id)
    if not incoming_file:
        logging.warning(f"IncomingFile {file_id} not found")
        return None

    bill = await dispatch_incoming_file(session, incoming_file)
    if not bill:
        logging.warning(f"Failed to convert IncomingFile {file_id} to Bill")
        return None

    return incoming_file, bill
