import asyncio
import logging
from datetime import datetime, timedelta
from sqlalchemy import select
from receipts.config import config
from receipts.database.core import AsyncSessionLocal
from receipts.database.models import IncomingFile, ItemStatus, User
from receipts.services.incoming_file_ocr_service import process_incoming_file
from receipts.services.file_dispatch_service import dispatch_all_ready_files, get_dispatch_statistics


async def pending_ocr_job():
    """Run OCR for uploaded files still waiting in pending"""
    logging.info("Running pending OCR job...")

    async with AsyncSessionLocal() as session:
        stmt = (
            select(IncomingFile, User.email)
            .join(User, IncomingFile.user_id == User.id)
            .where(IncomingFile.status == ItemStatus.pending.value)
            .where(IncomingFile.ocr_processed_at.is_(None))
            .order_by(IncomingFile.id)
        )
        result = await session.execute(stmt)
        pending = [(f.id, email) for f, email in result.all()]

        for file_id, email in pending:
            try:
                # Re-read: a rollback of a previous file expires everything loaded
                incoming_file = await session.get(IncomingFile, file_id)
                await process_incoming_file(session, incoming_file, email)
            except Exception as e:
                logging.error(f"Error running OCR for IncomingFile {file_id}: {e}")
                await session.rollback()

    logging.info(f"Pending OCR job finished ({len(pending)} files).")


async def dispatch_job():
    logging.info("Running dispatch job...")

    async with AsyncSessionLocal() as session:
        stats = await get_dispatch_statistics(session)
        logging.info(
            f"Approved files: {stats.total_approved_files}, ready: {stats.ready_for_dispatch}, "
            f"manual review: {stats.needs_manual_review}"
        )
        bills = await dispatch_all_ready_files(session)

    logging.info(f"Dispatch job finished, {len(bills)} bills created.")


async def scheduler_loop(interval_minutes: int = None):
    """Run OCR and dispatch jobs every DISPATCH_INTERVAL_MINUTES."""
    interval = timedelta(minutes=interval_minutes or config.DISPATCH_INTERVAL_MINUTES)

    logging.info("Scheduler started.")

    # Initial delay to settle startup
    await asyncio.sleep(10)

    while True:
        try:
            await pending_ocr_job()
            await dispatch_job()

            next_run = datetime.now() + interval
            logging.info(f"Next scheduler run at {next_run:%Y-%m-%d %H:%M:%S}")
            await asyncio.sleep(interval.total_seconds())

        except Exception as e:
            logging.error(f"Error in scheduler loop: {e}")
            await asyncio.sleep(60)  # Prevent tight loop on error
