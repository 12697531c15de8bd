import argparse
import asyncio
import logging
import sys

from receipts.config import config
from receipts.cron import scheduler_loop, dispatch_job, pending_ocr_job
from receipts.database.core import init_models
from receipts.services.ocr import ocr_service


async def main(run_once: bool = False, create_tables: bool = False):
    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        stream=sys.stdout,
    )

    if create_tables:
        await init_models()
        logging.info("Database tables created.")

    await ocr_service.initialize()
    engines = ocr_service.get_available_engine_names()
    logging.info(f"Available OCR engines: {', '.join(engines) if engines else 'none'}")

    if run_once:
        await pending_ocr_job()
        await dispatch_job()
        return

    logging.info("Starting receipts worker...")
    await scheduler_loop()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Receipts OCR and dispatch worker")
    parser.add_argument("--once", action="store_true", help="run OCR and dispatch jobs once and exit")
    parser.add_argument("--create-tables", action="store_true", help="create tables from models (development)")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    try:
        asyncio.run(main(run_once=args.once, create_tables=args.create_tables))
    except (KeyboardInterrupt, SystemExit):
        logging.info("Worker stopped.")
