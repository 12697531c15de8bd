import pytest
from sqlalchemy import select

from receipts import cron
from receipts.database.models import Bill, IncomingFile, ItemStatus
from conftest import FakeEngine, success_result


class _SessionFactory:
    """Hands the test session to code that opens AsyncSessionLocal()"""

    def __init__(self, session):
        self.session = session

    def __call__(self):
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_jobs_run_ocr_then_dispatch(async_session, owner, make_incoming_file, monkeypatch):
    from receipts.services import incoming_file_ocr_service
    from receipts.services.ocr import OcrService

    incoming_file = await make_incoming_file(owner)
    service = OcrService([FakeEngine("A", result=success_result(amount=15.0))])
    real_process = incoming_file_ocr_service.process_incoming_file

    async def process_with_fake_engine(session, item, email):
        return await real_process(session, item, email, ocr=service)

    monkeypatch.setattr(cron, "AsyncSessionLocal", _SessionFactory(async_session))
    monkeypatch.setattr(cron, "process_incoming_file", process_with_fake_engine)

    await cron.pending_ocr_job()
    assert incoming_file.status == ItemStatus.approved.value

    await cron.dispatch_job()
    bill = (await async_session.execute(Bill.__table__.select())).first()
    assert bill.original_incoming_file_id == incoming_file.id
    assert bill.extracted_amount == 15.0
    assert (await async_session.get(IncomingFile, incoming_file.id)) is incoming_file


@pytest.mark.asyncio
async def test_failed_file_does_not_block_the_rest_of_the_batch(async_session, owner, make_incoming_file, monkeypatch):
    from receipts.services import incoming_file_ocr_service
    from receipts.services.ocr import OcrService

    broken = await make_incoming_file(owner, checksum="broken")
    healthy = await make_incoming_file(owner, checksum="healthy")
    broken_id, healthy_id, owner_id = broken.id, healthy.id, owner.id
    service = OcrService([FakeEngine("A", result=success_result(amount=7.0))])
    real_process = incoming_file_ocr_service.process_incoming_file

    async def process_or_break(session, item, email):
        if item.id == broken_id:
            # A mandatory column left empty fails the commit
            session.add(IncomingFile(user_id=owner_id, filename="x.jpg", file_path="x.jpg", checksum=None))
            await session.commit()
        return await real_process(session, item, email, ocr=service)

    monkeypatch.setattr(cron, "AsyncSessionLocal", _SessionFactory(async_session))
    monkeypatch.setattr(cron, "process_incoming_file", process_or_break)

    await cron.pending_ocr_job()

    statuses = dict((await async_session.execute(select(IncomingFile.id, IncomingFile.status))).all())
    assert statuses == {broken_id: ItemStatus.pending.value, healthy_id: ItemStatus.approved.value}
