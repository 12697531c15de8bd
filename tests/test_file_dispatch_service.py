from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func

from receipts.database.models import Bill, IncomingFile, ItemStatus
from receipts.services import file_dispatch_service
from receipts.services.file_dispatch_service import (
    is_file_ready_for_dispatch,
    dispatch_incoming_file,
    dispatch_all_ready_files,
    get_dispatch_statistics,
    convert_to_bill_and_return,
)

PROCESSED_AT = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


def _ready_fields(**overrides):
    fields = dict(
        status=ItemStatus.approved.value,
        ocr_raw_json='{"amount": 42.5}',
        ocr_processed_at=PROCESSED_AT,
        extracted_amount=42.5,
        extracted_provider="Power Co",
    )
    fields.update(overrides)
    return fields


async def _bill_count(session):
    result = await session.execute(select(func.count()).select_from(Bill))
    return result.scalar()


@pytest.mark.parametrize("overrides, ready", [
    ({}, True),
    ({"status": ItemStatus.pending.value}, False),
    ({"status": ItemStatus.rejected.value}, False),
    ({"ocr_raw_json": None}, False),
    ({"ocr_processed_at": None}, False),
])
def test_is_file_ready_for_dispatch(overrides, ready):
    incoming_file = IncomingFile(filename="r.jpg", file_path="r.jpg", checksum="abc", **_ready_fields(**overrides))

    assert is_file_ready_for_dispatch(incoming_file) is ready


@pytest.mark.asyncio
async def test_dispatch_not_ready_file_does_nothing(async_session, owner, make_incoming_file):
    incoming_file = await make_incoming_file(owner, **_ready_fields(ocr_raw_json=None))

    assert await dispatch_incoming_file(async_session, incoming_file) is None
    assert await _bill_count(async_session) == 0


@pytest.mark.asyncio
async def test_dispatch_creates_approved_bill(async_session, owner, make_incoming_file):
    incoming_file = await make_incoming_file(owner, **_ready_fields())

    bill = await dispatch_incoming_file(async_session, incoming_file)

    assert bill.id is not None
    assert bill.status == ItemStatus.approved.value
    assert bill.user_id == owner.id
    assert bill.filename == "r.jpg"
    assert bill.file_path == incoming_file.file_path
    assert bill.checksum == "abc"
    assert bill.extracted_amount == 42.5
    assert bill.extracted_provider == "Power Co"
    assert bill.ocr_raw_json == '{"amount": 42.5}'
    assert bill.original_incoming_file_id == incoming_file.id


@pytest.mark.asyncio
async def test_dispatch_all_ready_files(async_session, owner, make_incoming_file):
    first = await make_incoming_file(owner, **_ready_fields())
    second = await make_incoming_file(owner, **_ready_fields(extracted_amount=10.0))
    await make_incoming_file(owner, **_ready_fields(ocr_processed_at=None))
    await make_incoming_file(owner)

    bills = await dispatch_all_ready_files(async_session)

    assert sorted(b.original_incoming_file_id for b in bills) == sorted([first.id, second.id])
    # Next run does not duplicate bills
    assert await dispatch_all_ready_files(async_session) == []
    assert await _bill_count(async_session) == 2


@pytest.mark.asyncio
async def test_dispatch_all_ignores_bill_of_reused_file_id(async_session, owner, make_incoming_file):
    incoming_file = await make_incoming_file(owner, checksum="new-content", **_ready_fields())
    # Bill left behind by a deleted file that had the same id
    async_session.add(Bill(
        user_id=owner.id,
        filename="old.jpg",
        file_path="old.jpg",
        checksum="old-content",
        original_incoming_file_id=incoming_file.id
    ))
    await async_session.commit()

    bills = await dispatch_all_ready_files(async_session)

    assert [(b.original_incoming_file_id, b.checksum) for b in bills] == [(incoming_file.id, "new-content")]
    assert await dispatch_all_ready_files(async_session) == []


@pytest.mark.asyncio
async def test_dispatch_all_continues_after_failure(async_session, owner, make_incoming_file, monkeypatch):
    broken = await make_incoming_file(owner, **_ready_fields())
    healthy = await make_incoming_file(owner, **_ready_fields())
    broken_id = broken.id
    healthy_id = healthy.id
    real_dispatch = file_dispatch_service.dispatch_incoming_file

    async def flaky_dispatch(session, incoming_file):
        if incoming_file.id == broken_id:
            raise RuntimeError("storage offline")
        return await real_dispatch(session, incoming_file)

    monkeypatch.setattr(file_dispatch_service, "dispatch_incoming_file", flaky_dispatch)

    bills = await dispatch_all_ready_files(async_session)

    assert [b.original_incoming_file_id for b in bills] == [healthy_id]


@pytest.mark.asyncio
async def test_dispatch_statistics(async_session, owner, make_incoming_file):
    await make_incoming_file(owner, **_ready_fields())
    await make_incoming_file(owner, **_ready_fields(ocr_raw_json=None))
    await make_incoming_file(owner, **_ready_fields(status=ItemStatus.rejected.value))

    stats = await get_dispatch_statistics(async_session)

    assert stats.total_approved_files == 2
    assert stats.ready_for_dispatch == 1
    assert stats.needs_manual_review == 1


@pytest.mark.asyncio
async def test_convert_to_bill_and_return(async_session, owner, make_incoming_file):
    ready = await make_incoming_file(owner, **_ready_fields())
    pending = await make_incoming_file(owner)

    incoming_file, bill = await convert_to_bill_and_return(async_session, ready.id)

    assert incoming_file is ready
    assert bill.original_incoming_file_id == ready.id
    assert await convert_to_bill_and_return(async_session, pending.id) is None
    assert await convert_to_bill_and_return(async_session, 999) is None
