import asyncio
import os
import sys

# Engine in receipts.database.core is created on import, point it to SQLite first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from receipts.database.core import Base
from receipts.database.models import IncomingFile, User
from receipts.services.ocr import OcrEngine, OcrResult

OWNER_EMAIL = "owner@example.com"
STRANGER_EMAIL = "stranger@example.com"


@pytest_asyncio.fixture
async def async_session():
    # Use in-memory SQLite for tests
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def owner(async_session):
    user = User(email=OWNER_EMAIL, name="Owner")
    async_session.add(user)
    await async_session.commit()
    return user


@pytest_asyncio.fixture
async def stranger(async_session):
    user = User(email=STRANGER_EMAIL, name="Stranger")
    async_session.add(user)
    await async_session.commit()
    return user


@pytest.fixture
def receipt_image(tmp_path):
    path = tmp_path / "r.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0 fake jpeg")
    return path


@pytest.fixture
def make_incoming_file(async_session, receipt_image):
    async def _make(user, **fields):
        values = dict(
            user_id=user.id,
            filename="r.jpg",
            file_path=str(receipt_image),
            checksum="abc",
        )
        values.update(fields)
        incoming_file = IncomingFile(**values)
        async_session.add(incoming_file)
        await async_session.commit()
        return incoming_file
    return _make


class FakeEngine(OcrEngine):
    """Scripted engine: returns a result, raises or hangs"""

    def __init__(self, name, available=True, result=None, error=None, delay=0):
        self._name = name
        self.available = available
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    def is_available(self):
        return self.available

    @property
    def name(self):
        return self._name

    async def process_file(self, file_path):
        self.calls.append(file_path)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def success_result(amount=42.5, provider="Corner Shop"):
    from datetime import date
    return OcrResult.success_result(
        raw_json='{"provider": "Corner Shop", "amount": 42.5}',
        provider=provider,
        amount=amount,
        extracted_date=date(2024, 3, 15),
        currency="USD"
    )


@pytest.fixture
def fake_engine():
    return FakeEngine
