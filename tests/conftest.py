"""Shared test fixtures for Stablemate."""

from datetime import date, datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stablemate.models.database import Base
from stablemate.models.owner import Horse, OwnerProfile


class FakeClock:
    """Monotonic clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest.fixture
async def sample_owner(db_session) -> OwnerProfile:
    """Owner with a TJK id and two horses (one without a TJK id)."""
    owner = OwnerProfile(id="owner-1", user_id="user-1", name="Ayşe Yılmaz", official_ref="5432")
    db_session.add(owner)
    db_session.add_all([
        Horse(id="horse-1", owner_id="owner-1", name="KARAYEL", external_ref="90001"),
        Horse(id="horse-2", owner_id="owner-1", name="RÜZGAR", external_ref="90002"),
        Horse(id="horse-3", owner_id="owner-1", name="TAY", external_ref=None),
    ])
    await db_session.commit()
    return owner


@pytest.fixture
def owner_user() -> dict:
    return {"id": "user-1", "role": "OWNER", "owner_id": "owner-1"}


@pytest.fixture
def admin_user() -> dict:
    return {"id": "admin-1", "role": "ADMIN"}


@pytest.fixture
def raw_race_rows() -> list[dict]:
    """Owner race table rows as the parser emits them."""
    return [
        {
            "date": "05.03.2024",
            "horse_name": "KARAYEL",
            "city": "İstanbul",
            "distance": 1400,
            "surface": "Ç:Normal 3.3",
            "position": 2,
            "race_type": "Handikap 15",
            "prize_money": "85000",
            "jockey_name": "H. KARATAŞ",
            "registration_status": "Deklare",
        },
        {
            "date": "12.02.2024",
            "horse_name": "RÜZGAR",
            "city": "Ankara",
            "distance": 1200,
            "surface": "K:Normal",
            "position": 7,
            "race_type": "Maiden",
            "prize_money": None,
            "jockey_name": "A. ÇELİK",
            "registration_status": "Deklare",
        },
        {
            "date": "20.01.2024",
            "horse_name": "KARAYEL",
            "city": "İzmir",
            "distance": 1600,
            "surface": "Ç:Normal",
            "position": 1,
            "race_type": "Şartlı 3",
            "prize_money": "120000",
            "jockey_name": "H. KARATAŞ",
            "registration_status": "Deklare",
        },
    ]


@pytest.fixture
def raw_gallop_rows() -> list[dict]:
    return [
        {
            "date": "01.03.2024",
            "horse_id": "90001",
            "horse_name": "KARAYEL",
            "distances": {1400: "1.32.10", 400: "0.26.40"},
            "status": "R",
            "racecourse": "Veliefendi",
            "surface": "Kum",
            "jockey_name": "H. KARATAŞ",
        },
        {
            "date": "20.02.2024",
            "horse_id": "90001",
            "horse_name": "KARAYEL",
            "distances": {800: "0.52.30"},
            "status": "HÇ",
            "racecourse": "Veliefendi",
            "surface": "Çim",
            "jockey_name": None,
        },
    ]


@pytest.fixture
def mock_tjk_client(raw_race_rows, raw_gallop_rows):
    """TJK client whose fetches return canned raw rows."""
    client = MagicMock()
    client.fetch_owner_races = AsyncMock(return_value=raw_race_rows)
    client.fetch_horse_gallops = AsyncMock(return_value=raw_gallop_rows)
    client.search_owners = AsyncMock(return_value=[])
    client.search_horses = AsyncMock(return_value=[])
    return client


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 10, 12, 0, 0)


@pytest.fixture
def fixed_today() -> date:
    return date(2024, 3, 10)
