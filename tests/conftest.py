import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PROVIDER_BASE_URL"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["OPS_TOKEN"] = ""
os.environ["MONITOR_TIMEZONE"] = "UTC"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="tourwatch-logs-"))

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tourwatch.database import Base
from tourwatch.models.monitoring import MonitoredSearch, SavedSearchQuery
from tourwatch.schemas.monitoring import NotifyConditions
from tourwatch.services.dispatcher import Dispatcher
from tourwatch.services.errors import ProviderError
from tourwatch.services.notification_channel import DeliveryResult
from tourwatch.services.offers import CandidateResult

NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)

SCENARIO_PRIORITIES = {"starRating": 10, "beachLine": 10, "mealType": 9}


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # Let SQLAlchemy own BEGIN so SAVEPOINTs nest properly on sqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


def make_candidate(
    external_id: str,
    price: float,
    stars: int = 5,
    beach_line: int = 1,
    meal: str = "all_inclusive",
    availability: str | None = "available",
    provider: str = "leveltravel",
    **attributes,
) -> CandidateResult:
    return CandidateResult(
        provider=provider,
        external_id=external_id,
        price=price,
        availability=availability,
        hotel=f"Hotel {external_id}",
        destination="Antalya",
        link=f"https://tours.example/{external_id}",
        attributes={"stars": stars, "beach_line": beach_line, "meal_type": meal, **attributes},
    )


async def create_search(
    db: AsyncSession,
    owner_id: str = "42",
    conditions: NotifyConditions | dict | None = None,
    monitor_until: datetime | None = None,
    priorities: dict | None = None,
    **query_fields,
) -> MonitoredSearch:
    fields = {
        "raw_text": "beach holiday in Turkey",
        "destinations": ["Turkey"],
        "adults": 2,
        "children": 0,
        "budget": Decimal("150000"),
        "budget_type": "total",
        "currency": "RUB",
        "priorities": SCENARIO_PRIORITIES if priorities is None else priorities,
    }
    fields.update(query_fields)
    query = SavedSearchQuery(owner_id=owner_id, **fields)
    db.add(query)
    await db.flush()

    if isinstance(conditions, NotifyConditions):
        stored = conditions.to_storage()
    elif conditions is None:
        stored = NotifyConditions().to_storage()
    else:
        stored = conditions

    search = MonitoredSearch(
        owner_id=owner_id,
        saved_query_id=query.id,
        monitor_until=monitor_until or NOW + timedelta(days=30),
        is_active=True,
        is_paused=False,
        notify_conditions=stored,
        checks_count=0,
        notifications_count=0,
    )
    search.saved_query = query
    db.add(search)
    await db.commit()
    return search


class FakeProvider:
    """Returns the configured offers, raises the configured error, or hangs."""

    def __init__(self, results=None, error: Exception | None = None, delay: float = 0):
        self.results = list(results or [])
        self.error = error
        self.delay = delay
        self.calls = 0

    async def search(self, query):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.results)


class FakeChannel:
    def __init__(self, fail: bool = False, raise_error: bool = False, delay: float = 0):
        self.fail = fail
        self.raise_error = raise_error
        self.delay = delay
        self.delivered = []

    async def deliver(self, event):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_error:
            raise RuntimeError("channel exploded")
        self.delivered.append(event)
        if self.fail:
            return DeliveryResult(status="failed", error="chat not found")
        return DeliveryResult(status="sent")


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
def fake_dispatcher(channel):
    return Dispatcher(channel=channel)


@pytest.fixture()
def provider_down():
    return FakeProvider(error=ProviderError("aggregator unreachable"))
