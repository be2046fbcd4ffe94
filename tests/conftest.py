import os
import sys
from datetime import datetime, timedelta, timezone

# Ensure Python path includes project root for `import app`
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Test environment must be in place before app.config is imported
import app.conftest  # noqa: F401,E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.slots.models import SlotStatus  # noqa: E402
from app.core.swaps.engine import Actor, NegotiationEngine  # noqa: E402
from app.core.swaps.locks import LocalSlotLocks  # noqa: E402
from app.core.users.models import User  # noqa: E402
from app.db.base import (  # noqa: E402
    async_session_context,
    async_session_factory,
    create_db_and_tables,
    drop_db_and_tables,
)

BASE_TIME = datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc)


def at(hours: float, duration: float = 1.0) -> tuple[datetime, datetime]:
    """(start, end) ``hours`` after BASE_TIME."""
    start = BASE_TIME + timedelta(hours=hours)
    return start, start + timedelta(hours=duration)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    await create_db_and_tables()
    yield
    await drop_db_and_tables()


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_context() as session:
        yield session


@pytest_asyncio.fixture
async def users() -> dict[str, User]:
    """alice, bob and carol, committed."""
    async with async_session_context() as session:
        created = {name: User(id=name, name=name.capitalize()) for name in ("alice", "bob", "carol")}
        session.add_all(created.values())
    return created


@pytest.fixture
def alice(users) -> Actor:
    return Actor(user_id="alice", name="Alice")


@pytest.fixture
def bob(users) -> Actor:
    return Actor(user_id="bob", name="Bob")


@pytest.fixture
def carol(users) -> Actor:
    return Actor(user_id="carol", name="Carol")


@pytest.fixture
def engine() -> NegotiationEngine:
    return NegotiationEngine(async_session_factory, LocalSlotLocks(), lock_timeout=1.0)


@pytest.fixture
def make_slot(engine):
    """Creates a slot through the engine; SWAPPABLE unless told otherwise."""
    async def _make(actor: Actor, title: str, hours: float = 0, status: SlotStatus = SlotStatus.SWAPPABLE):
        start, end = at(hours)
        return await engine.create_slot(actor, title, start, end, status=status)
    return _make


@pytest_asyncio.fixture
async def client():
    from app.main import app
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login(client):
    """Logs in through the development endpoint and returns auth headers."""
    async def _login(user_id: str, name: str | None = None) -> dict[str, str]:
        res = await client.post("/v1/auth/login/test", json={"userId": user_id, "name": name})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['access_token']}"}
    return _login
