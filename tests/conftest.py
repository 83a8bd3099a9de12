"""
Shared fixtures: a throwaway SQLite database per test, the in-memory
event broker with recording sockets, and an HTTP client bound to the app.
"""

import os

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PUBLIC_DIRECTORY"] = "does-not-exist"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from milkcafe import models  # noqa: F401
from milkcafe.database import Base, get_db
from milkcafe.main import app
from milkcafe.services.realtime import InMemoryEventBroker, get_event_broker


class FakeWebSocket:
    """Records messages pushed by a broker."""

    def __init__(self, fail: bool = False):
        self.accepted = False
        self.messages: list[dict] = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(message)

    def events(self, name: str) -> list[dict]:
        return [m for m in self.messages if m["event"] == name]


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'milk.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def broker():
    return InMemoryEventBroker()


@pytest.fixture
async def socket(broker):
    ws = FakeWebSocket()
    await broker.register(ws)
    return ws


@pytest.fixture
async def client(session_maker, broker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_broker] = lambda: broker

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def login(client: AsyncClient, email: str, password: str = None) -> dict:
    """Log in (provisioning on first use) and return the response body."""
    body = {"email": email}
    if password is not None:
        body["password"] = password
    response = await client.post("/api/auth/login", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
