"""
Shared fixtures.

    • run_db        — run a coroutine against a fresh in-memory SQLite database
    • FakeGateway   — records sends, fails for chosen recipients
    • CountingCache — in-memory fixed-window counter for the rate limiter
    • client        — TestClient over an app wired with fake gateways
    • make_user     — seed a user through the app's database, get auth headers
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from backend.app.core.config import Settings
from backend.app.core.container import build_container
from backend.app.core.database import Database
from backend.app.core.errors import ChannelDeliveryFailure
from backend.app.core.security import create_access_token
from backend.app.emergency.dispatcher import NotificationDispatcher
from backend.app.emergency.tables import User
from backend.app.main import create_app

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
SQLITE_URL = "sqlite+aiosqlite:///:memory:"


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "ENVIRONMENT": "testing",
        "DATABASE_URL": SQLITE_URL,
        "DATABASE_CREATE_TABLES": True,
        "ALERT_RATE_LIMIT_ENABLED": False,
        "JWT_SECRET": TEST_SECRET,
        "LOG_LEVEL": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


class FakeGateway:
    """Stand-in for SmsGateway / EmailGateway / PushGateway."""

    def __init__(self, channel: str, fail_for: Iterable[Any] = (), fail_all: bool = False):
        self.channel = channel
        self.provider = "fake"
        self.is_simulated = False
        self.fail_for = set(fail_for)
        self.fail_all = fail_all
        self.sent: List[Tuple[Any, ...]] = []

    async def send(self, target: Any, *args: Any) -> str:
        if self.fail_all or target in self.fail_for:
            raise ChannelDeliveryFailure(self.channel, "provider rejected")
        self.sent.append((target, *args))
        return f"{self.channel}-{len(self.sent)}"

    async def close(self) -> None:
        return None

    @property
    def targets(self) -> List[Any]:
        return [s[0] for s in self.sent]


class CountingCache:
    """In-memory stand-in for RedisCache.incr_window."""

    def __init__(self, available: bool = True):
        self.available = available
        self.counts: Dict[str, int] = {}

    async def incr_window(self, key: str, window_seconds: int) -> Optional[int]:
        if not self.available:
            return None
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]


# ═══════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════

async def create_user(session, *, name: str = "Ada Obi", email: str = "ada@example.com",
                      phone: Optional[str] = "+15550001111", is_active: bool = True) -> User:
    user = User(name=name, email=email, phone=phone, is_active=is_active)
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
def run_db() -> Callable[[Callable[..., Awaitable[Any]]], Any]:
    """
    Run `fn(session)` on a fresh in-memory database inside one event loop.

    Usage:
        result = run_db(lambda session: add_contact(session, 1, {...}))
    """

    def _run(fn: Callable[..., Awaitable[Any]]) -> Any:
        async def _main() -> Any:
            database = Database(SQLITE_URL)
            await database.init_models()
            try:
                async with database.session() as session:
                    return await fn(session)
            finally:
                await database.close()

        return asyncio.run(_main())

    return _run


# ═══════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def gateways() -> Tuple[FakeGateway, FakeGateway, FakeGateway]:
    return FakeGateway("sms"), FakeGateway("email"), FakeGateway("push")


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def container(test_settings, gateways):
    sms, email, push = gateways
    return build_container(test_settings, dispatcher=NotificationDispatcher(sms, email, push))


@pytest.fixture
def client(test_settings, container):
    app = create_app(test_settings, container)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(client, container, test_settings):
    """Seed a user; returns (user_id, Authorization headers)."""

    async def _insert(fields: Dict[str, Any]) -> int:
        async with container.database.session() as session:
            user = await create_user(session, **fields)
            await session.commit()
            return user.id

    def _make(**fields: Any) -> Tuple[int, Dict[str, str]]:
        user_id = client.portal.call(_insert, fields)
        token = create_access_token(test_settings, user_id)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make
