"""Pytest configuration and fixtures."""

from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from convocrm.infrastructure.cache import InMemoryTTLCache
from convocrm.infrastructure.partner_client import StatusSyncResult
from convocrm.infrastructure.telegram_client import ChatSendResult
from convocrm.persistence.database import Base, get_db
from convocrm.persistence.models import *  # noqa: F401, F403


class RecordingDispatcher:
    """Stands in for AutomationDispatcher and records every trigger."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []

    @property
    def triggers(self) -> list[str]:
        return [trigger for trigger, _, _ in self.calls]

    async def dispatch(self, trigger_type: str, entity_kind: str, entity: Any) -> int:
        self.calls.append((trigger_type, entity_kind, entity))
        return 0


class FakeTelegram:
    """Records Bot API calls instead of sending them."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: list[dict[str, Any]] = []
        self.reactions: list[tuple[Any, int, str | None]] = []
        self.answered: list[str] = []
        self._next_id = 1000

    def _result(self) -> ChatSendResult:
        if not self.ok:
            return ChatSendResult(ok=False, error="Forbidden: bot was blocked by the user")
        self._next_id += 1
        return ChatSendResult(ok=True, message_id=self._next_id)

    async def send_message(self, chat_id, text, reply_to_message_id=None, reply_markup=None):
        self.sent.append({
            "method": "sendMessage",
            "chat_id": chat_id,
            "text": text,
            "reply_to_message_id": reply_to_message_id,
            "reply_markup": reply_markup,
        })
        return self._result()

    async def _send_file(self, method, chat_id, data, filename, content_type, **kwargs):
        self.sent.append({"method": method, "chat_id": chat_id, "filename": filename, **kwargs})
        return self._result()

    async def send_photo(self, chat_id, data, filename, content_type, **kwargs):
        return await self._send_file("sendPhoto", chat_id, data, filename, content_type, **kwargs)

    async def send_document(self, chat_id, data, filename, content_type, **kwargs):
        return await self._send_file("sendDocument", chat_id, data, filename, content_type, **kwargs)

    async def send_voice(self, chat_id, data, filename, content_type, duration=None, **kwargs):
        return await self._send_file(
            "sendVoice", chat_id, data, filename, content_type, duration=duration, **kwargs
        )

    async def set_message_reaction(self, chat_id, message_id, emoji):
        self.reactions.append((chat_id, message_id, emoji))
        return True

    async def answer_callback_query(self, callback_query_id):
        self.answered.append(callback_query_id)
        return True


class FakeStorage:
    """In-memory object storage."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = (data, content_type)
        return f"https://storage.test/{path}"


class FakePartnerClient:
    """Records status pushes; user lookups answer from a dict."""

    def __init__(self, users: dict[str, str] | None = None, success: bool = True) -> None:
        self.users = users or {}
        self.success = success
        self.pushes: list[tuple[Any, str, str | None]] = []
        self.lookups: list[str] = []

    async def push_status_change(self, correlation_id, new_status, old_status=None):
        self.pushes.append((correlation_id, new_status, old_status))
        if self.success:
            return StatusSyncResult(success=True, attempts=1)
        return StatusSyncResult(success=False, error="HTTP 500", attempts=3)

    async def lookup_channel_user_id(self, partner_user_ref):
        self.lookups.append(partner_user_ref)
        return self.users.get(partner_user_ref)


@pytest.fixture
async def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def partner_client():
    return FakePartnerClient()


@pytest.fixture
def cache():
    return InMemoryTTLCache()


@pytest.fixture
async def client(session_factory, dispatcher, telegram, storage, partner_client, cache):
    """Async HTTP client against the app with external collaborators faked."""
    from convocrm.api import deps
    from convocrm.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_telegram_client] = lambda: telegram
    app.dependency_overrides[deps.get_object_storage] = lambda: storage
    app.dependency_overrides[deps.get_partner_client] = lambda: partner_client
    app.dependency_overrides[deps.get_cache] = lambda: cache

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
