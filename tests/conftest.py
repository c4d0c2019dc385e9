"""Shared fixtures for the calendar sync test suite.

The database is an in-memory SQLite (aiosqlite) with the real models;
Redis is replaced by an in-process fake that implements the parts of
``RedisClient`` the job tracker and notifier use. Providers are
``GoogleCalendarProvider`` subclasses that return scripted native events
instead of making HTTP calls.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.deps import get_job_tracker, get_notifier, get_registry
from app.config import Settings
from app.core.errors import ProviderAuthError
from app.core.notifications import ConnectionManager, get_connection_manager
from app.database import Base, get_db
from app.models import Event, User, UserIntegration
from app.providers.google import GoogleCalendarProvider
from app.providers.registry import ProviderRegistry
from app.services.job_runner import JobRunner
from app.services.job_tracker import JobTracker
from app.services.sync_service import SyncService

SQLITE_URL = "sqlite+aiosqlite:///:memory:"
USER_ID = "user-1"
USER_HEADERS = {"X-User-Id": USER_ID}


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=SQLITE_URL,
        google_client_id="google-client",
        google_client_secret="google-secret",
        google_redirect_uri="https://app.example.com/oauth/google",
        microsoft_client_id="ms-client",
        microsoft_client_secret="ms-secret",
        zoom_client_id="zoom-client",
        zoom_client_secret="zoom-secret",
        provider_sync_timeout_seconds=2.0,
        job_ttl_seconds=3600,
    )


# =============================================================================
# Database
# =============================================================================

def _make_engine():
    return create_async_engine(
        SQLITE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
async def engine():
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_context(session_factory):
    """Stand-in for ``get_db_context`` bound to the test database."""

    @asynccontextmanager
    async def context():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return context


@pytest.fixture
async def user(db) -> User:
    user = User(id=USER_ID, email="tester@example.com")
    db.add(user)
    await db.commit()
    return user


async def add_integration(
    db: AsyncSession,
    provider_type: str = "google",
    user_id: str = USER_ID,
    **overrides: Any,
) -> UserIntegration:
    values = {
        "user_id": user_id,
        "provider_type": provider_type,
        "provider_id": f"{provider_type}-account",
        "account_email": "tester@example.com",
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "scope": [],
        "primary_timezone": "America/New_York",
        "is_active": True,
    }
    values.update(overrides)
    integration = UserIntegration(**values)
    db.add(integration)
    await db.commit()
    return integration


async def add_event(
    db: AsyncSession,
    external_event_id: str,
    start: datetime,
    end: datetime,
    provider_type: str = "google",
    user_id: str = USER_ID,
    **overrides: Any,
) -> Event:
    values = {
        "user_id": user_id,
        "provider_type": provider_type,
        "external_event_id": external_event_id,
        "title": f"Event {external_event_id}",
        "start_date": start,
        "end_date": end,
        "timezone": "UTC",
        "status": "confirmed",
        "attendees": [],
    }
    values.update(overrides)
    event = Event(**values)
    db.add(event)
    await db.commit()
    return event


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Redis and notifications
# =============================================================================

class FakeRedis:
    """Dict-backed stand-in for ``RedisClient``; TTLs are recorded, not enforced."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.published: list[tuple[str, Any]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None, nx: bool = False) -> bool:
        if nx and key in self.data:
            return False
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def get_json(self, key: str) -> Optional[dict]:
        value = self.data.get(key)
        return json.loads(value) if value else None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.set(key, json.dumps(value, default=str), ttl)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        if self.data.get(key) != value:
            return False
        await self.delete(key)
        return True

    async def replace_if_equals(self, key: str, expected: str, value: str, ttl: Optional[int] = None) -> bool:
        if self.data.get(key) != expected:
            return False
        return await self.set(key, value, ttl)

    async def publish(self, channel: str, message: Any) -> int:
        self.published.append((channel, json.loads(json.dumps(message, default=str))))
        return 1


class RecordingNotifier:
    """Collects every payload pushed to a user."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []

    async def notify_user(self, user_id: str, payload: dict) -> int:
        self.sent.append((user_id, payload))
        return 1

    def payloads(self, event: str) -> list[dict]:
        return [payload["data"] for _, payload in self.sent if payload["event"] == event]

    def update_types(self) -> list[str]:
        return [data["type"] for data in self.updates()]

    def updates(self) -> list[dict]:
        return self.payloads("sync_update")

    def event_changes(self) -> list[tuple[str, str]]:
        """(action, title) of every pushed event change."""
        return [(data["action"], data["event"]["title"]) for data in self.payloads("event_updated")]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# Providers
# =============================================================================

def google_event(
    event_id: str,
    start: str,
    end: str,
    summary: str = "Meeting",
    **extra: Any,
) -> dict:
    """Native Google Calendar event; ``start``/``end`` are dates or dateTimes."""
    key = "date" if len(start) == 10 else "dateTime"
    native = {
        "id": event_id,
        "status": "confirmed",
        "summary": summary,
        "start": {key: start},
        "end": {key: end},
    }
    native.update(extra)
    return native


class FakeProvider(GoogleCalendarProvider):
    """
    Scripted adapter. Native events use Google's shape, so mapping goes
    through the real ``to_canonical``.
    """

    def __init__(self, provider_type: str = "google", settings: Optional[Settings] = None, events=None):
        super().__init__(settings=settings)
        self.provider_type = provider_type
        self.display_name = provider_type.title()
        self.events: list[dict] = list(events or [])
        self.list_errors: list[Exception] = []
        self.refresh_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.list_delay: float = 0.0
        self.list_calls = 0
        self.refresh_calls = 0
        self.created: list[Event] = []
        self.updated: list[str] = []
        self.deleted: list[str] = []

    async def authorize(self, code: str, redirect_uri: Optional[str] = None) -> UserIntegration:
        if code == "bad-code":
            raise ProviderAuthError(
                f"{self.display_name} rejected the authorization code (invalid_grant)",
                provider_type=self.provider_type,
            )
        return self._new_integration(
            {"access_token": f"{code}-access", "refresh_token": f"{code}-refresh", "expires_in": 3600},
            provider_id=f"{self.provider_type}-account",
            account_email="tester@example.com",
            primary_timezone="America/New_York",
        )

    async def list_events(self, integration, start, end) -> list[dict]:
        self.list_calls += 1
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_errors:
            raise self.list_errors.pop(0)
        return list(self.events)

    async def refresh_token(self, integration):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        integration.access_token = f"refreshed-{self.refresh_calls}"
        integration.expires_at = None
        return integration

    async def create_event(self, integration, event) -> str:
        if self.write_error is not None:
            raise self.write_error
        self.created.append(event)
        return f"{self.provider_type}-new-{len(self.created)}"

    async def update_event(self, integration, event) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.updated.append(event.external_event_id)

    async def delete_event(self, integration, external_event_id: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.deleted.append(external_event_id)


@pytest.fixture
def google(test_settings) -> FakeProvider:
    return FakeProvider("google", settings=test_settings)


@pytest.fixture
def microsoft(test_settings) -> FakeProvider:
    return FakeProvider("microsoft", settings=test_settings)


@pytest.fixture
def zoom(test_settings) -> FakeProvider:
    return FakeProvider("zoom", settings=test_settings)


@pytest.fixture
def registry(google, microsoft, zoom) -> ProviderRegistry:
    return ProviderRegistry([google, microsoft, zoom])


@pytest.fixture
def sync_service(registry, test_settings) -> SyncService:
    return SyncService(registry, settings=test_settings)


@pytest.fixture
def tracker(fake_redis, notifier, test_settings) -> JobTracker:
    return JobTracker(fake_redis, notifier=notifier, settings=test_settings)


# =============================================================================
# API client
# =============================================================================

@pytest.fixture
def api(registry, test_settings, fake_redis, notifier):
    """
    TestClient over an app without its lifespan.

    The database engine is created lazily inside the client's event loop.
    Jobs run to completion inside the request that enqueues them unless a
    test swaps ``api.dispatch``.
    """
    from app.main import create_app

    app = create_app(use_lifespan=False)
    engine = _make_engine()
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    state = {"schema": False}

    async def ensure_schema():
        if not state["schema"]:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            state["schema"] = True

    async def override_get_db():
        await ensure_schema()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def job_session():
        await ensure_schema()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    manager = ConnectionManager()

    class ApiHarness:
        def __init__(self):
            self.manager = manager
            self.redis = fake_redis
            self.notifier = notifier
            self.run_jobs = True

    harness = ApiHarness()

    def override_get_job_tracker() -> JobTracker:
        tracker = JobTracker(fake_redis, notifier=notifier, settings=test_settings)
        runner = JobRunner(
            tracker,
            sync_service=SyncService(registry, settings=test_settings),
            session_context=job_session,
        )

        def dispatch(job_id: str):
            if harness.run_jobs:
                return runner.run(job_id)
            return None

        tracker.dispatcher = dispatch
        return tracker

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_job_tracker] = override_get_job_tracker
    app.dependency_overrides[get_connection_manager] = lambda: manager

    with TestClient(app) as client:
        harness.client = client
        yield harness
