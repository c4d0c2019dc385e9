"""Tests for the SyncService - provider events merged into the canonical store.

Providers are scripted fakes (see conftest); the store is in-memory SQLite.

Test Categories:
1. Idempotent upsert and change detection
2. Deletion of events the provider no longer returns
3. Partial failure across providers
4. Token refresh, reauth and timeouts
5. Windows and helpers
"""
from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlalchemy import select

from app.core.errors import ProviderApiError, ProviderAuthExpired, ProviderReauthRequired
from app.models import Event, User, UserIntegration
from app.providers.microsoft import MicrosoftCalendarProvider
from app.providers.registry import ProviderRegistry
from app.schemas.event import CanonicalEvent
from app.services.sync_service import SyncService, shift_months
from tests.conftest import USER_ID, add_event, add_integration, google_event, utc

START = utc(2024, 3, 1)
END = utc(2024, 4, 1)


async def stored_ids(db, provider_type: str = "google") -> set[str]:
    result = await db.execute(
        select(Event.external_event_id).where(
            Event.user_id == USER_ID,
            Event.provider_type == provider_type,
        )
    )
    return set(result.scalars().all())


@pytest.fixture
def two_events():
    return [
        google_event("g123", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z", summary="Standup"),
        google_event("g456", "2024-03-12", "2024-03-13", summary="Offsite"),
    ]


# =============================================================================
# Upsert
# =============================================================================

class TestUpsert:
    async def test_first_sync_creates_events(self, db, user, sync_service, google, two_events):
        await add_integration(db, "google")
        google.events = two_events

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert (summary.synced, summary.created, summary.updated, summary.deleted) == (2, 2, 0, 0)
        assert await stored_ids(db) == {"g123", "g456"}
        assert summary.message() == "Sync completed: 2 events processed (2 new, 0 updated)"

    async def test_resync_is_idempotent(self, db, user, sync_service, google, two_events, session_factory):
        await add_integration(db, "google")
        google.events = two_events
        await sync_service.sync_user(db, USER_ID, START, END)

        # A fresh session reads rows back from the database
        async with session_factory() as other:
            summary = await sync_service.sync_user(other, USER_ID, START, END)

        assert summary.synced == 2
        assert (summary.created, summary.updated, summary.deleted) == (0, 0, 0)
        assert await stored_ids(db) == {"g123", "g456"}

    async def test_changed_event_is_updated(self, db, user, sync_service, google, two_events):
        await add_integration(db, "google")
        google.events = two_events
        await sync_service.sync_user(db, USER_ID, START, END)

        google.events = [
            google_event("g123", "2024-03-10T10:00:00Z", "2024-03-10T11:30:00Z", summary="Standup (long)"),
            two_events[1],
        ]
        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert (summary.created, summary.updated) == (0, 1)
        result = await db.execute(select(Event).where(Event.external_event_id == "g123"))
        row = result.scalar_one()
        assert row.title == "Standup (long)"

    async def test_repeated_id_keeps_last_version(self, db, user, sync_service, google):
        await add_integration(db, "google")
        google.events = [
            google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z", summary="First"),
            google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z", summary="Second"),
        ]

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.created == 1
        result = await db.execute(select(Event).where(Event.external_event_id == "g1"))
        assert result.scalar_one().title == "Second"

    async def test_unreadable_event_is_skipped(self, db, user, sync_service, google):
        await add_integration(db, "google")
        google.events = [
            {"id": "broken", "summary": "No times"},
            google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z"),
        ]

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.synced == 1
        assert await stored_ids(db) == {"g1"}

    async def test_all_day_compares_local_dates(self, db, user, sync_service):
        original = CanonicalEvent(
            external_event_id="g1",
            provider_type="google",
            title="Holiday",
            start_date=utc(2024, 3, 10, 5, 0),
            end_date=utc(2024, 3, 11, 3, 59, 59, 999999),
            is_all_day=True,
            timezone="America/New_York",
        )
        await sync_service.upsert_events(db, USER_ID, "google", [original], START, END)
        await db.commit()

        # Same local day, bounds differ below the day
        same_day = original.model_copy(update={"end_date": utc(2024, 3, 11, 3, 59, 59)})
        counts = await sync_service.upsert_events(db, USER_ID, "google", [same_day], START, END)

        assert counts == {"synced": 1, "created": 0, "updated": 0, "deleted": 0}


# =============================================================================
# Deletion
# =============================================================================

class TestDeletion:
    async def test_event_missing_from_provider_is_deleted(self, db, user, sync_service, google, two_events):
        await add_integration(db, "google")
        google.events = two_events
        await sync_service.sync_user(db, USER_ID, START, END)

        google.events = [two_events[1]]
        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.deleted == 1
        assert await stored_ids(db) == {"g456"}
        assert "1 removed" in summary.message()

    async def test_events_outside_window_are_kept(self, db, user, sync_service, google):
        await add_integration(db, "google")
        await add_event(db, "last-year", utc(2023, 3, 10, 10), utc(2023, 3, 10, 11))
        google.events = []

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.deleted == 0
        assert await stored_ids(db) == {"last-year"}

    async def test_other_providers_events_are_kept(self, db, user, sync_service, google):
        await add_integration(db, "google")
        await add_event(db, "m1", utc(2024, 3, 10, 10), utc(2024, 3, 10, 11), provider_type="microsoft")
        google.events = []

        await sync_service.sync_user(db, USER_ID, START, END)

        assert await stored_ids(db, "microsoft") == {"m1"}

    async def test_locally_created_events_without_native_id_are_kept(self, db, user, sync_service, google):
        await add_integration(db, "google")
        await add_event(db, None, utc(2024, 3, 10, 10), utc(2024, 3, 10, 11), title="Draft")
        google.events = []

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.deleted == 0
        result = await db.execute(select(Event).where(Event.title == "Draft"))
        assert result.scalar_one_or_none() is not None


# =============================================================================
# Partial failure
# =============================================================================

class TestPartialFailure:
    async def test_one_provider_failing_does_not_block_others(self, db, user, sync_service, google, microsoft):
        await add_integration(db, "google")
        await add_integration(db, "microsoft")
        google.events = [google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z")]
        microsoft.list_errors = [
            ProviderApiError("Microsoft error: Service unavailable", provider_type="microsoft", provider_status=503)
        ]
        progress = []

        async def on_progress(result, done, total):
            progress.append((result.provider_type, result.status, done, total))

        summary = await sync_service.sync_user(db, USER_ID, START, END, on_progress=on_progress)

        assert [p.provider_type for p in summary.succeeded] == ["google"]
        assert [p.provider_type for p in summary.failed] == ["microsoft"]
        assert summary.errors == {"microsoft": "Microsoft error: Service unavailable"}
        assert summary.synced == 1
        assert await stored_ids(db) == {"g1"}
        assert sorted((name, status, total) for name, status, _, total in progress) == [
            ("google", "completed", 2),
            ("microsoft", "failed", 2),
        ]
        assert sorted(done for _, _, done, _ in progress) == [1, 2]
        assert "failed providers: microsoft" in summary.message()

        result = await db.execute(select(UserIntegration).where(UserIntegration.provider_type == "microsoft"))
        failed = result.scalar_one()
        assert failed.is_active
        assert failed.last_error == "Microsoft error: Service unavailable"

    async def test_unreadable_provider_response_is_a_provider_failure(self, db, user, test_settings, google, zoom):
        outlook = MicrosoftCalendarProvider(
            settings=test_settings,
            client=httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(
                        200, text="<html>gateway</html>", headers={"content-type": "text/html"}
                    )
                )
            ),
        )
        service = SyncService(ProviderRegistry([google, outlook, zoom]), settings=test_settings)
        await add_integration(db, "google")
        await add_integration(db, "microsoft")
        google.events = [google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z")]

        summary = await service.sync_user(db, USER_ID, START, END)

        assert [p.provider_type for p in summary.succeeded] == ["google"]
        assert summary.errors == {"microsoft": "Microsoft Outlook returned an unreadable response"}
        assert await stored_ids(db) == {"g1"}

    async def test_unexpected_adapter_error_is_contained(self, db, user, sync_service, google, microsoft):
        await add_integration(db, "google")
        await add_integration(db, "microsoft")
        google.events = [google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z")]
        microsoft.list_errors = [ValueError("Expecting value: line 1 column 1 (char 0)")]

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert [p.provider_type for p in summary.failed] == ["microsoft"]
        assert summary.errors == {"microsoft": "microsoft sync failed unexpectedly"}
        assert summary.failed[0].error_code == "provider_api_error"
        assert await stored_ids(db) == {"g1"}

    async def test_provider_filter(self, db, user, sync_service, google, microsoft):
        await add_integration(db, "google")
        await add_integration(db, "microsoft")

        summary = await sync_service.sync_user(db, USER_ID, START, END, provider_types=["microsoft"])

        assert [p.provider_type for p in summary.providers] == ["microsoft"]
        assert google.list_calls == 0

    async def test_no_integrations(self, db, user, sync_service):
        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.providers == []
        assert summary.synced == 0
        assert summary.window.start == START

    async def test_inactive_integration_is_not_synced(self, db, user, sync_service, google):
        await add_integration(db, "google", is_active=False)

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.providers == []
        assert google.list_calls == 0


# =============================================================================
# Tokens and timeouts
# =============================================================================

class TestTokens:
    async def test_rejected_token_is_refreshed_once(self, db, user, sync_service, google):
        await add_integration(db, "google")
        google.list_errors = [ProviderAuthExpired("token rejected", provider_type="google")]
        google.events = [google_event("g1", "2024-03-10T10:00:00Z", "2024-03-10T11:00:00Z")]

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.succeeded
        assert google.refresh_calls == 1
        assert google.list_calls == 2

    async def test_second_rejection_fails_provider(self, db, user, sync_service, google):
        await add_integration(db, "google")
        google.list_errors = [
            ProviderAuthExpired("token rejected", provider_type="google"),
            ProviderAuthExpired("token rejected", provider_type="google"),
        ]

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.failed[0].error_code == "provider_auth_expired"
        assert google.refresh_calls == 1

    async def test_expired_token_is_refreshed_before_listing(self, db, user, sync_service, google):
        await add_integration(db, "google", expires_at=utc(2020, 1, 1))

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.succeeded
        assert google.refresh_calls == 1
        assert google.list_calls == 1

    async def test_revoked_refresh_token_deactivates_integration(self, db, user, sync_service, google):
        integration = await add_integration(db, "google")
        google.list_errors = [ProviderAuthExpired("token rejected", provider_type="google")]
        google.refresh_error = ProviderReauthRequired("reconnect required", provider_type="google")

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.failed[0].error_code == "provider_reauth_required"
        assert integration.is_active is False
        assert integration.last_error == "reconnect required"
        assert await sync_service.active_integrations(db, USER_ID) == []

    async def test_slow_provider_times_out(self, db, user, sync_service, google, test_settings):
        await add_integration(db, "google")
        test_settings.provider_sync_timeout_seconds = 0.05
        google.list_delay = 1.0

        summary = await sync_service.sync_user(db, USER_ID, START, END)

        assert summary.failed[0].error_code == "provider_api_error"
        assert "did not respond in time" in summary.errors["google"]


# =============================================================================
# Windows and helpers
# =============================================================================

class TestWindows:
    def test_shift_months_clamps_day(self):
        assert shift_months(utc(2024, 8, 31), -6) == utc(2024, 2, 29)
        assert shift_months(utc(2024, 1, 31), 1) == utc(2024, 2, 29)
        assert shift_months(utc(2024, 11, 15), 3) == utc(2025, 2, 15)

    def test_default_window(self, sync_service):
        start, end = sync_service.default_window(now=utc(2024, 8, 31))

        assert start == utc(2024, 2, 29)
        assert end == utc(2025, 2, 28)

    async def test_default_window_used_when_missing(self, db, user, sync_service, google):
        await add_integration(db, "google")

        summary = await sync_service.sync_user(db, USER_ID)

        window = summary.window
        assert timedelta(days=360) < window.end - window.start < timedelta(days=370)

    async def test_active_user_ids(self, db, user, sync_service):
        db.add(User(id="user-2"))
        db.add(User(id="user-3"))
        await db.commit()
        await add_integration(db, "google")
        await add_integration(db, "zoom")
        await add_integration(db, "google", user_id="user-2")
        await add_integration(db, "google", user_id="user-3", is_active=False)

        assert sorted(await sync_service.active_user_ids(db)) == [USER_ID, "user-2"]
