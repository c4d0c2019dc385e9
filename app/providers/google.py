"""
Google Calendar adapter (Calendar API v3, primary calendar).
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

import httpx

from app.core.errors import ProviderApiError
from app.models.event import Event
from app.models.integration import UserIntegration
from app.providers.base import CalendarProvider, format_utc, parse_datetime
from app.schemas.event import CanonicalEvent
from app.services import timezone_service

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


class GoogleCalendarProvider(CalendarProvider):
    provider_type = "google"
    display_name = "Google Calendar"
    scopes = [
        "https://www.googleapis.com/auth/calendar.events",
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]

    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    api_base_url = "https://www.googleapis.com/calendar/v3"
    userinfo_url = "https://openidconnect.googleapis.com/v1/userinfo"

    # Reminders applied to events created from this service
    default_reminders = {
        "useDefault": False,
        "overrides": [
            {"method": "email", "minutes": 24 * 60},
            {"method": "popup", "minutes": 30},
        ],
    }

    @property
    def client_id(self) -> str:
        return self.settings.google_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.google_client_secret

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.settings.google_redirect_uri

    def auth_params(self, state: Optional[str] = None) -> dict:
        params = super().auth_params(state)
        params.update({"access_type": "offline", "prompt": "consent"})
        return params

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        try:
            errors = response.json().get("error", {}).get("errors", [])
        except (ValueError, AttributeError):
            return False
        return any(e.get("reason") in RATE_LIMIT_REASONS for e in errors)

    # ============== OAuth ==============

    async def authorize(
        self,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> UserIntegration:
        tokens = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.redirect_uri,
            }
        )
        if not tokens.get("refresh_token"):
            logger.warning("Google token response has no refresh token")

        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        profile = await self._request("GET", self.userinfo_url, headers=headers)
        calendar = await self._request("GET", "/calendars/primary", headers=headers)

        return self._new_integration(
            tokens,
            provider_id=profile.get("sub") or profile.get("email") or calendar.get("id", ""),
            account_email=profile.get("email"),
            primary_timezone=calendar.get("timeZone"),
        )

    # ============== Events ==============

    async def list_events(
        self,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> list[dict]:
        params = {
            "timeMin": format_utc(start),
            "timeMax": format_utc(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": min(self.page_size, 2500),
        }
        events: list[dict] = []
        page_token: Optional[str] = None

        for _ in range(self.max_pages):
            if page_token:
                params["pageToken"] = page_token
            data = await self._request(
                "GET",
                "/calendars/primary/events",
                integration=integration,
                params=params,
            )
            events.extend(
                item for item in data.get("items", [])
                if item.get("status") != "cancelled"
            )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning(
                f"Stopped Google paging after {self.max_pages} pages "
                f"for user {integration.user_id}"
            )

        return events

    def to_canonical(
        self,
        native: dict,
        account_timezone: Optional[str] = None,
    ) -> CanonicalEvent:
        start = native.get("start") or {}
        end = native.get("end") or {}
        tz = self.resolve_event_timezone(start.get("timeZone"), account_timezone)

        if "date" in start:
            first_day = date.fromisoformat(start["date"])
            # Google's end date is exclusive
            last_day = (
                date.fromisoformat(end["date"]) - timedelta(days=1)
                if end.get("date")
                else first_day
            )
            start_utc, end_utc = timezone_service.all_day_bounds(first_day, tz, last_day)
            is_all_day = True
        else:
            start_utc = timezone_service.to_utc(parse_datetime(start["dateTime"]), tz)
            end_utc = (
                timezone_service.to_utc(parse_datetime(end["dateTime"]), tz)
                if end.get("dateTime")
                else start_utc
            )
            is_all_day = False

        meeting_url = native.get("hangoutLink")
        for entry in (native.get("conferenceData") or {}).get("entryPoints", []):
            if entry.get("entryPointType") == "video" and entry.get("uri"):
                meeting_url = entry["uri"]
                break

        status = native.get("status", "confirmed")
        return CanonicalEvent(
            external_event_id=native["id"],
            provider_type=self.provider_type,
            title=native.get("summary") or "Untitled Event",
            start_date=start_utc,
            end_date=max(start_utc, end_utc),
            is_all_day=is_all_day,
            timezone=tz,
            status=status if status in ("confirmed", "tentative", "cancelled") else "confirmed",
            meeting_type="video_call" if meeting_url else None,
            meeting_url=meeting_url,
            description=native.get("description"),
            location=native.get("location"),
            attendees=[
                a["email"] for a in native.get("attendees", []) if a.get("email")
            ],
        )

    def _event_body(self, event: Event) -> dict:
        body: dict = {
            "summary": event.title,
            "reminders": self.default_reminders,
        }
        if event.is_all_day:
            first_day = timezone_service.local_date(event.start_date, event.timezone)
            last_day = timezone_service.local_date(event.end_date, event.timezone)
            body["start"] = {"date": first_day.isoformat()}
            body["end"] = {"date": (last_day + timedelta(days=1)).isoformat()}
        else:
            body["start"] = {"dateTime": format_utc(event.start_date), "timeZone": event.timezone}
            body["end"] = {"dateTime": format_utc(event.end_date), "timeZone": event.timezone}
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.meeting_type == "video_call" and event.attendees:
            body["attendees"] = [{"email": email} for email in event.attendees]
        return body

    async def create_event(self, integration: UserIntegration, event: Event) -> str:
        data = await self._request(
            "POST",
            "/calendars/primary/events",
            integration=integration,
            json=self._event_body(event),
        )
        if not data.get("id"):
            raise ProviderApiError(
                "Google Calendar did not return an event id",
                provider_type=self.provider_type,
            )
        return data["id"]

    async def update_event(self, integration: UserIntegration, event: Event) -> None:
        await self._request(
            "PUT",
            f"/calendars/primary/events/{event.external_event_id}",
            integration=integration,
            json=self._event_body(event),
        )

    async def delete_event(
        self,
        integration: UserIntegration,
        external_event_id: str,
    ) -> None:
        await self._request(
            "DELETE",
            f"/calendars/primary/events/{external_event_id}",
            integration=integration,
        )
