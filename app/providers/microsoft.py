"""
Microsoft Outlook calendar adapter (Microsoft Graph v1.0).
"""

import logging
from datetime import datetime, time, timedelta
from typing import Optional

from tzlocal.windows_tz import win_tz

from app.core.errors import ProviderApiError
from app.models.event import Event
from app.models.integration import UserIntegration
from app.providers.base import CalendarProvider, format_utc, parse_datetime
from app.schemas.event import CanonicalEvent
from app.services import timezone_service

logger = logging.getLogger(__name__)

# Ask Graph for every dateTime in UTC
PREFER_UTC = 'outlook.timezone="UTC"'


class MicrosoftCalendarProvider(CalendarProvider):
    provider_type = "microsoft"
    display_name = "Microsoft Outlook"
    scopes = ["offline_access", "openid", "email", "User.Read", "Calendars.ReadWrite"]

    api_base_url = "https://graph.microsoft.com/v1.0"

    @property
    def authorize_url(self) -> str:
        return (
            f"https://login.microsoftonline.com/{self.settings.microsoft_tenant}"
            "/oauth2/v2.0/authorize"
        )

    @property
    def token_url(self) -> str:
        return (
            f"https://login.microsoftonline.com/{self.settings.microsoft_tenant}"
            "/oauth2/v2.0/token"
        )

    @property
    def client_id(self) -> str:
        return self.settings.microsoft_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.microsoft_client_secret

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.settings.microsoft_redirect_uri

    def auth_params(self, state: Optional[str] = None) -> dict:
        params = super().auth_params(state)
        params["response_mode"] = "query"
        return params

    async def authorize(
        self,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> UserIntegration:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "scope": " ".join(self.scopes),
        }
        if redirect_uri or self.redirect_uri:
            data["redirect_uri"] = redirect_uri or self.redirect_uri
        tokens = await self._token_request(data)

        headers = {"Authorization": f"Bearer {tokens['access_token']}"}
        profile = await self._request("GET", "/me", headers=headers)
        mailbox = await self._request("GET", "/me/mailboxSettings", headers=headers)

        return self._new_integration(
            tokens,
            provider_id=profile.get("id", ""),
            account_email=profile.get("mail") or profile.get("userPrincipalName"),
            primary_timezone=mailbox.get("timeZone"),
        )

    async def refresh_token(self, integration: UserIntegration) -> UserIntegration:
        # Graph wants the scope repeated on refresh
        if integration.refresh_token:
            tokens = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": integration.refresh_token,
                    "scope": " ".join(self.scopes),
                },
                refreshing=True,
            )
            self._apply_tokens(integration, tokens)
            logger.info(f"Refreshed microsoft token for user {integration.user_id}")
            return integration
        return await super().refresh_token(integration)

    async def list_events(
        self,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> list[dict]:
        url: Optional[str] = "/me/calendarView"
        params: Optional[dict] = {
            "startDateTime": format_utc(start),
            "endDateTime": format_utc(end),
            "$top": min(self.page_size, 1000),
            "$orderby": "start/dateTime",
        }
        events: list[dict] = []

        for _ in range(self.max_pages):
            data = await self._request(
                "GET",
                url,
                integration=integration,
                params=params,
                headers={"Prefer": PREFER_UTC},
            )
            events.extend(
                item for item in data.get("value", [])
                if not item.get("isCancelled")
            )
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
            if not url:
                break
        else:
            logger.warning(
                f"Stopped Graph paging after {self.max_pages} pages "
                f"for user {integration.user_id}"
            )

        return events

    def account_timezone(self, value: Optional[str]) -> Optional[str]:
        # Graph reports Windows zone names ("Eastern Standard Time")
        if value and not timezone_service.is_valid_timezone(value):
            value = win_tz.get(value, value)
        return super().account_timezone(value)

    def _graph_instant(self, value: dict, tz: str) -> datetime:
        parsed = parse_datetime(value["dateTime"])
        return timezone_service.to_utc(
            parsed, self.account_timezone(value.get("timeZone")) or tz
        )

    def to_canonical(
        self,
        native: dict,
        account_timezone: Optional[str] = None,
    ) -> CanonicalEvent:
        tz = self.resolve_event_timezone(
            native.get("originalStartTimeZone"), account_timezone
        )
        start = native.get("start") or {}
        end = native.get("end") or start

        if native.get("isAllDay"):
            first_day = parse_datetime(start["dateTime"]).date()
            # Graph all-day end is midnight of the following day
            last_day = parse_datetime(end["dateTime"]).date() - timedelta(days=1)
            start_utc, end_utc = timezone_service.all_day_bounds(
                first_day, tz, max(first_day, last_day)
            )
            is_all_day = True
        else:
            start_utc = self._graph_instant(start, tz)
            end_utc = self._graph_instant(end, tz)
            is_all_day = False

        online = native.get("onlineMeeting") or {}
        meeting_url = online.get("joinUrl") or native.get("onlineMeetingUrl")
        location = (native.get("location") or {}).get("displayName") or None

        return CanonicalEvent(
            external_event_id=native["id"],
            provider_type=self.provider_type,
            title=native.get("subject") or "Untitled Event",
            start_date=start_utc,
            end_date=max(start_utc, end_utc),
            is_all_day=is_all_day,
            timezone=tz,
            status="tentative" if native.get("showAs") == "tentative" else "confirmed",
            meeting_type="video_call" if meeting_url or native.get("isOnlineMeeting") else None,
            meeting_url=meeting_url,
            description=native.get("bodyPreview") or None,
            location=location,
            attendees=[
                a["emailAddress"]["address"]
                for a in native.get("attendees", [])
                if (a.get("emailAddress") or {}).get("address")
            ],
        )

    def _event_body(self, event: Event) -> dict:
        body: dict = {"subject": event.title, "isAllDay": event.is_all_day}
        if event.is_all_day:
            first_day = timezone_service.local_date(event.start_date, event.timezone)
            last_day = timezone_service.local_date(event.end_date, event.timezone)
            body["start"] = {
                "dateTime": datetime.combine(first_day, time.min).isoformat(),
                "timeZone": event.timezone,
            }
            body["end"] = {
                "dateTime": datetime.combine(last_day + timedelta(days=1), time.min).isoformat(),
                "timeZone": event.timezone,
            }
        else:
            body["start"] = {"dateTime": format_utc(event.start_date)[:-1], "timeZone": "UTC"}
            body["end"] = {"dateTime": format_utc(event.end_date)[:-1], "timeZone": "UTC"}
        if event.description:
            body["body"] = {"contentType": "text", "content": event.description}
        if event.location:
            body["location"] = {"displayName": event.location}
        if event.meeting_type == "video_call":
            body["isOnlineMeeting"] = True
            body["attendees"] = [
                {"emailAddress": {"address": email}, "type": "required"}
                for email in event.attendees or []
            ]
        return body

    async def create_event(self, integration: UserIntegration, event: Event) -> str:
        data = await self._request(
            "POST",
            "/me/events",
            integration=integration,
            json=self._event_body(event),
        )
        if not data.get("id"):
            raise ProviderApiError(
                "Microsoft Graph did not return an event id",
                provider_type=self.provider_type,
            )
        return data["id"]

    async def update_event(self, integration: UserIntegration, event: Event) -> None:
        await self._request(
            "PATCH",
            f"/me/events/{event.external_event_id}",
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
            f"/me/events/{external_event_id}",
            integration=integration,
        )
