"""
Zoom adapter: scheduled meetings exposed as calendar events.
"""

import base64
import logging
from datetime import datetime, timedelta
from typing import Optional

from app.core.errors import ProviderApiError
from app.models.event import Event
from app.models.integration import UserIntegration
from app.providers.base import CalendarProvider, format_utc, parse_datetime
from app.schemas.event import CanonicalEvent
from app.services import timezone_service

logger = logging.getLogger(__name__)

SCHEDULED_MEETING = 2
DEFAULT_DURATION_MINUTES = 60


class ZoomProvider(CalendarProvider):
    provider_type = "zoom"
    display_name = "Zoom"
    scopes = ["meeting:read", "meeting:write", "user:read"]

    authorize_url = "https://zoom.us/oauth/authorize"
    token_url = "https://zoom.us/oauth/token"
    api_base_url = "https://api.zoom.us/v2"

    @property
    def client_id(self) -> str:
        return self.settings.zoom_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.zoom_client_secret

    @property
    def redirect_uri(self) -> Optional[str]:
        return self.settings.zoom_redirect_uri

    async def _token_request(self, data: dict, refreshing: bool = False) -> dict:
        # Zoom authenticates the client with HTTP Basic, not form fields
        credentials = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode()
        ).decode()
        response = await self._send_checked(
            "POST",
            self.token_url,
            data=data,
            headers={
                "Authorization": f"Basic {credentials}",
                "Accept": "application/json",
            },
        )
        return self._check_token_response(response, refreshing)

    async def authorize(
        self,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> UserIntegration:
        data = {"grant_type": "authorization_code", "code": code}
        if redirect_uri or self.redirect_uri:
            data["redirect_uri"] = redirect_uri or self.redirect_uri
        tokens = await self._token_request(data)

        profile = await self._request(
            "GET",
            "/users/me",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        return self._new_integration(
            tokens,
            provider_id=str(profile.get("id", "")),
            account_email=profile.get("email"),
            primary_timezone=profile.get("timezone"),
        )

    async def list_events(
        self,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> list[dict]:
        params = {"type": "scheduled", "page_size": min(self.page_size, 300)}
        meetings: list[dict] = []

        for _ in range(self.max_pages):
            data = await self._request(
                "GET",
                "/users/me/meetings",
                integration=integration,
                params=params,
            )
            meetings.extend(data.get("meetings", []))
            next_token = data.get("next_page_token")
            if not next_token:
                break
            params["next_page_token"] = next_token
        else:
            logger.warning(
                f"Stopped Zoom paging after {self.max_pages} pages "
                f"for user {integration.user_id}"
            )

        # The meetings endpoint has no date filter; keep what overlaps
        return [m for m in meetings if self._overlaps(m, start, end)]

    def _bounds(self, meeting: dict) -> tuple[datetime, datetime]:
        start = timezone_service.to_utc(
            parse_datetime(meeting["start_time"]),
            self.resolve_event_timezone(meeting.get("timezone"), None),
        )
        duration = meeting.get("duration") or DEFAULT_DURATION_MINUTES
        return start, start + timedelta(minutes=int(duration))

    def _overlaps(self, meeting: dict, start: datetime, end: datetime) -> bool:
        # Recurring meetings without a fixed time have no start_time
        if not meeting.get("start_time"):
            return False
        meeting_start, meeting_end = self._bounds(meeting)
        return meeting_start <= end and meeting_end >= start

    def to_canonical(
        self,
        native: dict,
        account_timezone: Optional[str] = None,
    ) -> CanonicalEvent:
        tz = self.resolve_event_timezone(native.get("timezone"), account_timezone)
        start_utc = timezone_service.to_utc(parse_datetime(native["start_time"]), tz)
        duration = native.get("duration") or DEFAULT_DURATION_MINUTES

        return CanonicalEvent(
            external_event_id=str(native["id"]),
            provider_type=self.provider_type,
            title=native.get("topic") or "Zoom Meeting",
            start_date=start_utc,
            end_date=start_utc + timedelta(minutes=int(duration)),
            is_all_day=False,
            timezone=tz,
            meeting_type="video_call",
            meeting_url=native.get("join_url"),
            description=native.get("agenda") or None,
        )

    def _meeting_body(self, event: Event) -> dict:
        duration = int((event.end_date - event.start_date).total_seconds() // 60)
        body = {
            "topic": event.title,
            "type": SCHEDULED_MEETING,
            "start_time": format_utc(event.start_date),
            "duration": max(duration, 1),
            "timezone": event.timezone,
        }
        if event.description:
            body["agenda"] = event.description
        return body

    async def create_event(self, integration: UserIntegration, event: Event) -> str:
        data = await self._request(
            "POST",
            "/users/me/meetings",
            integration=integration,
            json=self._meeting_body(event),
        )
        if not data.get("id"):
            raise ProviderApiError(
                "Zoom did not return a meeting id",
                provider_type=self.provider_type,
            )
        if data.get("join_url"):
            event.meeting_url = data["join_url"]
        event.meeting_type = "video_call"
        return str(data["id"])

    async def update_event(self, integration: UserIntegration, event: Event) -> None:
        await self._request(
            "PATCH",
            f"/meetings/{event.external_event_id}",
            integration=integration,
            json=self._meeting_body(event),
        )

    async def delete_event(
        self,
        integration: UserIntegration,
        external_event_id: str,
    ) -> None:
        await self._request(
            "DELETE",
            f"/meetings/{external_event_id}",
            integration=integration,
        )
