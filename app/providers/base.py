"""
Base class for calendar provider adapters.

An adapter talks to one provider's REST API and translates between the
provider's native event payloads and ``CanonicalEvent``. All HTTP goes
through ``_request``/``_token_request`` so status codes map onto the same
error taxonomy for every provider:

- 401 on an API call        -> ProviderAuthExpired
- 429 (or provider quota)   -> ProviderQuotaExceeded
- other 4xx/5xx             -> ProviderApiError (with provider status)
- timeout / transport error -> ProviderApiError
- rejected auth code        -> ProviderAuthError
- rejected refresh token    -> ProviderReauthRequired
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings, get_settings
from app.core.errors import (
    ProviderApiError,
    ProviderAuthError,
    ProviderAuthExpired,
    ProviderQuotaExceeded,
    ProviderReauthRequired,
)
from app.models.event import Event
from app.models.integration import UserIntegration
from app.schemas.event import CanonicalEvent
from app.services import timezone_service

logger = logging.getLogger(__name__)


def parse_datetime(value: str) -> datetime:
    """
    Parse a provider ISO-8601 timestamp.

    Accepts a trailing ``Z`` and more than six fractional digits
    (Microsoft Graph sends seven).
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return datetime.fromisoformat(text)


def format_utc(value: datetime) -> str:
    """``YYYY-MM-DDTHH:MM:SSZ`` for an instant; naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CalendarProvider(ABC):
    """
    Adapter for one calendar provider.

    Pass ``client`` to share (or mock) an ``httpx.AsyncClient``; otherwise
    a short-lived client is opened per request, which keeps adapters safe
    to use from Celery tasks that each run their own event loop.
    """

    provider_type: str = ""
    display_name: str = ""
    scopes: list[str] = []

    authorize_url: str = ""
    token_url: str = ""
    api_base_url: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self.timeout = self.settings.provider_timeout_seconds
        self.page_size = self.settings.provider_page_size
        self.max_pages = self.settings.max_sync_pages

    # ============== OAuth configuration ==============

    @property
    @abstractmethod
    def client_id(self) -> str: ...

    @property
    @abstractmethod
    def client_secret(self) -> str: ...

    @property
    @abstractmethod
    def redirect_uri(self) -> Optional[str]: ...

    def auth_params(self, state: Optional[str] = None) -> dict:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": " ".join(self.scopes),
        }
        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        if state:
            params["state"] = state
        return params

    def auth_url(self, state: Optional[str] = None) -> str:
        """URL the frontend sends the user to for consent."""
        return f"{self.authorize_url}?{urlencode(self.auth_params(state))}"

    def get_config(self) -> dict:
        return {
            "type": self.provider_type,
            "name": self.display_name,
            "scopes": list(self.scopes),
            "auth_url": self.auth_url(),
        }

    # ============== Adapter contract ==============

    @abstractmethod
    async def authorize(
        self,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> UserIntegration:
        """
        Exchange an authorization code for tokens.

        Returns an unsaved ``UserIntegration`` carrying tokens, the external
        account id and the account's primary timezone. The caller assigns
        ``user_id`` and persists it.
        """

    @abstractmethod
    async def list_events(
        self,
        integration: UserIntegration,
        start: datetime,
        end: datetime,
    ) -> list[dict]:
        """Provider-native events overlapping [start, end], all pages."""

    @abstractmethod
    def to_canonical(
        self,
        native: dict,
        account_timezone: Optional[str] = None,
    ) -> CanonicalEvent:
        """Map one native event; pure."""

    @abstractmethod
    async def create_event(self, integration: UserIntegration, event: Event) -> str:
        """Create ``event`` on the provider and return its native id."""

    @abstractmethod
    async def update_event(self, integration: UserIntegration, event: Event) -> None:
        """Push the current state of ``event`` to the provider."""

    @abstractmethod
    async def delete_event(
        self,
        integration: UserIntegration,
        external_event_id: str,
    ) -> None:
        """Delete a native event on the provider."""

    async def refresh_token(self, integration: UserIntegration) -> UserIntegration:
        """
        Get a new access token with the stored refresh token.

        Updates ``integration`` in place and returns it. Raises
        ``ProviderReauthRequired`` when there is no refresh token or the
        provider rejects it.
        """
        if not integration.refresh_token:
            raise ProviderReauthRequired(
                f"{self.display_name} has no refresh token; reconnect required",
                provider_type=self.provider_type,
            )
        tokens = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": integration.refresh_token,
            },
            refreshing=True,
        )
        self._apply_tokens(integration, tokens)
        logger.info(
            f"Refreshed {self.provider_type} token for user {integration.user_id}"
        )
        return integration

    # ============== Helpers shared by adapters ==============

    def account_timezone(self, value: Optional[str]) -> Optional[str]:
        """Return ``value`` if it is a valid IANA zone, else None."""
        if value and timezone_service.is_valid_timezone(value):
            return timezone_service.get_zone(value).key
        return None

    def resolve_event_timezone(
        self,
        native_tz: Optional[str],
        account_timezone: Optional[str],
    ) -> str:
        return (
            self.account_timezone(native_tz)
            or self.account_timezone(account_timezone)
            or self.settings.default_timezone
        )

    def _new_integration(
        self,
        tokens: dict,
        provider_id: str,
        account_email: Optional[str] = None,
        primary_timezone: Optional[str] = None,
    ) -> UserIntegration:
        integration = UserIntegration(
            provider_type=self.provider_type,
            provider_id=provider_id,
            account_email=account_email,
            primary_timezone=self.account_timezone(primary_timezone),
            is_active=True,
        )
        self._apply_tokens(integration, tokens)
        if not integration.scope:
            integration.scope = list(self.scopes)
        return integration

    def _apply_tokens(self, integration: UserIntegration, tokens: dict) -> None:
        integration.access_token = tokens["access_token"]
        # Providers may omit the refresh token on refresh; keep the old one
        if tokens.get("refresh_token"):
            integration.refresh_token = tokens["refresh_token"]
        expires_in = tokens.get("expires_in")
        integration.expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            if expires_in
            else None
        )
        if tokens.get("scope"):
            integration.scope = tokens["scope"].split()

    def _bearer(self, integration: UserIntegration) -> dict:
        return {"Authorization": f"Bearer {integration.access_token}"}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, retrying only failed connection attempts."""
        if self._client is not None:
            return await self._client.request(method, url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _send_checked(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._send(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"{self.provider_type} request timed out: {method} {url}")
            raise ProviderApiError(
                f"{self.display_name} did not respond in time",
                provider_type=self.provider_type,
            ) from None
        except httpx.TransportError as e:
            logger.warning(f"{self.provider_type} transport error: {e}")
            raise ProviderApiError(
                f"Could not reach {self.display_name}",
                provider_type=self.provider_type,
            ) from e

    async def _request(
        self,
        method: str,
        url: str,
        integration: Optional[UserIntegration] = None,
        **kwargs,
    ) -> dict:
        """Make an authenticated API call and return the decoded body."""
        if integration is not None:
            headers = dict(kwargs.pop("headers", None) or {})
            headers.update(self._bearer(integration))
            kwargs["headers"] = headers
        if not url.startswith("http"):
            url = f"{self.api_base_url}{url}"

        response = await self._send_checked(method, url, **kwargs)
        self._raise_for_status(response)

        if response.status_code == 204 or not response.content:
            return {}
        return self._decode(response)

    async def _token_request(
        self,
        data: dict,
        refreshing: bool = False,
    ) -> dict:
        """POST to the token endpoint, mapping rejections to auth errors."""
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **data,
        }
        response = await self._send_checked(
            "POST",
            self.token_url,
            data=payload,
            headers={"Accept": "application/json"},
        )
        return self._check_token_response(response, refreshing)

    def _check_token_response(
        self,
        response: httpx.Response,
        refreshing: bool = False,
    ) -> dict:
        if response.status_code == 429:
            raise ProviderQuotaExceeded(
                f"{self.display_name} rate limit reached, try again later",
                provider_type=self.provider_type,
            )
        if response.status_code in (400, 401):
            detail = self._error_message(response)
            if refreshing:
                raise ProviderReauthRequired(
                    f"{self.display_name} access was revoked or expired; reconnect required ({detail})",
                    provider_type=self.provider_type,
                )
            raise ProviderAuthError(
                f"{self.display_name} rejected the authorization code ({detail})",
                provider_type=self.provider_type,
            )
        self._raise_for_status(response)

        tokens = self._decode(response)
        if not tokens.get("access_token"):
            raise ProviderAuthError(
                f"Invalid token response from {self.display_name}",
                provider_type=self.provider_type,
            )
        return tokens

    def _decode(self, response: httpx.Response) -> dict:
        """JSON object body of a successful response."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            content_type = response.headers.get("content-type", "unknown")
            logger.warning(f"{self.provider_type} returned a non-JSON body ({content_type})")
            raise ProviderApiError(
                f"{self.display_name} returned an unreadable response",
                provider_type=self.provider_type,
                provider_status=response.status_code,
            )
        return body

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        return response.status_code == 429

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        message = self._error_message(response)
        if response.status_code == 401:
            raise ProviderAuthExpired(
                f"{self.display_name} access token rejected: {message}",
                provider_type=self.provider_type,
            )
        if self._is_rate_limited(response):
            raise ProviderQuotaExceeded(
                f"{self.display_name} rate limit reached, try again later",
                provider_type=self.provider_type,
            )
        logger.warning(
            f"{self.provider_type} API error {response.status_code}: {message}"
        )
        raise ProviderApiError(
            f"{self.display_name} error: {message}",
            provider_type=self.provider_type,
            provider_status=response.status_code,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body: Any = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if body.get("error_description"):
                return str(body["error_description"])
            if body.get("message"):
                return str(body["message"])
            if isinstance(error, str):
                return error
        return response.reason_phrase
