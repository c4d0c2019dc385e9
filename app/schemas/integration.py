"""
Integration-related Pydantic schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from app.schemas.base import CamelModel


class AuthData(CamelModel):
    """OAuth result handed over by the frontend."""

    code: str = Field(min_length=1, description="OAuth authorization code")
    redirect_uri: Optional[str] = None


class ConnectProviderRequest(CamelModel):
    auth_data: AuthData


class IntegrationSummary(CamelModel):
    """A user's connection to one provider."""

    provider_type: str
    provider_id: str
    account_email: Optional[str] = None
    is_active: bool
    scope: list[str] = Field(default_factory=list)
    primary_timezone: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None


class ProviderStatus(CamelModel):
    connected: bool
    provider_type: str
    is_active: bool = False
    last_sync_at: Optional[datetime] = None


class ProviderConfig(CamelModel):
    type: str
    name: str
    scopes: list[str]
    auth_url: str


class AuthUrlResponse(CamelModel):
    provider_type: str
    auth_url: str


class DisconnectResponse(CamelModel):
    provider_type: str
    disconnected: bool
