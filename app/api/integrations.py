"""
Integration API endpoints: provider connections and sync jobs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_current_user,
    get_integration_service,
    get_job_tracker,
)
from app.database import get_db
from app.schemas.integration import (
    AuthUrlResponse,
    ConnectProviderRequest,
    DisconnectResponse,
    IntegrationSummary,
    ProviderConfig,
    ProviderStatus,
)
from app.schemas.sync import JobAccepted, JobType, SyncRequest
from app.services.integration_service import IntegrationService
from app.services.job_tracker import JobTracker

router = APIRouter(prefix="/integrations")


@router.get("/providers", response_model=list[IntegrationSummary])
async def list_integrations(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: IntegrationService = Depends(get_integration_service),
):
    """List the user's provider connections, active or not."""
    integrations = await service.list_integrations(db, user_id)
    return [IntegrationSummary.model_validate(i) for i in integrations]


@router.get("/providers/configs", response_model=list[ProviderConfig])
async def list_provider_configs(
    service: IntegrationService = Depends(get_integration_service),
):
    """Supported providers with their scopes and consent URLs."""
    return [ProviderConfig(**config) for config in service.registry.get_all_configs()]


@router.get("/providers/{provider_type}", response_model=ProviderStatus)
async def get_provider_status(
    provider_type: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: IntegrationService = Depends(get_integration_service),
):
    return await service.provider_status(db, user_id, provider_type)


@router.get("/providers/{provider_type}/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    provider_type: str,
    state: Optional[str] = None,
    service: IntegrationService = Depends(get_integration_service),
):
    adapter = service.get_adapter(provider_type)
    return AuthUrlResponse(provider_type=provider_type, auth_url=adapter.auth_url(state))


@router.post(
    "/providers/{provider_type}/connect",
    response_model=JobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def connect_provider(
    provider_type: str,
    request: ConnectProviderRequest,
    user_id: str = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """
    Start connecting a provider.

    The code exchange and the initial import run as a ``connect_calendar``
    job; progress is pushed over the WebSocket and can be polled.
    """
    service.get_adapter(provider_type)
    job = await tracker.enqueue(
        JobType.CONNECT_CALENDAR,
        user_id,
        {
            "provider_type": provider_type,
            "code": request.auth_data.code,
            "redirect_uri": request.auth_data.redirect_uri,
        },
    )
    return JobAccepted(job_id=job.id, status=job.status)


@router.delete("/providers/{provider_type}/disconnect", response_model=DisconnectResponse)
async def disconnect_provider(
    provider_type: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: IntegrationService = Depends(get_integration_service),
):
    """Stop syncing a provider. Already-synced events are kept."""
    disconnected = await service.disconnect(db, user_id, provider_type)
    return DisconnectResponse(provider_type=provider_type, disconnected=disconnected)


@router.post("/sync", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def sync_integrations(
    request: Optional[SyncRequest] = None,
    user_id: str = Depends(get_current_user),
    service: IntegrationService = Depends(get_integration_service),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """Enqueue a sync of all active providers."""
    params: dict = {}
    if request and request.date_range:
        params["start"] = request.date_range.start.isoformat()
        params["end"] = request.date_range.end.isoformat()
    if request and request.providers:
        for provider_type in request.providers:
            service.get_adapter(provider_type)
        params["providers"] = request.providers

    job = await tracker.enqueue(JobType.SYNC_EVENTS, user_id, params)
    return JobAccepted(job_id=job.id, status=job.status)
