"""Providers router - which banking providers this deployment offers."""

from fastapi import APIRouter, Depends

from ledgersync.dependencies import get_current_user, get_registry
from ledgersync.providers.registry import ProviderRegistry
from ledgersync.schemas.provider import ProviderListResponse, ProviderResponse


router = APIRouter(prefix="/providers", tags=["Providers"])


@router.get("", response_model=ProviderListResponse)
async def list_providers(
    user: dict = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_registry),
):
    return ProviderListResponse(
        providers=[ProviderResponse(**meta) for meta in registry.list_metadata()]
    )
