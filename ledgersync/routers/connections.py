"""Connections router - lifecycle and health of provider connections."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from ledgersync.database import Database
from ledgersync.dependencies import (
    get_connection_service,
    get_database,
    get_orchestrator,
    get_tenant_id,
)
from ledgersync.exceptions import SyncError
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import Credentials
from ledgersync.routers.errors import http_error
from ledgersync.schemas.common import SuccessResponse
from ledgersync.schemas.connection import (
    AuthorizationRequest,
    ConnectionCreate,
    ConnectionHealthResponse,
    ConnectionListResponse,
    ConnectionResponse,
    ConnectionSummaryResponse,
)
from ledgersync.services.connection_service import ConnectionService
from ledgersync.services.sync_service import SyncOrchestrator


router = APIRouter(prefix="/connections", tags=["Connections"])
logger = get_logger("routers.connections")


def _credentials(request: AuthorizationRequest) -> Credentials | None:
    if request.credentials is None:
        return None
    return Credentials(**request.credentials.model_dump())


def _get_connection_or_404(db: Database, tenant_id: str, connection_id: str) -> dict:
    connection = db.get_connection(tenant_id, connection_id)
    if connection is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    return connection


@router.get("", response_model=ConnectionListResponse)
async def list_connections(
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    """List the tenant's connections."""
    connections = db.list_connections(tenant_id)
    return ConnectionListResponse(
        items=[ConnectionResponse(**c) for c in connections],
        total=len(connections),
    )


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    request: ConnectionCreate,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    """Create a connection from an authorization code or credentials.

    The connection starts in pending_setup and becomes active after its
    first successful sync.
    """
    try:
        connection = await run_in_threadpool(
            service.create,
            tenant_id,
            request.provider_id,
            name=request.name,
            authorization_code=request.authorization_code,
            credentials=_credentials(request),
        )
    except SyncError as e:
        raise http_error(e)

    return ConnectionResponse(**connection)


@router.get("/{connection_id}/health", response_model=ConnectionHealthResponse)
async def get_connection_health(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Current health score, band, status and failure counter."""
    connection = _get_connection_or_404(orchestrator.db, tenant_id, connection_id)
    return ConnectionHealthResponse(**orchestrator.health.get_connection_health(connection))


@router.get("/{connection_id}/summary", response_model=ConnectionSummaryResponse)
async def get_connection_summary(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    """The last sync job's counts, errors and warnings."""
    connection = _get_connection_or_404(db, tenant_id, connection_id)
    return ConnectionSummaryResponse(
        connection_id=connection["id"],
        status=connection["status"],
        sync_summary=connection.get("sync_summary"),
    )


@router.post("/{connection_id}/enable", response_model=ConnectionResponse)
async def enable_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    try:
        return ConnectionResponse(**service.set_enabled(tenant_id, connection_id, True))
    except SyncError as e:
        raise http_error(e)


@router.post("/{connection_id}/disable", response_model=ConnectionResponse)
async def disable_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    try:
        return ConnectionResponse(**service.set_enabled(tenant_id, connection_id, False))
    except SyncError as e:
        raise http_error(e)


@router.post("/{connection_id}/credentials", response_model=ConnectionResponse)
async def reauthorize_connection(
    connection_id: str,
    request: AuthorizationRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    """Replace credentials and clear the connection's error state."""
    try:
        connection = await run_in_threadpool(
            service.reauthorize,
            tenant_id,
            connection_id,
            authorization_code=request.authorization_code,
            credentials=_credentials(request),
        )
    except SyncError as e:
        raise http_error(e)

    logger.info(f"Connection {connection_id} re-authorized")
    return ConnectionResponse(**connection)


@router.delete("/{connection_id}", response_model=SuccessResponse)
async def disconnect(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    """Disconnect a connection. Accounts and transactions are kept."""
    try:
        service.disconnect(tenant_id, connection_id)
    except SyncError as e:
        raise http_error(e)

    return SuccessResponse(message="Connection disconnected")
