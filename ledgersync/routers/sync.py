"""Sync router - trigger and monitor connection syncs."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool

from ledgersync.database import Database
from ledgersync.dependencies import get_database, get_orchestrator, get_tenant_id
from ledgersync.exceptions import SyncError
from ledgersync.logging_config import get_logger
from ledgersync.routers.errors import http_error
from ledgersync.schemas.sync import (
    SyncJobResponse,
    SyncResultResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
)
from ledgersync.services.sync_service import SyncOrchestrator


router = APIRouter(prefix="/sync", tags=["Sync"])
logger = get_logger("routers.sync")


@router.post("/connections/{connection_id}", response_model=SyncResultResponse)
async def trigger_sync(
    connection_id: str,
    request: SyncTriggerRequest | None = None,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Run a sync job for one connection and return its result."""
    request = request or SyncTriggerRequest()
    try:
        result = await run_in_threadpool(
            orchestrator.trigger_sync,
            tenant_id,
            connection_id,
            sync_accounts=request.sync_accounts,
            sync_transactions=request.sync_transactions,
            force=request.force,
            transaction_window_override=request.window_override,
        )
    except SyncError as e:
        logger.warning(f"Sync rejected for connection {connection_id}: {e}")
        raise http_error(e)

    return SyncResultResponse(**result)


@router.get("/connections/{connection_id}/jobs", response_model=SyncStatusResponse)
async def list_connection_jobs(
    connection_id: str,
    limit: int = Query(20, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    """Sync job history for a connection, newest first."""
    if db.get_connection(tenant_id, connection_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")

    jobs = db.get_connection_sync_jobs(tenant_id, connection_id, limit=limit)
    return SyncStatusResponse(jobs=[SyncJobResponse(**job) for job in jobs])


@router.get("/jobs/{job_id}", response_model=SyncJobResponse)
async def get_sync_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    """Get a specific sync job."""
    job = db.get_sync_job(tenant_id, job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sync job not found",
        )
    return SyncJobResponse(**job)
