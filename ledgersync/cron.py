"""Scheduled cron jobs for background tasks."""

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi_utils.tasks import repeat_every

from ledgersync.config import get_settings
from ledgersync.database import Database, get_admin_client
from ledgersync.logging_config import get_logger
from ledgersync.services.sync_service import SyncOrchestrator


logger = get_logger("cron")

# How often the scheduler looks for connections whose next_sync_at has passed
SCHEDULER_INTERVAL_SECONDS = 60 * 15


def run_scheduled_syncs(app: FastAPI) -> list[dict]:
    """Sync every connection that is due, using the app's registry and locks."""
    orchestrator = SyncOrchestrator(
        Database(get_admin_client()),
        app.state.registry,
        get_settings(),
        account_locks=app.state.account_locks,
        credential_locks=app.state.credential_locks,
    )
    return orchestrator.sync_due_connections()


def create_sync_scheduler(app: FastAPI):
    """Build the repeating task that drives scheduled syncs for ``app``."""

    @repeat_every(seconds=SCHEDULER_INTERVAL_SECONDS, logger=logger)
    async def sync_due_connections_task():
        logger.info("[CRON] Checking for connections due for sync...")
        try:
            results = await run_in_threadpool(run_scheduled_syncs, app)
        except Exception:
            logger.exception("[CRON] Fatal error in scheduled sync")
            return
        logger.info(f"[CRON] Scheduled sync finished: {len(results)} job(s) run")

    return sync_due_connections_task
