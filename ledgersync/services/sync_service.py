"""Sync service - orchestrates one sync job per connection.

Per job:
    1. Create a sync_jobs row (status=running).
    2. Obtain valid credentials (refreshing if needed).
    3. Fetch raw accounts -> capture -> normalize.
    4. For each account, independently:
         resolve/create the internal account, plan the transaction window,
         fetch raw transactions -> capture -> normalize -> import.
    5. Mark accounts no longer reported as closed.
    6. Finalize the job, update connection health and the sync summary.

An account-level failure is recorded and the loop moves on. An AuthError
aborts the job, since no further fetch can succeed.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date

from ledgersync.config import Settings
from ledgersync.database import Database
from ledgersync.exceptions import (
    AuthError,
    ConnectionNotFound,
    ConnectionNotSyncable,
    RateLimited,
    SyncError,
)
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import Credentials, FetchWindow, ProviderAdapter
from ledgersync.providers.registry import ProviderRegistry
from ledgersync.schemas.normalized import NormalizedAccount
from ledgersync.services.account_matcher import AccountMatcher
from ledgersync.services.credential_service import CredentialService
from ledgersync.services.health_service import HealthPolicy, HealthService
from ledgersync.services.raw_capture_service import RawCaptureService
from ledgersync.services.sync_planner import SyncPlanner
from ledgersync.services.transaction_importer import TransactionImporter
from ledgersync.utils.dates import utc_now
from ledgersync.utils.locks import KeyedLock


logger = get_logger("sync")

NOT_SYNCABLE_STATUSES = ("error", "inactive")


@dataclass
class JobProgress:
    records_fetched: int = 0
    records_processed: int = 0
    records_imported: int = 0
    records_failed: int = 0
    accounts_synced: int = 0
    accounts_failed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    account_summaries: list[dict] = field(default_factory=list)

    def final_status(self) -> str:
        if self.accounts_failed == 0:
            return "completed"
        if self.accounts_synced > 0:
            return "partial"
        return "failed"


class SyncOrchestrator:
    """Runs sync jobs against whichever adapter the registry returns."""

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        settings: Settings,
        account_locks: KeyedLock | None = None,
        credential_locks: KeyedLock | None = None,
    ):
        self.db = db
        self.registry = registry
        self.settings = settings
        self.raw_store = RawCaptureService(db)
        self.matcher = AccountMatcher(db, account_locks)
        self.importer = TransactionImporter(db)
        self.planner = SyncPlanner(settings)
        self.health = HealthService(db, HealthPolicy.from_settings(settings))
        self.credentials = CredentialService(db, credential_locks)

    def trigger_sync(
        self,
        tenant_id: str,
        connection_id: str,
        sync_accounts: bool = True,
        sync_transactions: bool = True,
        force: bool = False,
        transaction_window_override: tuple[date, date] | None = None,
    ) -> dict:
        """Run one sync job for a connection and return its result.

        Raises:
            ConnectionNotFound: If the connection does not belong to the tenant.
            ConnectionNotSyncable: If the connection is in error or inactive.
            ProviderNotFound: If the connection's provider is not enabled.
        """
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise ConnectionNotFound(f"Connection {connection_id} not found")
        if connection.get("status") in NOT_SYNCABLE_STATUSES:
            raise ConnectionNotSyncable(
                f"Connection {connection_id} is {connection['status']}; re-authorize or enable it before syncing",
                provider_id=connection.get("provider_id"),
            )

        adapter = self.registry.get(connection["provider_id"])

        started_at = utc_now()
        started = time.monotonic()
        job = self.db.create_sync_job({
            "tenant_id": tenant_id,
            "connection_id": connection_id,
            "provider_id": connection["provider_id"],
            "status": "running",
            "sync_accounts": sync_accounts,
            "sync_transactions": sync_transactions,
            "started_at": started_at.isoformat(),
        })
        logger.info(f"Sync job {job['id']} started for connection {connection_id} ({adapter.provider_id})")

        progress = JobProgress()
        auth_failed = False
        try:
            credentials = self.credentials.get_valid_credentials(connection, adapter)
            self._run(
                connection,
                adapter,
                credentials,
                progress,
                sync_accounts=sync_accounts,
                sync_transactions=sync_transactions,
                force=force,
                override=transaction_window_override,
            )
            status = progress.final_status()
        except AuthError as e:
            auth_failed = True
            status = "failed"
            progress.errors.append(f"Authentication failed: {e.message}")
            logger.error(f"Sync job {job['id']} aborted, authentication failed for connection {connection_id}: {e}")
        except SyncError as e:
            status = "failed"
            progress.errors.append(f"{type(e).__name__}: {e.message}")
            logger.error(f"Sync job {job['id']} failed for connection {connection_id}: {e}")
        except Exception as e:
            progress.errors.append(f"Unexpected error: {e}")
            self._finalize(job, connection, progress, "failed", started_at, started, auth_failed=False)
            raise

        return self._finalize(job, connection, progress, status, started_at, started, auth_failed=auth_failed)

    # --- pipeline ---

    def _run(
        self,
        connection: dict,
        adapter: ProviderAdapter,
        credentials: Credentials,
        progress: JobProgress,
        *,
        sync_accounts: bool,
        sync_transactions: bool,
        force: bool,
        override: tuple[date, date] | None,
    ) -> None:
        tenant_id = connection["tenant_id"]
        connection_id = connection["id"]

        if sync_accounts:
            record = adapter.fetch_raw_accounts(credentials, tenant_id=tenant_id, connection_id=connection_id)
            self.raw_store.store(record)
            normalized = adapter.normalizer.normalize(record)
            progress.warnings.extend(normalized.warnings)
            work = [(account, None, None) for account in normalized.items]
            logger.info(f"Connection {connection_id} reported {len(work)} account(s)")
        else:
            normalized = None
            work = self._linked_accounts(tenant_id, connection_id)

        reported_ids = set()
        unresolved = False
        throttled = None

        for normalized_account, account, link in work:
            label = normalized_account.name if normalized_account else account.get("name") or account["id"]

            if throttled is not None:
                if account is None:
                    unresolved = True
                progress.accounts_failed += 1
                progress.errors.append(f"Account {label}: deferred, {throttled}")
                continue

            try:
                if normalized_account is not None:
                    account, link = self._resolve(tenant_id, connection, normalized_account)
                    reported_ids.add(account["id"])

                summary = self._sync_account(
                    connection,
                    adapter,
                    credentials,
                    account,
                    link,
                    progress,
                    sync_transactions=sync_transactions,
                    force=force,
                    override=override,
                )
            except AuthError:
                raise
            except Exception as e:
                if account is None:
                    unresolved = True
                if isinstance(e, RateLimited):
                    throttled = "provider rate limited"
                progress.accounts_failed += 1
                message = e.message if isinstance(e, SyncError) else str(e)
                progress.errors.append(f"Account {label}: {type(e).__name__}: {message}")
                logger.error(
                    f"Account {label} failed for connection {connection_id}: {type(e).__name__}: {message}"
                )
                continue

            progress.accounts_synced += 1
            progress.account_summaries.append(summary)

        # Only close accounts when every reported account was accounted for
        if sync_accounts and not unresolved and not normalized.warnings:
            closed = self.matcher.close_missing_accounts(tenant_id, connection_id, reported_ids)
            if closed:
                progress.warnings.append(f"{closed} account{'s' if closed != 1 else ''} marked closed")

    def _resolve(
        self, tenant_id: str, connection: dict, normalized_account: NormalizedAccount
    ) -> tuple[dict, dict]:
        match = self.matcher.resolve(tenant_id, connection, normalized_account)
        return match.account, match.link

    def _linked_accounts(self, tenant_id: str, connection_id: str) -> list[tuple]:
        """Open accounts this connection reports, paired with their links."""
        work = []
        for link in self.db.get_connection_account_links(tenant_id, connection_id):
            if link.get("status") == "closed":
                continue
            account = self.db.get_account(tenant_id, link["account_id"])
            if account and account.get("status") != "closed":
                work.append((None, account, link))
        return work

    def _sync_account(
        self,
        connection: dict,
        adapter: ProviderAdapter,
        credentials: Credentials,
        account: dict,
        link: dict,
        progress: JobProgress,
        *,
        sync_transactions: bool,
        force: bool,
        override: tuple[date, date] | None,
    ) -> dict:
        summary = {
            "account_id": account["id"],
            "external_account_id": link["external_account_id"],
            "name": account.get("name"),
            "status": "success",
            "reason": None,
            "window_start": None,
            "window_end": None,
            "transactions_fetched": 0,
            "transactions_created": 0,
            "transactions_updated": 0,
            "transactions_failed": 0,
        }
        if not sync_transactions:
            return summary

        now = utc_now()
        window = self.planner.plan_window(
            account.get("account_type"), link.get("transactions_synced_at"), now, force=force, override=override
        )
        summary["reason"] = window.reason
        if window.skip:
            summary["status"] = "skipped"
            logger.info(f"Skipping transactions for account {account['id']}: {window.reason}")
            return summary

        cost = self.planner.estimate_cost(window)
        logger.info(
            f"Fetching transactions for account {account['id']} {window.start_date}..{window.end_date} "
            f"({window.reason}, ~{cost['estimated_api_calls']} call(s))"
        )
        summary["window_start"] = window.start_date.isoformat()
        summary["window_end"] = window.end_date.isoformat()

        record = adapter.fetch_raw_transactions(
            credentials,
            link["external_account_id"],
            FetchWindow(start_date=window.start_date, end_date=window.end_date),
            tenant_id=connection["tenant_id"],
            connection_id=connection["id"],
        )
        self.raw_store.store(record)

        normalized = adapter.normalizer.normalize(record)
        progress.warnings.extend(normalized.warnings)
        fetched = len(normalized.items) + len(normalized.warnings)
        progress.records_fetched += fetched
        progress.records_failed += len(normalized.warnings)

        result = self.importer.import_batch(connection["tenant_id"], connection, account["id"], normalized.items)
        progress.records_processed += result.total
        progress.records_imported += result.imported
        progress.records_failed += result.failed
        progress.errors.extend(result.errors)

        synced_at = now.isoformat()
        self.db.update_account_link(connection["tenant_id"], link["id"], {"transactions_synced_at": synced_at})
        self.db.update_account(connection["tenant_id"], account["id"], {"transactions_synced_at": synced_at})

        summary.update({
            "transactions_fetched": fetched,
            "transactions_created": result.created,
            "transactions_updated": result.updated,
            "transactions_failed": result.failed,
        })
        return summary

    # --- finalize ---

    def _finalize(
        self,
        job: dict,
        connection: dict,
        progress: JobProgress,
        status: str,
        started_at,
        started: float,
        auth_failed: bool,
    ) -> dict:
        completed_at = utc_now()
        duration_ms = int((time.monotonic() - started) * 1000)
        tenant_id = connection["tenant_id"]

        self.db.update_sync_job(tenant_id, job["id"], {
            "status": status,
            "completed_at": completed_at.isoformat(),
            "duration_ms": duration_ms,
            "records_fetched": progress.records_fetched,
            "records_processed": progress.records_processed,
            "records_imported": progress.records_imported,
            "records_failed": progress.records_failed,
            "accounts_synced": progress.accounts_synced,
            "accounts_failed": progress.accounts_failed,
            "errors": progress.errors,
            "warnings": progress.warnings,
            "error_message": progress.errors[0] if progress.errors else None,
        })

        updated_connection = self.health.record_job_outcome(connection, status, auth_failed=auth_failed)

        result = {
            "job_id": job["id"],
            "connection_id": connection["id"],
            "provider_id": connection["provider_id"],
            "status": status,
            "accounts_synced": progress.accounts_synced,
            "accounts_failed": progress.accounts_failed,
            "records_fetched": progress.records_fetched,
            "records_processed": progress.records_processed,
            "records_imported": progress.records_imported,
            "records_failed": progress.records_failed,
            "errors": progress.errors,
            "warnings": progress.warnings,
            "account_summaries": progress.account_summaries,
            "started_at": started_at.isoformat(),
            "completed_at": completed_at.isoformat(),
            "duration_ms": duration_ms,
            "health_score": updated_connection.get("health_score"),
            "connection_status": updated_connection.get("status"),
        }

        self.db.update_connection(tenant_id, connection["id"], {
            "sync_summary": {key: value for key, value in result.items() if key != "connection_status"},
            "last_error": progress.errors[0] if progress.errors else None,
        })

        logger.info(
            f"Sync job {job['id']} {status}: {progress.accounts_synced} account(s) synced, "
            f"{progress.accounts_failed} failed, {progress.records_imported} transaction(s) imported "
            f"in {duration_ms}ms"
        )
        return result

    # --- scheduling ---

    def sync_due_connections(self) -> list[dict]:
        """Sync every active/pending connection whose next_sync_at has passed.

        Connections in error are never picked up; they wait for re-authorization.
        """
        due = self.db.get_connections_due(utc_now().isoformat())
        if not due:
            logger.info("No connections due for sync")
            return []

        logger.info(f"Found {len(due)} connection(s) due for sync")

        def run(connection: dict) -> dict | None:
            try:
                return self.trigger_sync(connection["tenant_id"], connection["id"])
            except SyncError as e:
                logger.warning(f"Skipped scheduled sync for connection {connection['id']}: {e}")
            except Exception:
                logger.exception(f"Scheduled sync crashed for connection {connection['id']}")
            return None

        with ThreadPoolExecutor(max_workers=self.settings.sync_max_concurrent_jobs) as pool:
            results = [result for result in pool.map(run, due) if result is not None]

        logger.info(
            f"Scheduled sync complete: {sum(1 for r in results if r['status'] == 'completed')} completed, "
            f"{sum(1 for r in results if r['status'] == 'partial')} partial, "
            f"{sum(1 for r in results if r['status'] == 'failed')} failed"
        )
        return results
