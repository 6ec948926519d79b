"""Sync job schemas."""

from datetime import date, datetime
from pydantic import BaseModel, Field, model_validator


class SyncTriggerRequest(BaseModel):
    """Options for a manual sync."""

    sync_accounts: bool = True
    sync_transactions: bool = True
    force: bool = Field(False, description="Sync even if the account was synced within the last hour")
    window_start: date | None = Field(None, description="Override the planned transaction window start")
    window_end: date | None = Field(None, description="Override the planned transaction window end")

    @model_validator(mode="after")
    def check_window(self):
        if (self.window_start is None) != (self.window_end is None):
            raise ValueError("window_start and window_end must be provided together")
        if self.window_start and self.window_start > self.window_end:
            raise ValueError("window_start must not be after window_end")
        return self

    @property
    def window_override(self) -> tuple[date, date] | None:
        if self.window_start is None:
            return None
        return (self.window_start, self.window_end)


class AccountSyncSummary(BaseModel):
    """Per-account outcome inside a sync job."""

    account_id: str
    external_account_id: str | None = None
    name: str | None = None
    status: str
    reason: str | None = None
    window_start: date | None = None
    window_end: date | None = None
    transactions_fetched: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    transactions_failed: int = 0


class SyncResultResponse(BaseModel):
    """Result of a finished sync job."""

    job_id: str
    connection_id: str
    provider_id: str
    status: str
    accounts_synced: int
    accounts_failed: int
    records_fetched: int
    records_processed: int
    records_imported: int
    records_failed: int
    errors: list[str]
    warnings: list[str]
    account_summaries: list[AccountSyncSummary]
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    health_score: float | None = None
    connection_status: str | None = None


class SyncJobResponse(BaseModel):
    """Single sync job (audit record)."""

    id: str
    connection_id: str
    provider_id: str | None = None
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    records_fetched: int = 0
    records_processed: int = 0
    records_imported: int = 0
    records_failed: int = 0
    accounts_synced: int = 0
    accounts_failed: int = 0
    errors: list[str] | None = None
    warnings: list[str] | None = None
    error_message: str | None = None
    created_at: datetime | None = None


class SyncStatusResponse(BaseModel):
    """List of sync jobs."""

    jobs: list[SyncJobResponse]
