"""Error taxonomy for the banking sync engine.

Adapters translate transport failures into these types; the orchestrator
decides per type whether an error aborts the job or only the current account.
"""


class SyncError(Exception):
    """Base class for every engine error."""

    def __init__(self, message: str, *, provider_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id


class AuthError(SyncError):
    """Credentials are invalid or expired. Needs re-authorization, never a retry."""


class RateLimited(SyncError):
    """Provider throttled the request. Retry on the next scheduled window."""

    def __init__(
        self,
        message: str,
        *,
        provider_id: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, provider_id=provider_id)
        self.retry_after = retry_after


class ProviderUnavailable(SyncError):
    """Transport error, timeout or 5xx from the provider."""


class MalformedRecord(SyncError):
    """A single raw record could not be normalized."""

    def __init__(self, message: str, *, record_id: str | None = None, provider_id: str | None = None):
        super().__init__(message, provider_id=provider_id)
        self.record_id = record_id


class MatchConflict(SyncError):
    """Account resolution is ambiguous and needs manual reconciliation."""

    def __init__(self, message: str, *, account_id: str | None = None, matched_by: str | None = None):
        super().__init__(message)
        self.account_id = account_id
        self.matched_by = matched_by


class ConnectionNotSyncable(SyncError):
    """Connection is in a status that does not allow syncing."""


class ConnectionNotFound(SyncError):
    """Connection does not exist for the tenant."""


class ProviderNotFound(SyncError):
    """Provider is not registered or not enabled."""
