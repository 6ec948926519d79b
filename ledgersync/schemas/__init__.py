"""Pydantic schemas for request/response validation."""

from ledgersync.schemas.common import (
    SuccessResponse,
    ErrorResponse,
)
from ledgersync.schemas.account import (
    AccountResponse,
    AccountListResponse,
)
from ledgersync.schemas.connection import (
    ConnectionCreate,
    ConnectionResponse,
    ConnectionListResponse,
    ConnectionHealthResponse,
    ConnectionSummaryResponse,
)
from ledgersync.schemas.normalized import (
    NormalizedAccount,
    NormalizedTransaction,
    NormalizationResult,
)
from ledgersync.schemas.provider import (
    ProviderResponse,
    ProviderListResponse,
)
from ledgersync.schemas.sync import (
    SyncTriggerRequest,
    SyncResultResponse,
    SyncJobResponse,
    SyncStatusResponse,
)
from ledgersync.schemas.transaction import (
    TransactionResponse,
    TransactionListResponse,
)

__all__ = [
    # Common
    "SuccessResponse",
    "ErrorResponse",
    # Accounts
    "AccountResponse",
    "AccountListResponse",
    # Connections
    "ConnectionCreate",
    "ConnectionResponse",
    "ConnectionListResponse",
    "ConnectionHealthResponse",
    "ConnectionSummaryResponse",
    # Normalized
    "NormalizedAccount",
    "NormalizedTransaction",
    "NormalizationResult",
    # Providers
    "ProviderResponse",
    "ProviderListResponse",
    # Sync
    "SyncTriggerRequest",
    "SyncResultResponse",
    "SyncJobResponse",
    "SyncStatusResponse",
    # Transactions
    "TransactionResponse",
    "TransactionListResponse",
]
