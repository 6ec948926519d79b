"""Transaction schemas."""

from datetime import datetime
from pydantic import BaseModel


class TransactionResponse(BaseModel):
    """Single canonical ledger transaction."""

    id: str
    account_id: str
    connection_id: str
    external_transaction_id: str
    amount: float
    currency: str
    type: str
    date: str
    description: str | None = None
    counterparty_name: str | None = None
    category: str | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TransactionListResponse(BaseModel):
    """Paginated list of transactions."""

    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int
