"""Account schemas."""

from datetime import datetime
from pydantic import BaseModel


class AccountResponse(BaseModel):
    """Internal (canonical) account."""

    id: str
    connection_id: str | None = None
    provider_id: str | None = None
    external_account_id: str | None = None
    name: str
    account_type: str
    currency: str
    balance: float
    available_balance: float | None = None
    iban: str | None = None
    bic: str | None = None
    account_number: str | None = None
    bank_name: str | None = None
    holder_name: str | None = None
    status: str
    last_synced_at: datetime | None = None
    transactions_synced_at: datetime | None = None


class AccountListResponse(BaseModel):
    items: list[AccountResponse]
    total: int
