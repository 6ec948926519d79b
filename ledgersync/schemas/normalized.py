"""Canonical account and transaction shapes produced by the normalizers.

These are intermediate values: the matcher consumes NormalizedAccount and the
importer consumes NormalizedTransaction. Neither is persisted as-is.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field


AccountType = Literal[
    "checking",
    "savings",
    "credit_card",
    "loan",
    "mortgage",
    "investment",
    "other",
]


class NormalizedAccount(BaseModel):
    """Provider account mapped onto the canonical schema."""

    external_id: str
    name: str
    account_type: AccountType = "checking"
    currency: str = "USD"
    balance: Decimal = Decimal("0")
    available_balance: Decimal | None = None
    iban: str | None = None
    bic: str | None = None
    account_number: str | None = None
    bank_name: str | None = None
    holder_name: str | None = None
    status: Literal["active", "inactive", "closed"] = "active"
    metadata: dict[str, Any] = {}


class NormalizedTransaction(BaseModel):
    """Provider transaction mapped onto the canonical schema.

    ``amount`` is always the absolute value; direction lives in ``type``.
    """

    external_id: str
    external_account_id: str
    amount: Decimal = Field(..., ge=0)
    currency: str
    type: Literal["credit", "debit"]
    booked_date: date
    value_date: date | None = None
    description: str = ""
    counterparty_name: str | None = None
    counterparty_account: str | None = None
    category: str | None = None
    reference: str | None = None
    status: Literal["pending", "booked"] = "booked"
    metadata: dict[str, Any] = {}


class NormalizationResult(BaseModel):
    """Normalized items plus one warning per skipped malformed record."""

    items: list[Any] = []
    warnings: list[str] = []
