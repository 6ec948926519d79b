"""Normalization service - raw provider payloads to canonical accounts/transactions.

This is the only place that interprets the structure of a captured provider
response. Each provider has one normalizer; all of them share the amount,
direction and date helpers below so that every provider's quirks
(signed decimals, integer+scale pairs, unsigned amounts with a separate
credit/debit flag) end up as an absolute amount plus an explicit type.

A malformed record is skipped and reported as a warning. It never aborts the
rest of the batch.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any

from ledgersync.exceptions import MalformedRecord
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import RawRecord
from ledgersync.schemas.normalized import (
    NormalizationResult,
    NormalizedAccount,
    NormalizedTransaction,
)
from ledgersync.utils.dates import parse_date


logger = get_logger("normalization")

CREDIT_INDICATORS = {"credit", "crdt", "c", "cr", "in", "inflow"}
DEBIT_INDICATORS = {"debit", "dbit", "d", "dr", "out", "outflow"}


# ============================================================================
# Shared parsing helpers
# ============================================================================

def parse_amount(value: Any) -> Decimal:
    """Parse any of the amount encodings providers use into a Decimal.

    Supported shapes:
        - plain numbers and decimal strings ("1,234.56", "-12.00")
        - integer + scale pairs ({"unscaledValue": "-1050", "scale": "2"})
        - wrappers ({"value": ...}, {"amount": ...})

    Raises:
        MalformedRecord: If the value is missing, cannot be parsed or is not finite.
    """
    if value is None or value == "":
        raise MalformedRecord("amount is missing")

    if isinstance(value, bool):
        raise MalformedRecord(f"amount has unexpected type: {value!r}")

    if isinstance(value, dict):
        if "unscaledValue" in value:
            try:
                unscaled = Decimal(str(value["unscaledValue"]))
                scale = int(value.get("scale", 0))
            except (InvalidOperation, ValueError, TypeError) as e:
                raise MalformedRecord(f"invalid scaled amount: {value!r}") from e
            return _finite(unscaled.scaleb(-scale), value)
        for key in ("value", "amount"):
            if key in value:
                return parse_amount(value[key])
        raise MalformedRecord(f"unrecognized amount structure: {value!r}")

    try:
        if isinstance(value, float):
            result = Decimal(str(value))
        elif isinstance(value, int):
            result = Decimal(value)
        else:
            result = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation as e:
        raise MalformedRecord(f"invalid amount: {value!r}") from e
    return _finite(result, value)


def _finite(amount: Decimal, raw: Any) -> Decimal:
    if not amount.is_finite():
        raise MalformedRecord(f"amount is not finite: {raw!r}")
    return amount


def split_direction(
    amount: Decimal,
    indicator: str | None = None,
    outflow_positive: bool = False,
) -> tuple[Decimal, str]:
    """Return (absolute amount, "credit" | "debit").

    An explicit indicator wins over the sign. Without one, negative amounts
    are debits, unless the provider reports outflows as positive numbers.
    """
    if indicator:
        flag = str(indicator).strip().lower()
        if flag in CREDIT_INDICATORS:
            return abs(amount), "credit"
        if flag in DEBIT_INDICATORS:
            return abs(amount), "debit"
        raise MalformedRecord(f"unknown credit/debit indicator: {indicator!r}")

    if outflow_positive:
        direction = "debit" if amount > 0 else "credit"
    else:
        direction = "debit" if amount < 0 else "credit"
    return abs(amount), direction


def require(value: Any, field: str) -> Any:
    if value is None or value == "":
        raise MalformedRecord(f"{field} is missing")
    return value


def infer_account_type_from_name(name: str | None) -> str:
    """Guess an account type from its display name."""
    lowered = (name or "").lower()
    if "credit" in lowered or "card" in lowered:
        return "credit_card"
    if "mortgage" in lowered:
        return "mortgage"
    if "loan" in lowered:
        return "loan"
    if "saving" in lowered:
        return "savings"
    if "brokerage" in lowered or "invest" in lowered or "ira" in lowered or "401k" in lowered:
        return "investment"
    return "checking"


# ============================================================================
# Base normalizer
# ============================================================================

class BaseNormalizer(ABC):
    """Abstract base class for provider normalizers."""

    provider_id: str = ""

    def normalize(self, record: RawRecord) -> NormalizationResult:
        """Normalize a raw accounts or transactions record."""
        if record.record_type == "accounts":
            items = self._account_items(record.payload)
            convert = self._normalize_account
        else:
            external_account_id = record.external_id.split(":", 1)[-1]
            items = self._transaction_items(record.payload, external_account_id)

            def convert(item):
                return self._normalize_transaction(item, external_account_id)

        normalized = []
        warnings = []
        for index, item in enumerate(items):
            try:
                normalized.append(convert(item))
            except (MalformedRecord, KeyError, TypeError, ValueError, AttributeError, ArithmeticError) as e:
                record_id = item.get("id") if isinstance(item, dict) else None
                message = (
                    f"Skipped malformed {self.provider_id} {record.record_type[:-1]} "
                    f"{record_id or f'#{index}'}: {e}"
                )
                logger.warning(message)
                warnings.append(message)

        logger.info(
            f"Normalized {len(normalized)} {self.provider_id} {record.record_type} "
            f"for connection {record.connection_id} ({len(warnings)} skipped)"
        )
        return NormalizationResult(items=normalized, warnings=warnings)

    @abstractmethod
    def _account_items(self, payload: Any) -> list[Any]:
        """Extract the per-account items from a raw accounts payload."""

    @abstractmethod
    def _transaction_items(self, payload: Any, external_account_id: str) -> list[Any]:
        """Extract the per-transaction items from a raw transactions payload."""

    @abstractmethod
    def _normalize_account(self, item: dict) -> NormalizedAccount:
        pass

    @abstractmethod
    def _normalize_transaction(self, item: dict, external_account_id: str) -> NormalizedTransaction:
        pass


def _pages(payload: Any, key: str) -> list[Any]:
    """Collect ``key`` items from a paged payload ({"pages": [...]}) or a single page."""
    if isinstance(payload, dict) and "pages" in payload:
        items = []
        for page in payload["pages"] or []:
            items.extend(page.get(key) or [])
        return items
    if isinstance(payload, dict):
        return payload.get(key) or []
    return []


# ============================================================================
# Plaid
# ============================================================================

class PlaidNormalizer(BaseNormalizer):
    """Plaid reports outflows as positive amounts."""

    provider_id = "plaid"

    TYPE_MAP = {
        "depository": "checking",
        "credit": "credit_card",
        "loan": "loan",
        "investment": "investment",
        "brokerage": "investment",
        "other": "other",
    }

    SUBTYPE_MAP = {
        "checking": "checking",
        "savings": "savings",
        "cd": "savings",
        "money market": "savings",
        "credit card": "credit_card",
        "paypal": "checking",
        "mortgage": "mortgage",
        "auto": "loan",
        "student": "loan",
        "401k": "investment",
        "ira": "investment",
    }

    def _account_items(self, payload):
        institution = payload.get("item", {}) or {}
        bank_name = institution.get("institution_name") or "Plaid"
        return [{**account, "_bank_name": bank_name} for account in payload.get("accounts") or []]

    def _transaction_items(self, payload, external_account_id):
        return [
            txn for txn in _pages(payload, "transactions")
            if txn.get("account_id") in (None, external_account_id)
        ]

    def map_account_type(self, account_type: str | None, subtype: str | None) -> str:
        if subtype:
            mapped = self.SUBTYPE_MAP.get(str(subtype).replace("_", " ").lower())
            if mapped:
                return mapped
        return self.TYPE_MAP.get(str(account_type or "").lower(), "other")

    def _normalize_account(self, item):
        balances = item.get("balances") or {}
        current = balances.get("current")
        available = balances.get("available")
        balance = current if current is not None else available

        return NormalizedAccount(
            external_id=require(item.get("account_id"), "account_id"),
            name=item.get("name") or item.get("official_name") or "Plaid Account",
            account_type=self.map_account_type(item.get("type"), item.get("subtype")),
            currency=balances.get("iso_currency_code") or balances.get("unofficial_currency_code") or "USD",
            balance=parse_amount(balance) if balance is not None else Decimal("0"),
            available_balance=parse_amount(available) if available is not None else None,
            account_number=item.get("mask"),
            bank_name=item.get("_bank_name"),
            metadata={
                "official_name": item.get("official_name"),
                "subtype": item.get("subtype"),
                "verification_status": item.get("verification_status"),
            },
        )

    def _normalize_transaction(self, item, external_account_id):
        amount, direction = split_direction(parse_amount(item.get("amount")), outflow_positive=True)
        booked = parse_date(item.get("date")) or parse_date(item.get("authorized_date"))

        category = None
        pfc = item.get("personal_finance_category") or {}
        if pfc.get("primary"):
            category = pfc["primary"]
        elif item.get("category"):
            category = " > ".join(item["category"])

        return NormalizedTransaction(
            external_id=require(item.get("transaction_id"), "transaction_id"),
            external_account_id=item.get("account_id") or external_account_id,
            amount=amount,
            currency=item.get("iso_currency_code") or item.get("unofficial_currency_code") or "USD",
            type=direction,
            booked_date=require(booked, "date"),
            value_date=parse_date(item.get("authorized_date")),
            description=item.get("name") or item.get("merchant_name") or "",
            counterparty_name=item.get("merchant_name") or None,
            counterparty_account=item.get("account_owner"),
            category=category,
            reference=item.get("check_number"),
            status="pending" if item.get("pending") else "booked",
            metadata={
                "payment_channel": item.get("payment_channel"),
                "pending_transaction_id": item.get("pending_transaction_id"),
                "transaction_code": item.get("transaction_code"),
            },
        )


# ============================================================================
# SimpleFin
# ============================================================================

class SimplefinNormalizer(BaseNormalizer):
    """SimpleFin amounts are signed decimal strings (negative = expense)."""

    provider_id = "simplefin"

    def _account_items(self, payload):
        return payload.get("accounts") or []

    def _transaction_items(self, payload, external_account_id):
        items = []
        for account in payload.get("accounts") or []:
            if account.get("id") != external_account_id:
                continue
            currency = account.get("currency") or "USD"
            items.extend({**txn, "_currency": currency} for txn in account.get("transactions") or [])
        return items

    def _normalize_account(self, item):
        org = item.get("org") or {}
        available = item.get("available-balance")
        name = item.get("name") or "Unknown Account"

        return NormalizedAccount(
            external_id=require(item.get("id"), "id"),
            name=name,
            account_type=infer_account_type_from_name(name),
            currency=item.get("currency") or "USD",
            balance=parse_amount(item.get("balance", "0")),
            available_balance=parse_amount(available) if available not in (None, "") else None,
            bank_name=org.get("name") or org.get("domain"),
            metadata={
                "balance_date": item.get("balance-date"),
                "organization_domain": org.get("domain"),
                "organization_sfin_url": org.get("sfin-url"),
            },
        )

    def _normalize_transaction(self, item, external_account_id):
        amount, direction = split_direction(parse_amount(item.get("amount")))
        posted = item.get("posted") or 0
        pending = bool(item.get("pending")) or not posted
        booked = parse_date(posted) if posted else parse_date(item.get("transacted_at"))

        return NormalizedTransaction(
            external_id=require(item.get("id"), "id"),
            external_account_id=external_account_id,
            amount=amount,
            currency=item.get("_currency") or "USD",
            type=direction,
            booked_date=require(booked, "posted"),
            value_date=parse_date(item.get("transacted_at")),
            description=item.get("description") or "",
            counterparty_name=item.get("payee") or None,
            category=None,
            reference=item.get("memo") or None,
            status="pending" if pending else "booked",
        )


# ============================================================================
# Tink
# ============================================================================

class TinkNormalizer(BaseNormalizer):
    """Tink amounts are {unscaledValue, scale} pairs, optionally unsigned with an indicator."""

    provider_id = "tink"

    TYPE_MAP = {
        "CHECKING": "checking",
        "SAVINGS": "savings",
        "CREDIT_CARD": "credit_card",
        "LOAN": "loan",
        "MORTGAGE": "mortgage",
        "INVESTMENT": "investment",
        "PENSION": "investment",
        "OTHER": "other",
    }

    def _account_items(self, payload):
        return _pages(payload, "accounts")

    def _transaction_items(self, payload, external_account_id):
        return [
            txn for txn in _pages(payload, "transactions")
            if txn.get("accountId") in (None, external_account_id)
        ]

    @staticmethod
    def institution_name(institution_id: str | None) -> str | None:
        """Turn a Tink financial institution id ("ing-nl") into a display name."""
        if not institution_id:
            return None
        base = institution_id.replace("tink://banks/", "").split("/")[-1]
        base = base.split("-")[0].split("_")[0]
        return base.upper() if len(base) <= 4 else base.capitalize()

    def _normalize_account(self, item):
        balances = item.get("balances") or {}
        balance_entry = balances.get("booked") or balances.get("available") or {}
        amount = balance_entry.get("amount") or {}
        available_entry = (balances.get("available") or {}).get("amount")

        identifiers = item.get("identifiers") or {}
        iban_entry = identifiers.get("iban")
        if isinstance(iban_entry, dict):
            iban = iban_entry.get("iban")
            bic = iban_entry.get("bic")
            bban = iban_entry.get("bban")
        else:
            iban = iban_entry
            bic = None
            bban = None
        account_number = (
            (identifiers.get("financialInstitution") or {}).get("accountNumber")
            or item.get("accountNumber")
            or bban
        )

        return NormalizedAccount(
            external_id=require(item.get("id"), "id"),
            name=item.get("name") or account_number or f"Account {item.get('id')}",
            account_type=self.TYPE_MAP.get(str(item.get("type") or "").upper(), "other"),
            currency=amount.get("currencyCode") or "EUR",
            balance=parse_amount(amount.get("value")) if amount.get("value") is not None else Decimal("0"),
            available_balance=parse_amount(available_entry.get("value")) if available_entry else None,
            iban=iban.replace(" ", "").upper() if iban else None,
            bic=bic,
            account_number=account_number,
            bank_name=self.institution_name(item.get("financialInstitutionId")),
            holder_name=item.get("holderName"),
            status="closed" if item.get("closed") else "active",
            metadata={
                "financial_institution_id": item.get("financialInstitutionId"),
                "customer_segment": item.get("customerSegment"),
            },
        )

    def _normalize_transaction(self, item, external_account_id):
        amount_entry = item.get("amount") or {}
        amount, direction = split_direction(
            parse_amount(amount_entry.get("value")),
            indicator=item.get("creditDebitIndicator"),
        )
        dates = item.get("dates") or {}
        descriptions = item.get("descriptions") or {}
        merchant = item.get("merchantInformation") or {}
        payee = (item.get("counterparties") or {}).get("payee") or {}
        payee_account = ((payee.get("identifiers") or {}).get("financialInstitution") or {}).get("accountNumber")
        category = ((item.get("categories") or {}).get("pfm") or {}).get("name")

        return NormalizedTransaction(
            external_id=require(item.get("id"), "id"),
            external_account_id=item.get("accountId") or external_account_id,
            amount=amount,
            currency=require(amount_entry.get("currencyCode"), "amount.currencyCode"),
            type=direction,
            booked_date=require(parse_date(dates.get("booked")) or parse_date(dates.get("value")), "dates.booked"),
            value_date=parse_date(dates.get("value")),
            description=descriptions.get("display") or descriptions.get("original") or "",
            counterparty_name=merchant.get("merchantName") or payee.get("name"),
            counterparty_account=payee_account,
            category=category,
            reference=item.get("reference"),
            status="pending" if str(item.get("status") or "").upper() == "PENDING" else "booked",
            metadata={
                "merchant_category_code": merchant.get("merchantCategoryCode"),
                "transaction_type": (item.get("types") or {}).get("type"),
                "original_description": descriptions.get("original"),
            },
        )
