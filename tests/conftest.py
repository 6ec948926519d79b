"""Pytest configuration and fixtures.

The Database helper runs unmodified against FakeSupabaseClient, an in-memory
stand-in for the supabase/postgrest query builder.
"""

import os
import uuid
from collections import defaultdict
from copy import deepcopy
from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

# Set test environment before importing the app
os.environ["APP_ENV"] = "testing"
os.environ["SUPABASE_URL"] = "http://localhost:54321"
os.environ["SUPABASE_SECRET_KEY"] = "test-secret-key"
os.environ["SUPABASE_PUBLISHABLE_KEY"] = "test-publishable-key"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-service-role-key"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["ENABLE_CRON_JOBS"] = "false"
os.environ.pop("PLAID_CLIENT_ID", None)
os.environ.pop("TINK_CLIENT_ID", None)

from ledgersync.config import get_settings  # noqa: E402
from ledgersync.database import Database  # noqa: E402
from ledgersync.exceptions import SyncError  # noqa: E402
from ledgersync.providers.base import (  # noqa: E402
    Credentials,
    ProviderAdapter,
    ProviderConfig,
    accounts_record_id,
    transactions_record_id,
)
from ledgersync.providers.registry import ProviderRegistry  # noqa: E402
from ledgersync.services.credential_service import CredentialService  # noqa: E402
from ledgersync.services.normalization_service import SimplefinNormalizer  # noqa: E402
from ledgersync.services.sync_service import SyncOrchestrator  # noqa: E402


TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"


# =========================================
# In-memory supabase query builder
# =========================================

class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, tables: dict, name: str):
        self.tables = tables
        self.name = name
        self.operation = "select"
        self.payload = None
        self.on_conflict = None
        self.count_mode = None
        self.filters = []
        self.order_by = None
        self.row_range = None
        self.row_limit = None

    # --- operations ---

    def select(self, columns="*", count=None):
        self.operation = "select"
        self.count_mode = count
        return self

    def insert(self, data):
        self.operation = "insert"
        self.payload = data
        return self

    def update(self, data):
        self.operation = "update"
        self.payload = data
        return self

    def upsert(self, data, on_conflict=""):
        self.operation = "upsert"
        self.payload = data
        self.on_conflict = [c.strip() for c in on_conflict.split(",") if c.strip()]
        return self

    def delete(self):
        self.operation = "delete"
        return self

    # --- filters ---

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def gt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def is_(self, column, value):
        expected = None if value in (None, "null") else value
        self.filters.append(lambda row: row.get(column) is expected)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def range(self, start, end):
        self.row_range = (start, end)
        return self

    # --- execution ---

    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def _new_row(self, data):
        row = deepcopy(data)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables[self.name].append(row)
        return row

    def execute(self):
        rows = self.tables[self.name]

        if self.operation == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([deepcopy(self._new_row(item)) for item in items])

        if self.operation == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            result = []
            for item in items:
                existing = next(
                    (r for r in rows if all(r.get(c) == item.get(c) for c in self.on_conflict)),
                    None,
                ) if self.on_conflict else None
                if existing is not None:
                    existing.update(deepcopy(item))
                    result.append(deepcopy(existing))
                else:
                    result.append(deepcopy(self._new_row(item)))
            return FakeResponse(result)

        matched = [row for row in rows if self._matches(row)]

        if self.operation == "update":
            for row in matched:
                row.update(deepcopy(self.payload))
            return FakeResponse([deepcopy(row) for row in matched])

        if self.operation == "delete":
            self.tables[self.name] = [row for row in rows if not self._matches(row)]
            return FakeResponse([deepcopy(row) for row in matched])

        if self.order_by:
            column, desc = self.order_by
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        count = len(matched) if self.count_mode else None
        if self.row_range:
            start, end = self.row_range
            matched = matched[start:end + 1]
        if self.row_limit is not None:
            matched = matched[:self.row_limit]
        return FakeResponse([deepcopy(row) for row in matched], count=count)


class FakeSupabaseClient:
    def __init__(self):
        self.tables = defaultdict(list)

    def table(self, name):
        return FakeQuery(self.tables, name)


# =========================================
# Fake provider
# =========================================

class FakeNormalizer(SimplefinNormalizer):
    """SimpleFin normalizer that also reads an optional "iban" field."""

    def _normalize_account(self, item):
        account = super()._normalize_account(item)
        if item.get("iban"):
            account = account.model_copy(update={"iban": item["iban"]})
        return account


class FakeProvider(ProviderAdapter):
    """Serves SimpleFin-shaped payloads from memory.

    ``failures`` maps an external account id to the exception its
    transaction fetch raises.
    """

    config = ProviderConfig(provider_id="fakebank", display_name="Fake Bank", auth_type="api_key")
    normalizer = FakeNormalizer()

    def __init__(self, accounts=None, transactions=None, provider_id=None):
        super().__init__(max_concurrent_requests=2, timeout=1.0)
        if provider_id:
            self.config = ProviderConfig(provider_id=provider_id, display_name=provider_id.title(), auth_type="api_key")
        self.accounts = accounts or []
        self.transactions = transactions or {}
        self.failures: dict[str, SyncError] = {}
        self.accounts_error: SyncError | None = None
        self.refresh_calls = 0
        self.transaction_calls = []

    def validate_configuration(self) -> bool:
        return True

    def fetch_raw_accounts(self, credentials, *, tenant_id, connection_id):
        if self.accounts_error is not None:
            raise self.accounts_error
        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="accounts",
            external_id=accounts_record_id(),
            payload={"errors": [], "accounts": deepcopy(self.accounts)},
            started=0.0,
        )

    def fetch_raw_transactions(self, credentials, account_id, window, *, tenant_id, connection_id):
        self.transaction_calls.append((account_id, window))
        if account_id in self.failures:
            raise self.failures[account_id]
        account = next(a for a in self.accounts if a["id"] == account_id)
        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="transactions",
            external_id=transactions_record_id(account_id),
            payload={
                "errors": [],
                "accounts": [{**account, "transactions": deepcopy(self.transactions.get(account_id, []))}],
            },
            started=0.0,
        )

    def refresh_credentials(self, refresh_token):
        self.refresh_calls += 1
        return Credentials(access_token=f"refreshed-{self.refresh_calls}", refresh_token=refresh_token)


def make_account(account_id, name="Everyday Checking", balance="100.00", org="Fake Bank", iban=None):
    account = {
        "id": account_id,
        "name": name,
        "currency": "USD",
        "balance": balance,
        "available-balance": balance,
        "balance-date": 1735689600,
        "org": {"name": org, "domain": "fakebank.example"},
    }
    if iban:
        account["iban"] = iban
    return account


def make_transaction(txn_id, amount="-12.50", posted=1735689600, description="Coffee"):
    return {
        "id": txn_id,
        "posted": posted,
        "amount": amount,
        "description": description,
        "payee": description,
        "memo": "",
    }


# =========================================
# Fixtures
# =========================================

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_client():
    return FakeSupabaseClient()


@pytest.fixture
def db(fake_client):
    return Database(fake_client)


@pytest.fixture
def tenant_id():
    return TENANT_ID


@pytest.fixture
def fake_provider():
    return FakeProvider(
        accounts=[
            make_account("acc-1", "Everyday Checking"),
            make_account("acc-2", "Rainy Day Savings", balance="2500.00"),
            make_account("acc-3", "Rewards Credit Card", balance="-300.00"),
        ],
        transactions={
            "acc-1": [make_transaction("t-1"), make_transaction("t-2", amount="2500.00", description="Payroll")],
            "acc-2": [make_transaction("t-3", amount="50.00", description="Interest")],
            "acc-3": [make_transaction("t-4", amount="-75.20", description="Groceries")],
        },
    )


@pytest.fixture
def registry(fake_provider):
    registry = ProviderRegistry()
    registry.register(fake_provider)
    return registry


@pytest.fixture
def connection(db, tenant_id):
    """A pending_setup connection with stored, non-expiring credentials."""
    row = db.create_connection({
        "tenant_id": tenant_id,
        "provider_id": "fakebank",
        "name": "Fake Bank",
        "status": "pending_setup",
        "consecutive_failures": 0,
        "health_score": 1.0,
    })
    return CredentialService(db).store_credentials(row, Credentials(access_token="token-abc"))


@pytest.fixture
def orchestrator(db, registry, settings):
    return SyncOrchestrator(db, registry, settings)
