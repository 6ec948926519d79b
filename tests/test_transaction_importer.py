"""Tests for the idempotent transaction importer."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from ledgersync.schemas.normalized import NormalizedTransaction
from ledgersync.services.transaction_importer import TransactionImporter, stable_transaction_id


CONNECTION = {"id": "conn-1", "provider_id": "fakebank"}


def txn(external_id, amount="12.50", status="booked", **overrides):
    fields = {
        "external_id": external_id,
        "external_account_id": "acc-1",
        "amount": Decimal(amount),
        "currency": "USD",
        "type": "debit",
        "booked_date": date(2025, 1, 3),
        "description": "Coffee",
        "status": status,
    }
    fields.update(overrides)
    return NormalizedTransaction(**fields)


@pytest.fixture
def importer(db):
    return TransactionImporter(db)


def ledger(fake_client):
    return fake_client.tables["transactions"]


class TestImportBatch:
    def test_first_import_creates_rows(self, importer, fake_client, tenant_id):
        summary = importer.import_batch(tenant_id, CONNECTION, "account-1", [txn("t-1"), txn("t-2")])

        assert (summary.total, summary.created, summary.updated, summary.failed) == (2, 2, 0, 0)
        assert summary.imported == 2
        assert len(ledger(fake_client)) == 2
        assert len(fake_client.tables["provider_transactions"]) == 2

    def test_reimport_is_idempotent(self, importer, fake_client, tenant_id):
        batch = [txn("t-1"), txn("t-2")]
        importer.import_batch(tenant_id, CONNECTION, "account-1", batch)

        summary = importer.import_batch(tenant_id, CONNECTION, "account-1", batch)

        assert (summary.created, summary.updated) == (0, 2)
        assert len(ledger(fake_client)) == 2
        assert len(fake_client.tables["provider_transactions"]) == 2

    def test_pending_then_booked_updates_in_place(self, importer, fake_client, tenant_id):
        importer.import_batch(tenant_id, CONNECTION, "account-1", [txn("t-1", amount="10.00", status="pending")])
        importer.import_batch(tenant_id, CONNECTION, "account-1", [txn("t-1", amount="10.50")])

        rows = ledger(fake_client)
        assert len(rows) == 1
        assert rows[0]["status"] == "booked"
        assert rows[0]["amount"] == 10.50

    def test_both_rows_share_the_stable_id(self, importer, fake_client, tenant_id):
        importer.import_batch(
            tenant_id, CONNECTION, "account-1", [txn("t-1", value_date=date(2025, 1, 2), reference="INV-7")]
        )

        expected = stable_transaction_id(tenant_id, "conn-1", "t-1")
        row = ledger(fake_client)[0]
        detail = fake_client.tables["provider_transactions"][0]
        assert row["id"] == expected
        assert row["account_id"] == "account-1"
        assert row["date"] == "2025-01-03"
        assert detail["transaction_id"] == expected
        assert detail["value_date"] == "2025-01-02"
        assert detail["reference"] == "INV-7"

    def test_stable_id_is_scoped_by_tenant_and_connection(self, tenant_id):
        assert stable_transaction_id(tenant_id, "conn-1", "t-1") == stable_transaction_id(tenant_id, "conn-1", "t-1")
        assert stable_transaction_id(tenant_id, "conn-1", "t-1") != stable_transaction_id(tenant_id, "conn-2", "t-1")
        assert stable_transaction_id(tenant_id, "conn-1", "t-1") != stable_transaction_id("other", "conn-1", "t-1")

    def test_one_failure_does_not_stop_the_batch(self, importer, db, fake_client, tenant_id):
        original = db.upsert_transaction

        def flaky(data):
            if data["external_transaction_id"] == "t-bad":
                raise RuntimeError("constraint violation")
            return original(data)

        with patch.object(db, "upsert_transaction", side_effect=flaky):
            summary = importer.import_batch(
                tenant_id, CONNECTION, "account-1", [txn("t-1"), txn("t-bad"), txn("t-3")]
            )

        assert (summary.created, summary.failed) == (2, 1)
        assert "t-bad" in summary.errors[0]
        assert {row["external_transaction_id"] for row in ledger(fake_client)} == {"t-1", "t-3"}

    def test_empty_batch(self, importer, tenant_id):
        summary = importer.import_batch(tenant_id, CONNECTION, "account-1", [])

        assert summary.total == 0
        assert summary.imported == 0
