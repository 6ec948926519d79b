"""Tests for the account matcher."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from ledgersync.exceptions import MatchConflict
from ledgersync.schemas.normalized import NormalizedAccount
from ledgersync.services.account_matcher import AccountMatcher
from ledgersync.utils.locks import KeyedLock

from conftest import OTHER_TENANT_ID


CONNECTION = {"id": "conn-1", "provider_id": "fakebank"}
OTHER_CONNECTION = {"id": "conn-2", "provider_id": "tink"}


def normalized(external_id="ext-1", **overrides):
    fields = {
        "external_id": external_id,
        "name": "Everyday Checking",
        "account_type": "checking",
        "currency": "EUR",
        "balance": Decimal("100.00"),
    }
    fields.update(overrides)
    return NormalizedAccount(**fields)


@pytest.fixture
def matcher(db):
    return AccountMatcher(db)


# =========================================
# Resolve
# =========================================

class TestResolve:
    def test_creates_account_when_nothing_matches(self, matcher, db, tenant_id):
        result = matcher.resolve(tenant_id, CONNECTION, normalized(iban="nl91 abna 0417 1643 00"))

        assert result.is_new is True
        assert result.matched_by is None
        assert result.account["tenant_id"] == tenant_id
        assert result.account["connection_id"] == "conn-1"
        assert result.account["external_account_id"] == "ext-1"
        assert result.account["iban"] == "NL91ABNA0417164300"
        assert len(db.list_accounts(tenant_id)) == 1

    def test_resync_matches_by_external_id_and_updates_balance(self, matcher, db, tenant_id):
        first = matcher.resolve(tenant_id, CONNECTION, normalized())
        second = matcher.resolve(tenant_id, CONNECTION, normalized(balance=Decimal("42.10")))

        assert second.is_new is False
        assert second.matched_by == "external_id"
        assert second.account["id"] == first.account["id"]
        assert second.account["balance"] == 42.10
        assert len(db.list_accounts(tenant_id)) == 1

    def test_iban_wins_over_external_id(self, matcher, db, tenant_id):
        iban_owner = matcher.resolve(tenant_id, CONNECTION, normalized("ext-a", iban="NL91ABNA0417164300"))
        # Same external id on the second connection belongs to a different account
        matcher.resolve(tenant_id, OTHER_CONNECTION, normalized("ext-1"))

        result = matcher.resolve(
            tenant_id, OTHER_CONNECTION, normalized("ext-1", iban="NL91ABNA0417164300")
        )

        assert result.matched_by == "iban"
        assert result.account["id"] == iban_owner.account["id"]

    def test_bank_and_number_fallback(self, matcher, db, tenant_id):
        existing = matcher.resolve(
            tenant_id, CONNECTION, normalized("ext-a", bank_name="ING", account_number="998877")
        )

        result = matcher.resolve(
            tenant_id, OTHER_CONNECTION, normalized("ext-b", bank_name="ING", account_number="998877")
        )

        assert result.is_new is False
        assert result.matched_by == "bank_number"
        assert result.account["id"] == existing.account["id"]

    def test_each_connection_gets_its_own_link(self, matcher, db, tenant_id):
        first = matcher.resolve(tenant_id, CONNECTION, normalized("ext-a", iban="NL91ABNA0417164300"))

        second = matcher.resolve(tenant_id, OTHER_CONNECTION, normalized("ext-b", iban="NL91ABNA0417164300"))

        assert second.account["id"] == first.account["id"]
        assert second.account["external_account_id"] == "ext-a"
        assert (second.link["connection_id"], second.link["external_account_id"]) == ("conn-2", "ext-b")
        assert second.link["account_id"] == first.account["id"]
        assert len(db.get_account_links(tenant_id, first.account["id"])) == 2

    def test_linked_external_id_matches_on_resync(self, matcher, tenant_id):
        first = matcher.resolve(tenant_id, CONNECTION, normalized("ext-a", iban="NL91ABNA0417164300"))
        matcher.resolve(tenant_id, OTHER_CONNECTION, normalized("ext-b", iban="NL91ABNA0417164300"))

        result = matcher.resolve(tenant_id, OTHER_CONNECTION, normalized("ext-b"))

        assert result.matched_by == "external_id"
        assert result.account["id"] == first.account["id"]

    def test_bank_and_number_with_different_iban_conflicts(self, matcher, db, tenant_id):
        matcher.resolve(
            tenant_id,
            CONNECTION,
            normalized("ext-a", iban="NL91ABNA0417164300", bank_name="ING", account_number="998877"),
        )

        with pytest.raises(MatchConflict) as exc_info:
            matcher.resolve(
                tenant_id,
                OTHER_CONNECTION,
                normalized("ext-b", iban="NL02RABO0123456789", bank_name="ING", account_number="998877"),
            )

        assert exc_info.value.matched_by == "bank_number"
        assert len(db.list_accounts(tenant_id)) == 1

    def test_ambiguous_match_conflicts(self, matcher, db, tenant_id):
        for external_id in ("ext-a", "ext-b"):
            db.create_account({
                "tenant_id": tenant_id,
                "connection_id": "conn-9",
                "external_account_id": external_id,
                "name": "Duplicate",
                "bank_name": "ING",
                "account_number": "111",
            })

        with pytest.raises(MatchConflict):
            matcher.resolve(tenant_id, CONNECTION, normalized("ext-z", bank_name="ING", account_number="111"))

    def test_matches_never_cross_tenants(self, matcher, db, tenant_id):
        other = matcher.resolve(OTHER_TENANT_ID, CONNECTION, normalized(iban="NL91ABNA0417164300"))

        result = matcher.resolve(tenant_id, CONNECTION, normalized(iban="NL91ABNA0417164300"))

        assert result.is_new is True
        assert result.account["id"] != other.account["id"]

    def test_missing_identifiers_are_filled_not_overwritten(self, matcher, db, tenant_id):
        first = matcher.resolve(tenant_id, CONNECTION, normalized(bank_name="ING"))
        matcher.resolve(tenant_id, CONNECTION, normalized(bank_name="Other Bank", iban="NL91ABNA0417164300"))

        account = db.get_account(tenant_id, first.account["id"])
        assert account["iban"] == "NL91ABNA0417164300"
        assert account["bank_name"] == "ING"

    def test_concurrent_resolves_create_one_account(self, db, tenant_id):
        matcher = AccountMatcher(db, KeyedLock())

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda _: matcher.resolve(tenant_id, CONNECTION, normalized(iban="NL91ABNA0417164300")),
                range(16),
            ))

        assert len(db.list_accounts(tenant_id)) == 1
        assert sum(1 for r in results if r.is_new) == 1
        assert len({r.account["id"] for r in results}) == 1


# =========================================
# Closing accounts
# =========================================

class TestCloseMissingAccounts:
    def test_unreported_accounts_are_closed(self, matcher, db, tenant_id):
        kept = matcher.resolve(tenant_id, CONNECTION, normalized("ext-1")).account
        gone = matcher.resolve(tenant_id, CONNECTION, normalized("ext-2")).account

        closed = matcher.close_missing_accounts(tenant_id, "conn-1", {kept["id"]})

        assert closed == 1
        assert db.get_account(tenant_id, gone["id"])["status"] == "closed"
        assert db.get_account(tenant_id, kept["id"])["status"] == "active"

    def test_account_reported_by_another_connection_stays_open(self, matcher, db, tenant_id):
        shared = matcher.resolve(tenant_id, CONNECTION, normalized("ext-a", iban="NL91ABNA0417164300")).account
        matcher.resolve(tenant_id, OTHER_CONNECTION, normalized("ext-b", iban="NL91ABNA0417164300"))

        assert matcher.close_missing_accounts(tenant_id, "conn-2", set()) == 0
        assert db.get_account(tenant_id, shared["id"])["status"] == "active"

        assert matcher.close_missing_accounts(tenant_id, "conn-1", set()) == 1
        assert db.get_account(tenant_id, shared["id"])["status"] == "closed"

    def test_already_closed_accounts_are_not_counted(self, matcher, db, tenant_id):
        matcher.resolve(tenant_id, CONNECTION, normalized("ext-1", status="closed"))

        assert matcher.close_missing_accounts(tenant_id, "conn-1", set()) == 0
