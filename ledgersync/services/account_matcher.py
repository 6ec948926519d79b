"""Account matcher - resolves normalized accounts to internal accounts.

Matching rules, strict priority, first match wins:
    1. IBAN within the tenant
    2. external account id within (tenant, connection)
    3. (bank name, account number) within the tenant
    4. otherwise create a new internal account

Every resolve also records an account link for (connection, external id). The
link holds the id this connection's provider uses for the account and the
connection's own transaction sync timestamp, so one account can be fed by
several connections.

Resolve-or-create holds the lock of every matching key the incoming account
carries, so two concurrent syncs cannot create two internal accounts for the
same real-world account.
"""

from dataclasses import dataclass

from ledgersync.database import Database
from ledgersync.exceptions import MatchConflict
from ledgersync.logging_config import get_logger
from ledgersync.schemas.normalized import NormalizedAccount
from ledgersync.utils.dates import utc_now
from ledgersync.utils.locks import KeyedLock


logger = get_logger("account_matcher")


@dataclass
class MatchResult:
    account: dict
    is_new: bool
    matched_by: str | None = None
    link: dict | None = None


def _normalize_iban(iban: str | None) -> str | None:
    if not iban:
        return None
    return iban.replace(" ", "").upper()


class AccountMatcher:
    def __init__(self, db: Database, locks: KeyedLock | None = None):
        self.db = db
        self.locks = locks or KeyedLock()

    def matching_keys(self, tenant_id: str, connection_id: str, account: NormalizedAccount) -> list[tuple]:
        keys = [("external_id", tenant_id, connection_id, account.external_id)]
        iban = _normalize_iban(account.iban)
        if iban:
            keys.append(("iban", tenant_id, iban))
        if account.bank_name and account.account_number:
            keys.append(("bank_number", tenant_id, account.bank_name, account.account_number))
        return keys

    def resolve(self, tenant_id: str, connection: dict, account: NormalizedAccount) -> MatchResult:
        """Resolve a normalized account to an existing account or create one.

        Raises:
            MatchConflict: If a key matches more than one account, or a
                bank/number match carries a different IBAN.
        """
        connection_id = connection["id"]
        with self.locks.hold_many(self.matching_keys(tenant_id, connection_id, account)):
            existing, matched_by = self._find_existing(tenant_id, connection_id, account)

            if existing is None:
                created = self.db.create_account(self._new_account_row(tenant_id, connection, account))
                logger.info(
                    f"Created account {created['id']} for external account {account.external_id} "
                    f"(connection {connection_id})"
                )
                link = self._link(tenant_id, connection, created, account)
                return MatchResult(account=created, is_new=True, link=link)

            updated = self.db.update_account(
                tenant_id, existing["id"], self._update_row(existing, connection, account)
            )
            logger.info(f"Matched external account {account.external_id} to {existing['id']} by {matched_by}")
            link = self._link(tenant_id, connection, existing, account)
            return MatchResult(account=updated or existing, is_new=False, matched_by=matched_by, link=link)

    def _find_existing(
        self, tenant_id: str, connection_id: str, account: NormalizedAccount
    ) -> tuple[dict | None, str | None]:
        iban = _normalize_iban(account.iban)
        if iban:
            match = self._single(self.db.find_accounts_by_iban(tenant_id, iban), "iban")
            if match:
                return match, "iban"

        match = self._single(
            self.db.find_accounts_by_external_id(tenant_id, connection_id, account.external_id),
            "external_id",
        )
        if match:
            return match, "external_id"

        if account.bank_name and account.account_number:
            match = self._single(
                self.db.find_accounts_by_bank_number(tenant_id, account.bank_name, account.account_number),
                "bank_number",
            )
            if match:
                recorded_iban = _normalize_iban(match.get("iban"))
                if iban and recorded_iban and recorded_iban != iban:
                    raise MatchConflict(
                        f"Account {match['id']} matches {account.bank_name} {account.account_number} "
                        f"but has IBAN {recorded_iban}, incoming IBAN is {iban}; manual reconciliation required",
                        account_id=match["id"],
                        matched_by="bank_number",
                    )
                return match, "bank_number"

        return None, None

    @staticmethod
    def _single(rows: list[dict], matched_by: str) -> dict | None:
        if len(rows) > 1:
            raise MatchConflict(
                f"{len(rows)} accounts share the same {matched_by}; manual reconciliation required",
                account_id=rows[0]["id"],
                matched_by=matched_by,
            )
        return rows[0] if rows else None

    @staticmethod
    def _new_account_row(tenant_id: str, connection: dict, account: NormalizedAccount) -> dict:
        now = utc_now().isoformat()
        return {
            "tenant_id": tenant_id,
            "connection_id": connection["id"],
            "provider_id": connection["provider_id"],
            "external_account_id": account.external_id,
            "name": account.name,
            "account_type": account.account_type,
            "currency": account.currency,
            "balance": float(account.balance),
            "available_balance": float(account.available_balance) if account.available_balance is not None else None,
            "iban": _normalize_iban(account.iban),
            "bic": account.bic,
            "account_number": account.account_number,
            "bank_name": account.bank_name,
            "holder_name": account.holder_name,
            "status": account.status,
            "metadata": account.metadata,
            "last_synced_at": now,
        }

    @staticmethod
    def _update_row(existing: dict, connection: dict, account: NormalizedAccount) -> dict:
        data = {
            "name": account.name,
            "balance": float(account.balance),
            "available_balance": float(account.available_balance) if account.available_balance is not None else None,
            "status": account.status,
            "last_synced_at": utc_now().isoformat(),
            "updated_at": utc_now().isoformat(),
        }
        if account.holder_name:
            data["holder_name"] = account.holder_name
        # Identifiers are filled in when missing, never overwritten
        if account.iban and not existing.get("iban"):
            data["iban"] = _normalize_iban(account.iban)
        if account.bic and not existing.get("bic"):
            data["bic"] = account.bic
        if account.account_number and not existing.get("account_number"):
            data["account_number"] = account.account_number
        if account.bank_name and not existing.get("bank_name"):
            data["bank_name"] = account.bank_name
        # Adopt orphaned accounts (connection removed) into the reporting connection
        if not existing.get("connection_id"):
            data["connection_id"] = connection["id"]
            data["external_account_id"] = account.external_id
        return data

    def _link(self, tenant_id: str, connection: dict, internal: dict, account: NormalizedAccount) -> dict:
        now = utc_now().isoformat()
        return self.db.upsert_account_link({
            "tenant_id": tenant_id,
            "account_id": internal["id"],
            "connection_id": connection["id"],
            "provider_id": connection["provider_id"],
            "external_account_id": account.external_id,
            "status": "closed" if account.status == "closed" else "active",
            "last_seen_at": now,
            "updated_at": now,
        })

    def close_missing_accounts(self, tenant_id: str, connection_id: str, reported_account_ids: set[str]) -> int:
        """Close the connection's links to accounts it no longer reports.

        An account is marked closed once none of its links are active, so an
        account still reported by another connection stays open.
        """
        closed = 0
        for link in self.db.get_connection_account_links(tenant_id, connection_id):
            if link["account_id"] in reported_account_ids or link.get("status") == "closed":
                continue
            now = utc_now().isoformat()
            self.db.update_account_link(tenant_id, link["id"], {"status": "closed", "updated_at": now})

            links = self.db.get_account_links(tenant_id, link["account_id"])
            if any(other.get("status") != "closed" for other in links if other["id"] != link["id"]):
                logger.info(
                    f"Connection {connection_id} no longer reports account {link['account_id']}, "
                    f"still linked elsewhere"
                )
                continue

            account = self.db.get_account(tenant_id, link["account_id"])
            if account is None or account.get("status") == "closed":
                continue
            self.db.update_account(tenant_id, account["id"], {"status": "closed", "updated_at": now})
            logger.info(f"Marked account {account['id']} closed (no longer reported by connection {connection_id})")
            closed += 1
        return closed
