"""Transaction importer - idempotent upsert into the canonical ledger.

Each transaction is written twice under one stable id: the canonical
``transactions`` row (what the product reads) and the ``provider_transactions``
row (provider-only detail for enrichment). The id is derived from
(tenant, connection, external id), so re-importing the same transaction hits
the same rows and a pending->booked transition updates in place.
"""

import uuid
from dataclasses import dataclass, field

from ledgersync.database import Database
from ledgersync.logging_config import get_logger
from ledgersync.schemas.normalized import NormalizedTransaction
from ledgersync.utils.dates import utc_now


logger = get_logger("transaction_importer")

TRANSACTION_NAMESPACE = uuid.UUID("6f1c1f7e-4c6e-4a51-9a55-2b0c3a8f7d10")


@dataclass
class ImportSummary:
    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return self.created + self.updated


def stable_transaction_id(tenant_id: str, connection_id: str, external_id: str) -> str:
    return str(uuid.uuid5(TRANSACTION_NAMESPACE, f"{tenant_id}:{connection_id}:{external_id}"))


class TransactionImporter:
    def __init__(self, db: Database):
        self.db = db

    def import_batch(
        self,
        tenant_id: str,
        connection: dict,
        account_id: str,
        transactions: list[NormalizedTransaction],
    ) -> ImportSummary:
        """Upsert a batch of normalized transactions for one internal account.

        Failures are isolated per transaction.
        """
        connection_id = connection["id"]
        summary = ImportSummary(total=len(transactions))
        if not transactions:
            return summary

        existing = {
            row["external_transaction_id"]
            for row in self.db.get_transactions_by_external_ids(
                tenant_id, connection_id, [txn.external_id for txn in transactions]
            )
        }

        for txn in transactions:
            try:
                self._import_one(tenant_id, connection, account_id, txn)
            except Exception as e:
                summary.failed += 1
                summary.errors.append(f"Transaction {txn.external_id}: {e}")
                logger.error(f"Failed to import transaction {txn.external_id} for connection {connection_id}: {e}")
                continue

            if txn.external_id in existing:
                summary.updated += 1
            else:
                summary.created += 1
                existing.add(txn.external_id)

        logger.info(
            f"Imported {summary.imported}/{summary.total} transactions for account {account_id} "
            f"({summary.created} new, {summary.updated} updated, {summary.failed} failed)"
        )
        return summary

    def _import_one(self, tenant_id: str, connection: dict, account_id: str, txn: NormalizedTransaction) -> None:
        transaction_id = stable_transaction_id(tenant_id, connection["id"], txn.external_id)
        now = utc_now().isoformat()

        self.db.upsert_transaction({
            "id": transaction_id,
            "tenant_id": tenant_id,
            "connection_id": connection["id"],
            "account_id": account_id,
            "external_transaction_id": txn.external_id,
            "amount": float(txn.amount),
            "currency": txn.currency,
            "type": txn.type,
            "date": txn.booked_date.isoformat(),
            "description": txn.description,
            "counterparty_name": txn.counterparty_name,
            "category": txn.category,
            "status": txn.status,
            "updated_at": now,
        })

        self.db.upsert_provider_transaction({
            "transaction_id": transaction_id,
            "tenant_id": tenant_id,
            "connection_id": connection["id"],
            "provider_id": connection["provider_id"],
            "external_transaction_id": txn.external_id,
            "external_account_id": txn.external_account_id,
            "value_date": txn.value_date.isoformat() if txn.value_date else None,
            "reference": txn.reference,
            "counterparty_account": txn.counterparty_account,
            "metadata": txn.metadata,
            "imported_at": now,
        })
