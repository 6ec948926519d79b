"""Credential vault - encrypted provider credentials per connection."""

from ledgersync.database import Database
from ledgersync.exceptions import AuthError
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import Credentials, ProviderAdapter
from ledgersync.utils.dates import utc_now
from ledgersync.utils.encryption import decrypt_payload, encrypt_payload
from ledgersync.utils.locks import KeyedLock


logger = get_logger("credentials")


def _to_payload(credentials: Credentials) -> dict:
    return credentials.model_dump(mode="json")


class CredentialService:
    def __init__(self, db: Database, locks: KeyedLock | None = None):
        self.db = db
        self.locks = locks or KeyedLock()

    def load(self, connection: dict) -> Credentials:
        """Decrypt the stored credentials of a connection.

        Raises:
            AuthError: If the connection has no stored credentials.
        """
        credential_id = connection.get("credential_id")
        row = self.db.get_credential(connection["tenant_id"], credential_id) if credential_id else None
        if row is None:
            raise AuthError(
                f"Connection {connection['id']} has no stored credentials",
                provider_id=connection.get("provider_id"),
            )
        return Credentials(**decrypt_payload(row["encrypted_payload"]))

    def get_valid_credentials(self, connection: dict, adapter: ProviderAdapter) -> Credentials:
        """Return usable credentials, refreshing them first if they are about to expire.

        Refresh is serialized per connection; the credentials are re-read
        after the lock is acquired so a refresh done by a concurrent job is
        reused instead of repeated.
        """
        credentials = self.load(connection)
        if not credentials.is_expired():
            return credentials

        with self.locks.hold(("refresh", connection["id"])):
            credentials = self.load(connection)
            if not credentials.is_expired():
                return credentials

            if not credentials.refresh_token:
                raise AuthError(
                    f"Credentials for connection {connection['id']} expired and no refresh token is available",
                    provider_id=adapter.provider_id,
                )

            logger.info(f"Refreshing {adapter.provider_id} credentials for connection {connection['id']}")
            refreshed = adapter.refresh_credentials(credentials.refresh_token)
            if not refreshed.refresh_token:
                refreshed = refreshed.model_copy(update={"refresh_token": credentials.refresh_token})
            self._save(connection, refreshed)
            return refreshed

    def _save(self, connection: dict, credentials: Credentials) -> None:
        self.db.update_credential(
            connection["tenant_id"],
            connection["credential_id"],
            {
                "encrypted_payload": encrypt_payload(_to_payload(credentials)),
                "expires_at": credentials.expires_at.isoformat() if credentials.expires_at else None,
                "updated_at": utc_now().isoformat(),
            },
        )

    def store_credentials(self, connection: dict, credentials: Credentials) -> dict:
        """Store new credentials for a connection, replacing any existing ones.

        Returns:
            The connection with ``credential_id`` set.
        """
        tenant_id = connection["tenant_id"]
        if connection.get("credential_id") and self.db.get_credential(tenant_id, connection["credential_id"]):
            self._save(connection, credentials)
            return connection

        row = self.db.create_credential({
            "tenant_id": tenant_id,
            "connection_id": connection["id"],
            "provider_id": connection["provider_id"],
            "encrypted_payload": encrypt_payload(_to_payload(credentials)),
            "expires_at": credentials.expires_at.isoformat() if credentials.expires_at else None,
        })
        updated = self.db.update_connection(tenant_id, connection["id"], {"credential_id": row["id"]})
        logger.info(f"Stored credentials for connection {connection['id']}")
        return updated or {**connection, "credential_id": row["id"]}

    def remove_credentials(self, connection: dict) -> None:
        if not connection.get("credential_id"):
            return
        self.db.delete_credential(connection["tenant_id"], connection["credential_id"])
        self.db.update_connection(connection["tenant_id"], connection["id"], {"credential_id": None})
        logger.info(f"Removed credentials for connection {connection['id']}")
