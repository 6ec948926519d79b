"""Connection lifecycle: create, re-authorize, enable/disable, disconnect."""

from ledgersync.database import Database
from ledgersync.exceptions import ConnectionNotFound, ConnectionNotSyncable
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import Credentials
from ledgersync.providers.registry import ProviderRegistry
from ledgersync.services.credential_service import CredentialService
from ledgersync.services.health_service import HealthService
from ledgersync.utils.dates import utc_now


logger = get_logger("connections")


class ConnectionService:
    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        credentials: CredentialService,
        health: HealthService,
    ):
        self.db = db
        self.registry = registry
        self.credentials = credentials
        self.health = health

    def get(self, tenant_id: str, connection_id: str) -> dict:
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise ConnectionNotFound(f"Connection {connection_id} not found")
        return connection

    def _credentials_from_request(
        self,
        provider_id: str,
        authorization_code: str | None,
        credentials: Credentials | None,
    ) -> Credentials:
        if credentials is not None:
            return credentials
        if not authorization_code:
            raise ValueError("Either authorization_code or credentials must be provided")
        return self.registry.get(provider_id).exchange_authorization(authorization_code)

    def create(
        self,
        tenant_id: str,
        provider_id: str,
        name: str | None = None,
        authorization_code: str | None = None,
        credentials: Credentials | None = None,
    ) -> dict:
        """Create a connection in pending_setup and store its credentials.

        The first successful sync job moves it to active.
        """
        adapter = self.registry.get(provider_id)
        creds = self._credentials_from_request(provider_id, authorization_code, credentials)

        connection = self.db.create_connection({
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "name": name or adapter.config.display_name,
            "status": "pending_setup",
            "consecutive_failures": 0,
            "health_score": 1.0,
            "next_sync_at": utc_now().isoformat(),
        })
        connection = self.credentials.store_credentials(connection, creds)
        logger.info(f"Created {provider_id} connection {connection['id']} for tenant {tenant_id}")
        return connection

    def reauthorize(
        self,
        tenant_id: str,
        connection_id: str,
        authorization_code: str | None = None,
        credentials: Credentials | None = None,
    ) -> dict:
        """Replace a connection's credentials and clear its failure state."""
        connection = self.get(tenant_id, connection_id)
        creds = self._credentials_from_request(connection["provider_id"], authorization_code, credentials)
        connection = self.credentials.store_credentials(connection, creds)
        return self.health.reset_health(connection)

    def set_enabled(self, tenant_id: str, connection_id: str, enabled: bool) -> dict:
        """Toggle between active and inactive.

        A connection in error must be re-authorized instead of enabled.
        """
        connection = self.get(tenant_id, connection_id)
        if enabled and connection["status"] == "error":
            raise ConnectionNotSyncable(
                f"Connection {connection_id} is in error; re-authorize it instead",
                provider_id=connection["provider_id"],
            )
        if enabled and not connection.get("credential_id"):
            raise ConnectionNotSyncable(
                f"Connection {connection_id} has no credentials; re-authorize it instead",
                provider_id=connection["provider_id"],
            )

        status = "active" if enabled else "inactive"
        data = {"status": status, "updated_at": utc_now().isoformat()}
        if enabled:
            data["next_sync_at"] = utc_now().isoformat()
        updated = self.db.update_connection(tenant_id, connection_id, data)
        logger.info(f"Connection {connection_id} {'enabled' if enabled else 'disabled'}")
        return updated or {**connection, **data}

    def disconnect(self, tenant_id: str, connection_id: str) -> dict:
        """Soft-retire a connection: remove credentials, keep accounts and transactions."""
        connection = self.get(tenant_id, connection_id)
        self.credentials.remove_credentials(connection)
        data = {
            "status": "inactive",
            "credential_id": None,
            "next_sync_at": None,
            "disconnected_at": utc_now().isoformat(),
            "updated_at": utc_now().isoformat(),
        }
        updated = self.db.update_connection(tenant_id, connection_id, data)
        # Accounts stay, but this connection no longer reports them
        for link in self.db.get_connection_account_links(tenant_id, connection_id):
            self.db.update_account_link(tenant_id, link["id"], {"status": "closed", "updated_at": data["updated_at"]})
        logger.info(f"Disconnected connection {connection_id}")
        return updated or {**connection, **data}
