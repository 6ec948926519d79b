"""Tests for connection lifecycle, credential storage and raw capture."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from ledgersync.exceptions import AuthError, ConnectionNotFound, ConnectionNotSyncable, ProviderNotFound
from ledgersync.providers.base import Credentials, RawRecord, ResponseMetadata
from ledgersync.services.connection_service import ConnectionService
from ledgersync.services.credential_service import CredentialService
from ledgersync.services.raw_capture_service import RawCaptureService
from ledgersync.utils.dates import utc_now
from ledgersync.utils.encryption import decrypt_payload

from conftest import OTHER_TENANT_ID


@pytest.fixture
def service(db, registry, orchestrator):
    return ConnectionService(db, registry, orchestrator.credentials, orchestrator.health)


# =========================================
# Connection lifecycle
# =========================================

class TestConnectionService:
    def test_create_stores_encrypted_credentials(self, service, db, fake_client, tenant_id):
        connection = service.create(tenant_id, "fakebank", credentials=Credentials(access_token="secret"))

        assert connection["status"] == "pending_setup"
        assert connection["name"] == "Fake Bank"
        row = fake_client.tables["provider_credentials"][0]
        assert row["id"] == connection["credential_id"]
        assert "secret" not in row["encrypted_payload"]
        assert decrypt_payload(row["encrypted_payload"])["access_token"] == "secret"

    def test_create_exchanges_authorization_code(self, service, fake_provider, tenant_id):
        fake_provider.exchange_authorization = MagicMock(return_value=Credentials(access_token="exchanged"))

        connection = service.create(tenant_id, "fakebank", name="Joint account", authorization_code="code-123")

        fake_provider.exchange_authorization.assert_called_once_with("code-123")
        assert connection["name"] == "Joint account"
        assert service.credentials.load(connection).access_token == "exchanged"

    def test_create_with_unknown_provider(self, service, tenant_id):
        with pytest.raises(ProviderNotFound):
            service.create(tenant_id, "nobank", credentials=Credentials(access_token="x"))

    def test_get_is_tenant_scoped(self, service, connection):
        with pytest.raises(ConnectionNotFound):
            service.get(OTHER_TENANT_ID, connection["id"])

    def test_error_connection_cannot_be_enabled(self, service, db, tenant_id, connection):
        db.update_connection(tenant_id, connection["id"], {"status": "error"})

        with pytest.raises(ConnectionNotSyncable):
            service.set_enabled(tenant_id, connection["id"], True)

    def test_reauthorize_resets_health(self, service, db, tenant_id, connection):
        db.update_connection(tenant_id, connection["id"], {"status": "error", "consecutive_failures": 3})

        updated = service.reauthorize(tenant_id, connection["id"], credentials=Credentials(access_token="new"))

        assert updated["status"] == "active"
        assert updated["consecutive_failures"] == 0
        assert service.credentials.load(updated).access_token == "new"

    def test_disconnect_removes_credentials(self, service, db, fake_client, tenant_id, connection):
        updated = service.disconnect(tenant_id, connection["id"])

        assert updated["status"] == "inactive"
        assert updated["credential_id"] is None
        assert updated["disconnected_at"] is not None
        assert fake_client.tables["provider_credentials"] == []

        with pytest.raises(ConnectionNotSyncable):
            service.set_enabled(tenant_id, connection["id"], True)

    def test_disconnect_closes_account_links(self, service, db, orchestrator, tenant_id, connection):
        orchestrator.trigger_sync(tenant_id, connection["id"], sync_transactions=False)

        service.disconnect(tenant_id, connection["id"])

        links = db.get_connection_account_links(tenant_id, connection["id"])
        assert len(links) == 3
        assert {link["status"] for link in links} == {"closed"}
        assert {account["status"] for account in db.list_accounts(tenant_id)} == {"active"}


# =========================================
# Credentials
# =========================================

class TestCredentialService:
    def test_fresh_credentials_are_not_refreshed(self, db, fake_provider, connection):
        credentials = CredentialService(db).get_valid_credentials(connection, fake_provider)

        assert credentials.access_token == "token-abc"
        assert fake_provider.refresh_calls == 0

    def test_missing_credentials_is_auth_error(self, db, fake_provider, tenant_id):
        connection = db.create_connection({"tenant_id": tenant_id, "provider_id": "fakebank", "status": "active"})

        with pytest.raises(AuthError):
            CredentialService(db).get_valid_credentials(connection, fake_provider)

    def test_token_expiring_soon_is_refreshed(self, db, fake_provider, connection):
        service = CredentialService(db)
        service.store_credentials(
            connection,
            Credentials(access_token="old", refresh_token="r-1", expires_at=utc_now() + timedelta(minutes=2)),
        )

        credentials = service.get_valid_credentials(connection, fake_provider)

        assert credentials.access_token == "refreshed-1"
        assert fake_provider.refresh_calls == 1

    def test_refresh_failure_propagates(self, db, fake_provider, connection):
        service = CredentialService(db)
        service.store_credentials(
            connection,
            Credentials(access_token="old", refresh_token="r-1", expires_at=utc_now() - timedelta(hours=1)),
        )
        fake_provider.refresh_credentials = MagicMock(side_effect=AuthError("invalid_grant", provider_id="fakebank"))

        with pytest.raises(AuthError):
            service.get_valid_credentials(connection, fake_provider)


# =========================================
# Raw capture
# =========================================

class TestRawCapture:
    def record(self, payload, duration_ms=10):
        return RawRecord(
            tenant_id="tenant-1",
            connection_id="conn-1",
            provider_id="fakebank",
            record_type="accounts",
            external_id="accounts",
            payload=payload,
            metadata=ResponseMetadata(status_code=200, duration_ms=duration_ms, endpoint="/accounts"),
        )

    def test_latest_fetch_replaces_payload(self, db, fake_client):
        store = RawCaptureService(db)

        store.store(self.record({"accounts": [1]}))
        store.store(self.record({"accounts": [1, 2]}, duration_ms=25))

        rows = fake_client.tables["raw_provider_records"]
        assert len(rows) == 1
        assert rows[0]["payload"] == {"accounts": [1, 2]}
        assert rows[0]["duration_ms"] == 25
        assert rows[0]["endpoint"] == "/accounts"

    def test_payload_of_any_shape(self, db):
        stored = RawCaptureService(db).store(self.record([{"odd": "list payload"}]))

        assert stored["payload"] == [{"odd": "list payload"}]
