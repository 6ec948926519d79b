"""API tests using FastAPI's TestClient with dependency overrides."""

import pytest
from fastapi.testclient import TestClient

from ledgersync.dependencies import (
    get_current_user,
    get_database,
    get_orchestrator,
    get_registry,
    get_tenant_id,
)
from ledgersync.exceptions import AuthError, ProviderUnavailable
from ledgersync.main import app

from conftest import TENANT_ID


API = "/api/v1"


@pytest.fixture
def client(db, orchestrator, registry):
    app.dependency_overrides[get_current_user] = lambda: {"id": "user-1", "tenant_id": TENANT_ID}
    app.dependency_overrides[get_tenant_id] = lambda: TENANT_ID
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


# =========================================
# Sync
# =========================================

class TestSyncEndpoints:
    def test_trigger_sync(self, client, connection):
        response = client.post(f"{API}/sync/connections/{connection['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["accounts_synced"] == 3
        assert body["records_imported"] == 4
        assert body["connection_status"] == "active"

    def test_trigger_sync_with_options(self, client, connection, fake_provider):
        response = client.post(
            f"{API}/sync/connections/{connection['id']}",
            json={"sync_transactions": True, "window_start": "2025-01-01", "window_end": "2025-01-31"},
        )

        assert response.status_code == 200
        assert {s["reason"] for s in response.json()["account_summaries"]} == {"override"}

    def test_half_open_window_is_rejected(self, client, connection):
        response = client.post(
            f"{API}/sync/connections/{connection['id']}", json={"window_start": "2025-01-01"}
        )

        assert response.status_code == 422

    def test_partial_sync_returns_200(self, client, connection, fake_provider):
        fake_provider.failures["acc-3"] = ProviderUnavailable("upstream 502", provider_id="fakebank")

        response = client.post(f"{API}/sync/connections/{connection['id']}")

        assert response.status_code == 200
        assert response.json()["status"] == "partial"

    def test_unknown_connection_is_404(self, client):
        response = client.post(f"{API}/sync/connections/does-not-exist")

        assert response.status_code == 404

    def test_connection_in_error_is_409(self, client, connection, fake_provider):
        fake_provider.accounts_error = AuthError("revoked", provider_id="fakebank")
        client.post(f"{API}/sync/connections/{connection['id']}")

        response = client.post(f"{API}/sync/connections/{connection['id']}")

        assert response.status_code == 409

    def test_job_history_and_detail(self, client, connection):
        job_id = client.post(f"{API}/sync/connections/{connection['id']}").json()["job_id"]

        history = client.get(f"{API}/sync/connections/{connection['id']}/jobs")
        detail = client.get(f"{API}/sync/jobs/{job_id}")

        assert history.status_code == 200
        assert [job["id"] for job in history.json()["jobs"]] == [job_id]
        assert detail.status_code == 200
        assert detail.json()["status"] == "completed"
        assert detail.json()["records_imported"] == 4

    def test_missing_job_is_404(self, client):
        assert client.get(f"{API}/sync/jobs/nope").status_code == 404


# =========================================
# Connections
# =========================================

class TestConnectionEndpoints:
    def test_create_with_credentials(self, client):
        response = client.post(
            f"{API}/connections",
            json={"provider_id": "fakebank", "credentials": {"access_token": "secret-token"}},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending_setup"
        assert body["name"] == "Fake Bank"
        assert "secret-token" not in response.text

    def test_create_requires_authorization(self, client):
        response = client.post(f"{API}/connections", json={"provider_id": "fakebank"})

        assert response.status_code == 422

    def test_create_with_unknown_provider(self, client):
        response = client.post(
            f"{API}/connections",
            json={"provider_id": "nobank", "credentials": {"access_token": "x"}},
        )

        assert response.status_code == 404

    def test_list_connections(self, client, connection):
        response = client.get(f"{API}/connections")

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["id"] == connection["id"]

    def test_health_and_summary(self, client, connection):
        client.post(f"{API}/sync/connections/{connection['id']}")

        health = client.get(f"{API}/connections/{connection['id']}/health")
        summary = client.get(f"{API}/connections/{connection['id']}/summary")

        assert health.status_code == 200
        assert health.json()["band"] == "excellent"
        assert health.json()["status"] == "active"
        assert summary.json()["sync_summary"]["accounts_synced"] == 3

    def test_disable_then_enable(self, client, connection):
        disabled = client.post(f"{API}/connections/{connection['id']}/disable")
        enabled = client.post(f"{API}/connections/{connection['id']}/enable")

        assert disabled.json()["status"] == "inactive"
        assert enabled.json()["status"] == "active"

    def test_reauthorize_clears_error(self, client, connection, fake_provider):
        fake_provider.accounts_error = AuthError("revoked", provider_id="fakebank")
        client.post(f"{API}/sync/connections/{connection['id']}")
        fake_provider.accounts_error = None

        blocked = client.post(f"{API}/connections/{connection['id']}/enable")
        reauthorized = client.post(
            f"{API}/connections/{connection['id']}/credentials",
            json={"credentials": {"access_token": "new-token"}},
        )
        resynced = client.post(f"{API}/sync/connections/{connection['id']}")

        assert blocked.status_code == 409
        assert reauthorized.json()["status"] == "active"
        assert reauthorized.json()["consecutive_failures"] == 0
        assert resynced.json()["status"] == "completed"

    def test_disconnect_keeps_accounts(self, client, connection, db, tenant_id):
        client.post(f"{API}/sync/connections/{connection['id']}")

        response = client.delete(f"{API}/connections/{connection['id']}")

        assert response.json()["success"] is True
        assert db.get_connection(tenant_id, connection["id"])["status"] == "inactive"
        assert len(db.list_accounts(tenant_id)) == 3


# =========================================
# Read endpoints
# =========================================

class TestReadEndpoints:
    def test_accounts_and_transactions(self, client, connection):
        client.post(f"{API}/sync/connections/{connection['id']}")

        accounts = client.get(f"{API}/accounts").json()
        checking = next(a for a in accounts["items"] if a["external_account_id"] == "acc-1")
        transactions = client.get(f"{API}/accounts/{checking['id']}/transactions").json()
        ledger = client.get(f"{API}/transactions").json()

        assert accounts["total"] == 3
        assert transactions["total"] == 2
        assert {t["type"] for t in transactions["items"]} == {"credit", "debit"}
        assert ledger["total"] == 4

    def test_unknown_account_is_404(self, client):
        assert client.get(f"{API}/accounts/nope/transactions").status_code == 404

    def test_providers(self, client):
        response = client.get(f"{API}/providers")

        assert response.status_code == 200
        providers = response.json()["providers"]
        assert providers[0]["provider_id"] == "fakebank"
        assert providers[0]["enabled"] is True


def test_health_check():
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
