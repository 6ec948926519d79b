"""Tests for the scheduled sync entry point."""

from types import SimpleNamespace
from unittest.mock import patch

from ledgersync.cron import run_scheduled_syncs
from ledgersync.utils.locks import KeyedLock


def test_run_scheduled_syncs_uses_app_state(fake_client, registry, db, tenant_id, connection):
    app = SimpleNamespace(
        state=SimpleNamespace(registry=registry, account_locks=KeyedLock(), credential_locks=KeyedLock())
    )

    with patch("ledgersync.cron.get_admin_client", return_value=fake_client):
        results = run_scheduled_syncs(app)

    assert [r["status"] for r in results] == ["completed"]
    assert db.get_connection(tenant_id, connection["id"])["status"] == "active"
