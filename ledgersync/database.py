"""Supabase client setup and database utilities."""

from supabase import create_client, Client
from postgrest import SyncPostgrestClient

from ledgersync.config import get_settings


def get_admin_client() -> Client:
    """Get Supabase admin client using service_role key (NO CACHE).

    Bypasses RLS - used by the sync engine, which filters every read and
    write on tenant_id itself and needs access to provider_credentials.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key
    )


def get_authenticated_postgrest_client(access_token: str) -> SyncPostgrestClient:
    """Create a PostgREST client authenticated with the user's JWT.

    Bypasses the Supabase Client (whose auth listener overwrites the
    Authorization header) and talks to PostgREST directly with the
    anon key as apikey and the user's JWT as Authorization.
    """
    settings = get_settings()
    return SyncPostgrestClient(
        base_url=f"{settings.supabase_url}/rest/v1",
        headers={
            "apikey": settings.supabase_publishable_key,
            "Authorization": f"Bearer {access_token}",
        },
    )


class Database:
    """Database helper class for LedgerSync operations.

    Every tenant-scoped method takes the tenant id and filters on it.
    """

    def __init__(self, client: Client | SyncPostgrestClient):
        self.client = client

    # --- Users ---

    def get_user_by_id(self, user_id: str) -> dict | None:
        result = self.client.table("users").select("*").eq("id", user_id).execute()
        return result.data[0] if result.data else None

    # --- Connections ---

    def create_connection(self, data: dict) -> dict:
        result = self.client.table("connections").insert(data).execute()
        return result.data[0]

    def get_connection(self, tenant_id: str, connection_id: str) -> dict | None:
        result = (
            self.client.table("connections")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("id", connection_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def list_connections(self, tenant_id: str) -> list[dict]:
        result = (
            self.client.table("connections")
            .select("*")
            .eq("tenant_id", tenant_id)
            .order("created_at", desc=True)
            .execute()
        )
        return result.data

    def update_connection(self, tenant_id: str, connection_id: str, data: dict) -> dict | None:
        result = (
            self.client.table("connections")
            .update(data)
            .eq("tenant_id", tenant_id)
            .eq("id", connection_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_connections_due(self, now_iso: str) -> list[dict]:
        """Connections eligible for a scheduled sync across all tenants."""
        result = (
            self.client.table("connections")
            .select("*")
            .in_("status", ["active", "pending_setup"])
            .lte("next_sync_at", now_iso)
            .execute()
        )
        never_scheduled = (
            self.client.table("connections")
            .select("*")
            .in_("status", ["active", "pending_setup"])
            .is_("next_sync_at", "null")
            .execute()
        )
        return result.data + never_scheduled.data

    # --- Provider Credentials ---

    def create_credential(self, data: dict) -> dict:
        result = self.client.table("provider_credentials").insert(data).execute()
        return result.data[0]

    def get_credential(self, tenant_id: str, credential_id: str) -> dict | None:
        result = (
            self.client.table("provider_credentials")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("id", credential_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def update_credential(self, tenant_id: str, credential_id: str, data: dict) -> dict | None:
        result = (
            self.client.table("provider_credentials")
            .update(data)
            .eq("tenant_id", tenant_id)
            .eq("id", credential_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def delete_credential(self, tenant_id: str, credential_id: str) -> None:
        (
            self.client.table("provider_credentials")
            .delete()
            .eq("tenant_id", tenant_id)
            .eq("id", credential_id)
            .execute()
        )

    # --- Raw Provider Records ---

    def upsert_raw_record(self, data: dict) -> dict:
        result = (
            self.client.table("raw_provider_records")
            .upsert(data, on_conflict="connection_id,provider_id,external_id")
            .execute()
        )
        return result.data[0] if result.data else data

    def get_raw_record(self, tenant_id: str, connection_id: str, provider_id: str, external_id: str) -> dict | None:
        result = (
            self.client.table("raw_provider_records")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .eq("provider_id", provider_id)
            .eq("external_id", external_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # --- Accounts ---

    def find_accounts_by_iban(self, tenant_id: str, iban: str) -> list[dict]:
        result = (
            self.client.table("accounts")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("iban", iban)
            .execute()
        )
        return result.data

    def find_accounts_by_external_id(self, tenant_id: str, connection_id: str, external_id: str) -> list[dict]:
        """Accounts known to the connection under external_id, directly or through a link."""
        result = (
            self.client.table("accounts")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .eq("external_account_id", external_id)
            .execute()
        )
        accounts = {row["id"]: row for row in result.data}
        link = self.get_account_link(tenant_id, connection_id, external_id)
        if link and link["account_id"] not in accounts:
            linked = self.get_account(tenant_id, link["account_id"])
            if linked:
                accounts[linked["id"]] = linked
        return list(accounts.values())

    def find_accounts_by_bank_number(self, tenant_id: str, bank_name: str, account_number: str) -> list[dict]:
        result = (
            self.client.table("accounts")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("bank_name", bank_name)
            .eq("account_number", account_number)
            .execute()
        )
        return result.data

    def create_account(self, data: dict) -> dict:
        result = self.client.table("accounts").insert(data).execute()
        return result.data[0]

    def update_account(self, tenant_id: str, account_id: str, data: dict) -> dict | None:
        result = (
            self.client.table("accounts")
            .update(data)
            .eq("tenant_id", tenant_id)
            .eq("id", account_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_account(self, tenant_id: str, account_id: str) -> dict | None:
        result = (
            self.client.table("accounts")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("id", account_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def list_accounts(
        self,
        tenant_id: str,
        connection_id: str | None = None,
        status: str | None = None,
    ) -> list[dict]:
        query = self.client.table("accounts").select("*").eq("tenant_id", tenant_id)
        if connection_id:
            query = query.eq("connection_id", connection_id)
        if status:
            query = query.eq("status", status)
        result = query.order("name").execute()
        return result.data

    # --- Account links (one per connection reporting an account) ---

    def upsert_account_link(self, data: dict) -> dict:
        result = (
            self.client.table("account_links")
            .upsert(data, on_conflict="connection_id,external_account_id")
            .execute()
        )
        return result.data[0]

    def get_account_link(self, tenant_id: str, connection_id: str, external_account_id: str) -> dict | None:
        result = (
            self.client.table("account_links")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .eq("external_account_id", external_account_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_connection_account_links(self, tenant_id: str, connection_id: str) -> list[dict]:
        result = (
            self.client.table("account_links")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .execute()
        )
        return result.data

    def get_account_links(self, tenant_id: str, account_id: str) -> list[dict]:
        result = (
            self.client.table("account_links")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("account_id", account_id)
            .execute()
        )
        return result.data

    def update_account_link(self, tenant_id: str, link_id: str, data: dict) -> dict | None:
        result = (
            self.client.table("account_links")
            .update(data)
            .eq("tenant_id", tenant_id)
            .eq("id", link_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # --- Transactions ---

    def get_transactions_by_external_ids(
        self, tenant_id: str, connection_id: str, external_ids: list[str]
    ) -> list[dict]:
        if not external_ids:
            return []
        result = (
            self.client.table("transactions")
            .select("id, external_transaction_id")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .in_("external_transaction_id", external_ids)
            .execute()
        )
        return result.data

    def upsert_transaction(self, data: dict) -> dict:
        result = (
            self.client.table("transactions")
            .upsert(data, on_conflict="tenant_id,connection_id,external_transaction_id")
            .execute()
        )
        return result.data[0] if result.data else data

    def upsert_provider_transaction(self, data: dict) -> dict:
        result = (
            self.client.table("provider_transactions")
            .upsert(data, on_conflict="connection_id,provider_id,external_transaction_id")
            .execute()
        )
        return result.data[0] if result.data else data

    def _transactions_query(
        self,
        query,
        tenant_id: str,
        account_id: str | None,
        date_from: str | None,
        date_to: str | None,
    ):
        query = query.eq("tenant_id", tenant_id)
        if account_id:
            query = query.eq("account_id", account_id)
        if date_from:
            query = query.gte("date", date_from)
        if date_to:
            query = query.lte("date", date_to)
        return query

    def list_transactions(
        self,
        tenant_id: str,
        account_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        query = self._transactions_query(
            self.client.table("transactions").select("*"), tenant_id, account_id, date_from, date_to
        )
        result = (
            query.order("date", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return result.data

    def count_transactions(
        self,
        tenant_id: str,
        account_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> int:
        query = self._transactions_query(
            self.client.table("transactions").select("id", count="exact"),
            tenant_id,
            account_id,
            date_from,
            date_to,
        )
        result = query.execute()
        return result.count if result.count is not None else 0

    # --- Sync Jobs ---

    def create_sync_job(self, job_data: dict) -> dict:
        result = self.client.table("sync_jobs").insert(job_data).execute()
        return result.data[0]

    def get_sync_job(self, tenant_id: str, job_id: str) -> dict | None:
        result = (
            self.client.table("sync_jobs")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("id", job_id)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_connection_sync_jobs(self, tenant_id: str, connection_id: str, limit: int = 20) -> list[dict]:
        result = (
            self.client.table("sync_jobs")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data

    def get_finished_sync_jobs_since(self, tenant_id: str, connection_id: str, since_iso: str) -> list[dict]:
        result = (
            self.client.table("sync_jobs")
            .select("id, status, started_at")
            .eq("tenant_id", tenant_id)
            .eq("connection_id", connection_id)
            .in_("status", ["completed", "partial", "failed"])
            .gte("started_at", since_iso)
            .execute()
        )
        return result.data

    def update_sync_job(self, tenant_id: str, job_id: str, data: dict) -> dict | None:
        result = (
            self.client.table("sync_jobs")
            .update(data)
            .eq("tenant_id", tenant_id)
            .eq("id", job_id)
            .execute()
        )
        return result.data[0] if result.data else None
