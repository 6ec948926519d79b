"""Tink open-banking adapter (OAuth, paged /data/v2 endpoints)."""

import time
from datetime import timedelta

import httpx

from ledgersync.config import Settings
from ledgersync.exceptions import AuthError
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import (
    Credentials,
    FetchWindow,
    ProviderAdapter,
    ProviderConfig,
    RawRecord,
    accounts_record_id,
    transactions_record_id,
)
from ledgersync.services.normalization_service import TinkNormalizer
from ledgersync.utils.dates import utc_now


logger = get_logger("providers.tink")

PAGE_SIZE = 100


class TinkProvider(ProviderAdapter):
    config = ProviderConfig(
        provider_id="tink",
        display_name="Tink",
        auth_type="oauth",
        supported_countries=["NL", "BE", "DE", "FR", "ES", "IT", "AT", "SE", "NO", "DK", "FI", "GB"],
        website="https://tink.com",
        required_settings=["tink_client_id", "tink_client_secret"],
    )

    normalizer = TinkNormalizer()

    def __init__(self, settings: Settings, client: httpx.Client | None = None, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings
        self.base_url = settings.tink_api_url.rstrip("/")
        self._client = client or httpx.Client()

    def validate_configuration(self) -> bool:
        return bool(self.settings.tink_client_id and self.settings.tink_client_secret)

    def _headers(self, credentials: Credentials) -> dict:
        return {"Authorization": f"{credentials.token_type or 'Bearer'} {credentials.access_token}"}

    def _get_pages(self, credentials: Credentials, path: str, params: dict, limit: int | None = None) -> list[dict]:
        """Follow ``nextPageToken`` until exhausted, keeping every page verbatim."""
        pages = []
        fetched = 0
        page_token = None
        key = path.rsplit("/", 1)[-1]

        while True:
            query = dict(params)
            if page_token:
                query["pageToken"] = page_token
            response = self._send(
                self._client, "GET", f"{self.base_url}{path}", params=query, headers=self._headers(credentials)
            )
            page = response.json()
            pages.append(page)

            fetched += len(page.get(key) or [])
            page_token = page.get("nextPageToken")
            if not page_token or (limit is not None and fetched >= limit):
                break

        return pages

    def fetch_raw_accounts(self, credentials: Credentials, *, tenant_id: str, connection_id: str) -> RawRecord:
        started = time.monotonic()
        pages = self._get_pages(credentials, "/data/v2/accounts", {"pageSize": PAGE_SIZE})

        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="accounts",
            external_id=accounts_record_id(),
            payload={"pages": pages},
            started=started,
            endpoint="/data/v2/accounts",
        )

    def fetch_raw_transactions(
        self,
        credentials: Credentials,
        account_id: str,
        window: FetchWindow,
        *,
        tenant_id: str,
        connection_id: str,
    ) -> RawRecord:
        started = time.monotonic()
        params = {
            "accountIdIn": account_id,
            "bookedDateGte": window.start_date.isoformat(),
            "bookedDateLte": window.end_date.isoformat(),
            "pageSize": min(PAGE_SIZE, window.max_count) if window.max_count else PAGE_SIZE,
        }
        pages = self._get_pages(credentials, "/data/v2/transactions", params, limit=window.max_count)

        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="transactions",
            external_id=transactions_record_id(account_id),
            payload={"pages": pages},
            started=started,
            endpoint="/data/v2/transactions",
            request_params=params,
        )

    def _token_request(self, data: dict) -> Credentials:
        response = self._send(
            self._client,
            "POST",
            f"{self.base_url}/api/v1/oauth/token",
            auth_statuses=(400, 401, 403),
            data={
                "client_id": self.settings.tink_client_id,
                "client_secret": self.settings.tink_client_secret,
                **data,
            },
        )
        token = response.json()
        if "access_token" not in token:
            raise AuthError("Tink token response did not include an access token", provider_id="tink")

        expires_in = token.get("expires_in")
        return Credentials(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token") or data.get("refresh_token"),
            expires_at=utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None,
            token_type=token.get("token_type") or "Bearer",
            scope=token["scope"].split(",") if token.get("scope") else None,
        )

    def refresh_credentials(self, refresh_token: str) -> Credentials:
        """Exchange a refresh token for a new access token.

        Tink answers an invalid refresh token with 400/401, which surfaces as AuthError.
        """
        try:
            credentials = self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})
        except AuthError:
            logger.error("Tink rejected the refresh token")
            raise
        logger.info("Refreshed Tink access token")
        return credentials

    def exchange_authorization(self, code: str) -> Credentials:
        return self._token_request({"grant_type": "authorization_code", "code": code})
