"""Plaid adapter built on the plaid-python SDK."""

import json
import time

import plaid
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from ledgersync.config import Settings
from ledgersync.exceptions import AuthError, ProviderUnavailable, RateLimited
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
from ledgersync.services.normalization_service import PlaidNormalizer


logger = get_logger("providers.plaid")

# Plaid caps /transactions/get at 500 per page
PAGE_SIZE = 500

AUTH_ERROR_CODES = {
    "ITEM_LOGIN_REQUIRED",
    "INVALID_ACCESS_TOKEN",
    "INVALID_CREDENTIALS",
    "ACCESS_NOT_GRANTED",
    "ITEM_NOT_FOUND",
    "USER_PERMISSION_REVOKED",
}


def _get_plaid_client(settings: Settings) -> plaid_api.PlaidApi:
    """Create a Plaid API client."""
    env_map = {
        "sandbox": plaid.Environment.Sandbox,
        "production": plaid.Environment.Production,
    }

    configuration = plaid.Configuration(
        host=env_map.get(settings.plaid_env, plaid.Environment.Sandbox),
        api_key={
            "clientId": settings.plaid_client_id,
            "secret": settings.plaid_secret,
        },
    )

    api_client = plaid.ApiClient(configuration)
    return plaid_api.PlaidApi(api_client)


def _as_document(response) -> dict:
    """Convert an SDK response model into a plain JSON document (dates become ISO strings)."""
    data = response.to_dict() if hasattr(response, "to_dict") else response
    return json.loads(json.dumps(data, default=str))


class PlaidProvider(ProviderAdapter):
    """Plaid: access tokens do not expire, so refresh is the identity."""

    config = ProviderConfig(
        provider_id="plaid",
        display_name="Plaid",
        auth_type="link",
        supported_countries=["US", "CA", "GB", "IE", "FR", "ES", "NL"],
        website="https://plaid.com",
        required_settings=["plaid_client_id", "plaid_secret"],
    )

    normalizer = PlaidNormalizer()

    def __init__(self, settings: Settings, client: plaid_api.PlaidApi | None = None, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings
        self._client = client

    @property
    def client(self) -> plaid_api.PlaidApi:
        if self._client is None:
            self._client = _get_plaid_client(self.settings)
        return self._client

    def validate_configuration(self) -> bool:
        return bool(self.settings.plaid_client_id and self.settings.plaid_secret)

    def _call(self, operation: str, fn, request):
        """Invoke an SDK call under the concurrency limit, translating Plaid errors."""
        with self._semaphore:
            try:
                return fn(request)
            except plaid.ApiException as e:
                raise self._translate_error(operation, e) from e

    def _translate_error(self, operation: str, error: plaid.ApiException):
        error_code = None
        try:
            error_code = json.loads(error.body or "{}").get("error_code")
        except (TypeError, ValueError):
            pass

        status = error.status or 0
        message = f"Plaid {operation} failed ({status} {error_code or ''})".strip()
        logger.warning(message)

        if error_code in AUTH_ERROR_CODES or status in (401, 403):
            return AuthError(message, provider_id="plaid")
        if status == 429 or error_code == "RATE_LIMIT_EXCEEDED":
            return RateLimited(message, provider_id="plaid")
        return ProviderUnavailable(message, provider_id="plaid")

    def fetch_raw_accounts(self, credentials: Credentials, *, tenant_id: str, connection_id: str) -> RawRecord:
        started = time.monotonic()
        response = self._call(
            "/accounts/get",
            self.client.accounts_get,
            AccountsGetRequest(access_token=credentials.access_token),
        )
        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="accounts",
            external_id=accounts_record_id(),
            payload=_as_document(response),
            started=started,
            endpoint="/accounts/get",
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
        """Fetch every page of /transactions/get for one account.

        Each page is kept verbatim under ``pages``.
        """
        started = time.monotonic()
        pages = []
        fetched = 0
        limit = window.max_count

        while True:
            count = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - fetched)
            request = TransactionsGetRequest(
                access_token=credentials.access_token,
                start_date=window.start_date,
                end_date=window.end_date,
                options=TransactionsGetRequestOptions(
                    account_ids=[account_id],
                    count=count,
                    offset=fetched,
                ),
            )
            page = _as_document(self._call("/transactions/get", self.client.transactions_get, request))
            pages.append(page)

            batch = len(page.get("transactions") or [])
            fetched += batch
            total = page.get("total_transactions") or 0
            if batch == 0 or fetched >= total or (limit is not None and fetched >= limit):
                break

        logger.info(f"Plaid returned {fetched} transactions for account {account_id} in {len(pages)} page(s)")

        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="transactions",
            external_id=transactions_record_id(account_id),
            payload={"pages": pages},
            started=started,
            endpoint="/transactions/get",
            request_params={
                "account_id": account_id,
                "start_date": window.start_date.isoformat(),
                "end_date": window.end_date.isoformat(),
            },
        )

    def refresh_credentials(self, refresh_token: str) -> Credentials:
        # Plaid access tokens are long-lived; the stored token is its own refresh token
        return Credentials(access_token=refresh_token, refresh_token=refresh_token)

    def exchange_authorization(self, code: str) -> Credentials:
        """Exchange a Plaid Link public token for an access token."""
        response = self._call(
            "/item/public_token/exchange",
            self.client.item_public_token_exchange,
            ItemPublicTokenExchangeRequest(public_token=code),
        )
        return Credentials(
            access_token=response.access_token,
            refresh_token=response.access_token,
            extra={"item_id": response.item_id},
        )
