"""SimpleFin Bridge adapter.

SimpleFin uses Basic Auth embedded in the access URL and has a single
endpoint for all data. The access URL is the credential: it never expires,
so refresh returns it unchanged.

Documentation: https://beta-bridge.simplefin.org/info/developers
"""

import base64
import binascii
import time
from datetime import datetime, time as dt_time, timezone
from urllib.parse import urlparse

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
from ledgersync.services.normalization_service import SimplefinNormalizer


logger = get_logger("providers.simplefin")


def decode_setup_token(setup_token: str) -> str:
    """Decode a SimpleFin setup token to get the claim URL."""
    try:
        return base64.b64decode(setup_token).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise AuthError("Invalid SimpleFin setup token", provider_id="simplefin") from e


def validate_access_url(access_url: str) -> bool:
    """Check that an access URL has a scheme, host and embedded credentials."""
    try:
        parsed = urlparse(access_url)
    except ValueError:
        return False
    return all([
        parsed.scheme in ("https", "http"),
        parsed.netloc,
        parsed.username,
        parsed.password,
    ])


def _to_unix(day, end_of_day: bool = False) -> int:
    moment = datetime.combine(day, dt_time.max if end_of_day else dt_time.min, tzinfo=timezone.utc)
    return int(moment.timestamp())


class SimplefinProvider(ProviderAdapter):
    config = ProviderConfig(
        provider_id="simplefin",
        display_name="SimpleFin Bridge",
        auth_type="access_url",
        supported_countries=["US"],
        website="https://beta-bridge.simplefin.org",
        required_settings=[],
    )

    normalizer = SimplefinNormalizer()

    def __init__(self, settings: Settings, client: httpx.Client | None = None, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings
        self._client = client or httpx.Client()

    def validate_configuration(self) -> bool:
        # Each connection carries its own access URL; only a dev URL is checked here
        if self.settings.simplefin_access_url:
            return validate_access_url(self.settings.simplefin_access_url)
        return True

    def _access_url(self, credentials: Credentials) -> str:
        access_url = credentials.access_token.rstrip("/")
        if not validate_access_url(access_url):
            raise AuthError("SimpleFin access URL is malformed", provider_id="simplefin")
        return access_url

    def fetch_raw_accounts(self, credentials: Credentials, *, tenant_id: str, connection_id: str) -> RawRecord:
        started = time.monotonic()
        url = f"{self._access_url(credentials)}/accounts"
        # balances-only keeps the accounts call light; transactions are fetched per account
        params = {"balances-only": "1"}
        response = self._send(self._client, "GET", url, params=params)

        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="accounts",
            external_id=accounts_record_id(),
            payload=response.json(),
            started=started,
            status_code=response.status_code,
            endpoint="/accounts",
            request_params=params,
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
        url = f"{self._access_url(credentials)}/accounts"
        params = {
            "start-date": _to_unix(window.start_date),
            "end-date": _to_unix(window.end_date, end_of_day=True),
            "account": account_id,
            "pending": "1",
        }
        response = self._send(self._client, "GET", url, params=params)
        payload = response.json()

        for error in payload.get("errors") or []:
            logger.warning(f"SimpleFin reported for connection {connection_id}: {error}")

        return self._build_record(
            tenant_id=tenant_id,
            connection_id=connection_id,
            record_type="transactions",
            external_id=transactions_record_id(account_id),
            payload=payload,
            started=started,
            status_code=response.status_code,
            endpoint="/accounts",
            request_params=params,
        )

    def refresh_credentials(self, refresh_token: str) -> Credentials:
        if not validate_access_url(refresh_token):
            raise AuthError("SimpleFin access URL is malformed", provider_id="simplefin")
        return Credentials(access_token=refresh_token, refresh_token=refresh_token)

    def exchange_authorization(self, code: str) -> Credentials:
        """Claim an access URL with a one-time setup token.

        A setup token can only be claimed once.
        """
        claim_url = decode_setup_token(code)
        # SimpleFin requires Content-Length: 0 for empty POST
        response = self._send(self._client, "POST", claim_url, headers={"Content-Length": "0"})
        access_url = response.text.strip()

        if not validate_access_url(access_url):
            raise AuthError("SimpleFin returned an invalid access URL", provider_id="simplefin")

        logger.info("Claimed SimpleFin access URL")
        return Credentials(access_token=access_url, refresh_token=access_url, token_type="Basic")
