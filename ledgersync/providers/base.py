"""Abstract banking provider interface.

Every external source implements ProviderAdapter. The orchestrator only ever
talks to this interface; concrete adapters are looked up through the
ProviderRegistry.

Adapters return RawRecord values holding the complete, unmodified provider
response. Interpreting that payload is the job of the adapter's normalizer,
never of the adapter itself.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from ledgersync.exceptions import AuthError, ProviderUnavailable, RateLimited
from ledgersync.logging_config import get_logger


logger = get_logger("providers")

# Tokens expiring within this margin are refreshed before use
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


# ============================================================================
# Value types
# ============================================================================

class ProviderConfig(BaseModel):
    """Static description of a provider."""

    provider_id: str
    display_name: str
    auth_type: Literal["oauth", "api_key", "access_url", "link"] = "oauth"
    supported_countries: list[str] = []
    website: str | None = None
    required_settings: list[str] = []


class Credentials(BaseModel):
    """Decrypted credentials for one connection."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] | None = None
    extra: dict[str, Any] = {}

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if token is expired or about to expire."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now + TOKEN_EXPIRY_MARGIN


class FetchWindow(BaseModel):
    """Date range (inclusive) and optional cap for a transaction fetch."""

    start_date: date
    end_date: date
    max_count: int | None = Field(None, gt=0)


class ResponseMetadata(BaseModel):
    """Metadata about the provider API response."""

    status_code: int = 200
    duration_ms: int = 0
    endpoint: str | None = None
    request_params: dict[str, Any] = {}


class RawRecord(BaseModel):
    """Immutable capture of one provider API response.

    ``external_id`` identifies the logical entity the response describes
    (``accounts`` or ``transactions:<account id>``); together with the
    connection and provider it forms the record key used by the raw store.
    """

    model_config = {"frozen": True}

    tenant_id: str
    connection_id: str
    provider_id: str
    record_type: Literal["accounts", "transactions"]
    external_id: str
    payload: Any
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


def accounts_record_id() -> str:
    return "accounts"


def transactions_record_id(external_account_id: str) -> str:
    return f"transactions:{external_account_id}"


# ============================================================================
# Adapter contract
# ============================================================================

class ProviderAdapter(ABC):
    """Abstract base class for banking providers."""

    config: ProviderConfig

    # Concrete adapters set this to their normalizer instance
    normalizer = None

    def __init__(self, max_concurrent_requests: int = 4, timeout: float = 30.0):
        self._semaphore = threading.BoundedSemaphore(max_concurrent_requests)
        self.timeout = timeout

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @abstractmethod
    def validate_configuration(self) -> bool:
        """Validate that the provider is properly configured."""

    @abstractmethod
    def fetch_raw_accounts(self, credentials: Credentials, *, tenant_id: str, connection_id: str) -> RawRecord:
        """Fetch the full, untransformed accounts response."""

    @abstractmethod
    def fetch_raw_transactions(
        self,
        credentials: Credentials,
        account_id: str,
        window: FetchWindow,
        *,
        tenant_id: str,
        connection_id: str,
    ) -> RawRecord:
        """Fetch the full, untransformed transactions response for one account.

        Returning zero transactions is not an error.
        """

    @abstractmethod
    def refresh_credentials(self, refresh_token: str) -> Credentials:
        """Exchange a refresh token for fresh credentials.

        Raises:
            AuthError: If the refresh token itself is invalid.
        """

    def exchange_authorization(self, code: str) -> Credentials:
        """Turn an authorization artifact (code, public token, setup token) into credentials."""
        raise NotImplementedError(f"{self.provider_id} does not support authorization exchange")

    # --- shared helpers ---

    def _build_record(
        self,
        *,
        tenant_id: str,
        connection_id: str,
        record_type: str,
        external_id: str,
        payload: Any,
        started: float,
        status_code: int = 200,
        endpoint: str | None = None,
        request_params: dict[str, Any] | None = None,
    ) -> RawRecord:
        return RawRecord(
            tenant_id=tenant_id,
            connection_id=connection_id,
            provider_id=self.provider_id,
            record_type=record_type,
            external_id=external_id,
            payload=payload,
            metadata=ResponseMetadata(
                status_code=status_code,
                duration_ms=int((time.monotonic() - started) * 1000),
                endpoint=endpoint,
                request_params=request_params or {},
            ),
        )

    def _send(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        auth_statuses: tuple[int, ...] = (401, 403),
        **kwargs,
    ) -> httpx.Response:
        """Send an HTTP request under the adapter's concurrency limit.

        Transport failures are translated into the engine error taxonomy.
        """
        with self._semaphore:
            try:
                response = client.request(method, url, timeout=self.timeout, **kwargs)
            except httpx.TimeoutException as e:
                raise ProviderUnavailable(
                    f"{self.provider_id} request timed out: {url}", provider_id=self.provider_id
                ) from e
            except httpx.TransportError as e:
                raise ProviderUnavailable(
                    f"{self.provider_id} transport error: {e}", provider_id=self.provider_id
                ) from e

        raise_for_provider_status(response, self.provider_id, auth_statuses)
        return response


def raise_for_provider_status(
    response: httpx.Response,
    provider_id: str,
    auth_statuses: tuple[int, ...] = (401, 403),
) -> None:
    """Map an HTTP error status onto AuthError / RateLimited / ProviderUnavailable."""
    code = response.status_code
    if code < 400:
        return

    detail = response.text[:200]
    if code in auth_statuses:
        raise AuthError(f"{provider_id} rejected credentials ({code}): {detail}", provider_id=provider_id)
    if code == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimited(
            f"{provider_id} rate limit exceeded",
            provider_id=provider_id,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if code >= 500:
        raise ProviderUnavailable(f"{provider_id} returned {code}: {detail}", provider_id=provider_id)

    logger.warning(f"{provider_id} returned unexpected status {code}: {detail}")
    raise ProviderUnavailable(f"{provider_id} returned {code}: {detail}", provider_id=provider_id)
