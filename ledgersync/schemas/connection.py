"""Connection schemas."""

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field, model_validator


ConnectionStatus = Literal["pending_setup", "active", "error", "inactive"]


class CredentialsInput(BaseModel):
    """Credentials supplied directly instead of an authorization code."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"


class AuthorizationRequest(BaseModel):
    """Either an authorization artifact to exchange or raw credentials."""

    authorization_code: str | None = Field(
        None, description="OAuth code, Plaid public token or SimpleFin setup token"
    )
    credentials: CredentialsInput | None = None

    @model_validator(mode="after")
    def check_one_source(self):
        if not self.authorization_code and self.credentials is None:
            raise ValueError("Provide authorization_code or credentials")
        return self


class ConnectionCreate(AuthorizationRequest):
    provider_id: str
    name: str | None = None


class ConnectionResponse(BaseModel):
    """Connection as exposed to the tenant (no credential material)."""

    id: str
    provider_id: str
    name: str | None = None
    status: ConnectionStatus
    last_sync_at: datetime | None = None
    last_successful_sync_at: datetime | None = None
    next_sync_at: datetime | None = None
    consecutive_failures: int = 0
    health_score: float | None = None
    last_error: str | None = None
    created_at: datetime | None = None


class ConnectionListResponse(BaseModel):
    items: list[ConnectionResponse]
    total: int


class ConnectionHealthResponse(BaseModel):
    connection_id: str
    score: float
    band: Literal["excellent", "good", "fair", "poor", "critical"]
    status: ConnectionStatus
    consecutive_failures: int


class ConnectionSummaryResponse(BaseModel):
    """The last job's summary blob, for dashboards."""

    connection_id: str
    status: ConnectionStatus
    sync_summary: dict[str, Any] | None = None
