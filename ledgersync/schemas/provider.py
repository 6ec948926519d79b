"""Provider metadata schemas."""

from pydantic import BaseModel


class ProviderResponse(BaseModel):
    provider_id: str
    display_name: str
    auth_type: str
    supported_countries: list[str] = []
    website: str | None = None
    enabled: bool
    reason: str | None = None


class ProviderListResponse(BaseModel):
    providers: list[ProviderResponse]
