"""Dependency injection for FastAPI routes."""

import time
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from jwt import PyJWKClient

from ledgersync.config import get_settings, Settings
from ledgersync.database import (
    Database,
    get_admin_client,
    get_authenticated_postgrest_client,
)
from ledgersync.providers.registry import ProviderRegistry
from ledgersync.services.connection_service import ConnectionService
from ledgersync.services.sync_service import SyncOrchestrator


security = HTTPBearer()

# Cache for JWKS client
_jwks_client: PyJWKClient | None = None
_jwks_client_timestamp: float = 0
JWKS_CACHE_TTL = 3600  # 1 hour


def get_jwks_client(settings: Settings) -> PyJWKClient:
    """Get cached JWKS client for Supabase JWT verification."""
    global _jwks_client, _jwks_client_timestamp

    current_time = time.time()

    if _jwks_client is None or (current_time - _jwks_client_timestamp) > JWKS_CACHE_TTL:
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url)
        _jwks_client_timestamp = current_time

    return _jwks_client


async def get_current_user_with_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> tuple[dict, str]:
    """
    Validate JWT token using JWKS and return (user_dict, token).

    FastAPI caches this per-request so it only runs once even when
    several dependencies rely on it.
    """
    token = credentials.credentials

    try:
        jwks_client = get_jwks_client(settings)
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience="authenticated",
            issuer=f"{settings.supabase_url}/auth/v1",
        )

        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing user ID",
                headers={"WWW-Authenticate": "Bearer"},
            )

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.PyJWKClientError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token verification failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Use PostgREST client with user's JWT for RLS-aware operations
    user_client = get_authenticated_postgrest_client(token)
    user = Database(user_client).get_user_by_id(user_id)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User profile not found",
        )

    return user, token


async def get_current_user(
    user_and_token: tuple[dict, str] = Depends(get_current_user_with_token),
) -> dict:
    """Return just the user dict."""
    user, _token = user_and_token
    return user


async def get_tenant_id(user: dict = Depends(get_current_user)) -> str:
    """Tenant the current user belongs to. Every query is scoped to it."""
    tenant_id = user.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not assigned to a tenant",
        )
    return tenant_id


async def get_database(
    user_and_token: tuple[dict, str] = Depends(get_current_user_with_token),
) -> Database:
    """Get a Database instance authenticated with the current user's JWT.

    PostgREST sees auth.uid() from the JWT, so RLS policies work.
    """
    _user, token = user_and_token
    client = get_authenticated_postgrest_client(token)
    return Database(client)


def get_admin_database() -> Database:
    """Service-role database for the sync engine (credentials are not user-readable)."""
    return Database(get_admin_client())


def get_registry(request: Request) -> ProviderRegistry:
    """Provider registry built at startup."""
    return request.app.state.registry


def get_orchestrator(
    request: Request,
    registry: ProviderRegistry = Depends(get_registry),
    db: Database = Depends(get_admin_database),
    settings: Settings = Depends(get_settings),
) -> SyncOrchestrator:
    return SyncOrchestrator(
        db,
        registry,
        settings,
        account_locks=request.app.state.account_locks,
        credential_locks=request.app.state.credential_locks,
    )


def get_connection_service(
    registry: ProviderRegistry = Depends(get_registry),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> ConnectionService:
    return ConnectionService(
        orchestrator.db,
        registry,
        orchestrator.credentials,
        orchestrator.health,
    )
