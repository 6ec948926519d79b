"""LedgerSync API - Main entry point."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledgersync.config import get_settings
from ledgersync.cron import create_sync_scheduler
from ledgersync.exceptions import SyncError
from ledgersync.logging_config import get_logger, setup_logging
from ledgersync.providers.registry import build_provider_registry
from ledgersync.routers import (
    accounts_router,
    connections_router,
    providers_router,
    sync_router,
    transactions_router,
)
from ledgersync.routers.errors import http_error
from ledgersync.schemas.common import ErrorResponse
from ledgersync.utils.locks import KeyedLock


settings = get_settings()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging(settings)
    logger.info(f"Starting {settings.app_name} API...")

    app.state.registry = build_provider_registry(settings)
    app.state.account_locks = KeyedLock()
    app.state.credential_locks = KeyedLock()

    if settings.enable_cron_jobs:
        await create_sync_scheduler(app)()
        logger.info("Scheduled sync enabled")

    yield
    logger.info(f"Shutting down {settings.app_name} API...")


app = FastAPI(
    title=settings.app_name,
    description="Multi-provider banking sync engine",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Engine errors that escaped a router."""
    http_exc = http_error(exc)
    return JSONResponse(
        status_code=http_exc.status_code,
        content=ErrorResponse(error=type(exc).__name__, detail=exc.message).model_dump(),
        headers=http_exc.headers,
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    if settings.debug:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
                "detail": str(exc),
            },
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
        },
    )


# Health check endpoint
@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
        "providers": [p.provider_id for p in registry.enabled_providers()] if registry else [],
    }


# Include routers with API prefix
api_prefix = settings.api_v1_prefix

app.include_router(accounts_router, prefix=api_prefix)
app.include_router(connections_router, prefix=api_prefix)
app.include_router(providers_router, prefix=api_prefix)
app.include_router(sync_router, prefix=api_prefix)
app.include_router(transactions_router, prefix=api_prefix)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "api": settings.api_v1_prefix,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ledgersync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
