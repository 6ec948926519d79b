"""API routers."""

from ledgersync.routers.accounts import router as accounts_router
from ledgersync.routers.connections import router as connections_router
from ledgersync.routers.providers import router as providers_router
from ledgersync.routers.sync import router as sync_router
from ledgersync.routers.transactions import router as transactions_router

__all__ = [
    "accounts_router",
    "connections_router",
    "providers_router",
    "sync_router",
    "transactions_router",
]
