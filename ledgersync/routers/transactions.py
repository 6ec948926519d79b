"""Transactions router - the tenant's canonical ledger."""

from fastapi import APIRouter, Depends, Query

from ledgersync.database import Database
from ledgersync.dependencies import get_database, get_tenant_id
from ledgersync.schemas.transaction import TransactionListResponse, TransactionResponse


router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    date_from: str | None = Query(None, description="Start date (YYYY-MM-DD)"),
    date_to: str | None = Query(None, description="End date (YYYY-MM-DD)"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    """List ledger transactions across all accounts, newest first."""
    transactions = db.list_transactions(
        tenant_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset
    )
    total = db.count_transactions(tenant_id, date_from=date_from, date_to=date_to)

    return TransactionListResponse(
        items=[TransactionResponse(**txn) for txn in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )
