"""Accounts router - canonical accounts and their transactions."""

from fastapi import APIRouter, Depends, HTTPException, Query

from ledgersync.database import Database
from ledgersync.dependencies import get_database, get_tenant_id
from ledgersync.schemas.account import AccountListResponse, AccountResponse
from ledgersync.schemas.transaction import TransactionListResponse, TransactionResponse


router = APIRouter(prefix="/accounts", tags=["Accounts"])


@router.get("", response_model=AccountListResponse)
async def list_accounts(
    connection_id: str | None = Query(None),
    status: str | None = Query(None, description="active, inactive or closed"),
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    accounts = db.list_accounts(tenant_id, connection_id=connection_id, status=status)
    return AccountListResponse(
        items=[AccountResponse(**account) for account in accounts],
        total=len(accounts),
    )


@router.get("/{account_id}/transactions", response_model=TransactionListResponse)
async def list_account_transactions(
    account_id: str,
    date_from: str | None = Query(None, description="Start date (YYYY-MM-DD)"),
    date_to: str | None = Query(None, description="End date (YYYY-MM-DD)"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Database = Depends(get_database),
):
    if db.get_account(tenant_id, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")

    transactions = db.list_transactions(
        tenant_id, account_id=account_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset
    )
    total = db.count_transactions(tenant_id, account_id=account_id, date_from=date_from, date_to=date_to)

    return TransactionListResponse(
        items=[TransactionResponse(**txn) for txn in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )
