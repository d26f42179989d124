# routes_transactions.py
"""
Routes for transactions. Every write goes through the ledger service, which
keeps account balances in step with the transaction rows.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from app.deps import get_current_owner, get_ledger
from app.schemas import TransactionCreate, TransactionOut, TransactionUpdate
from app.services.ledger import LedgerService

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=List[TransactionOut])
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    """Newest first, paginated."""
    return await ledger.list_transactions(owner, page=page, limit=limit)


@router.post("", response_model=TransactionOut, status_code=201)
async def create_transaction(
    payload: TransactionCreate,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    """
    Record income / expense (`from_account_id`) or a transfer
    (`from_account_id` -> `to_account_id`) and adjust the balances.
    """
    return await ledger.create_transaction(owner, payload)


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: str,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    return await ledger.get_transaction(owner, transaction_id)


@router.put("/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    """Partial edit; the old balance effect is reversed and the new one applied."""
    return await ledger.update_transaction(owner, transaction_id, payload)


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    await ledger.delete_transaction(owner, transaction_id)
    return {"message": "Transaction deleted successfully"}
