# routes_accounts.py
"""
Routes for accounts: list, create, edit, delete, and the reconciliation read.
"""

from typing import List

from fastapi import APIRouter, Depends

from app.deps import get_current_owner, get_ledger, get_store
from app.schemas import AccountCreate, AccountDrift, AccountOut, AccountUpdate
from app.services.ledger import LedgerService
from app.services.reconcile import reconcile
from app.store import Store

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("", response_model=List[AccountOut])
async def list_accounts(
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    return await ledger.list_accounts(owner)


@router.post("", response_model=AccountOut, status_code=201)
async def create_account(
    payload: AccountCreate,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    return await ledger.create_account(owner, payload)


# Declared before /{account_id} so "reconcile" is not taken for an id
@router.get("/reconcile", response_model=List[AccountDrift])
async def reconcile_accounts(
    owner: str = Depends(get_current_owner),
    store: Store = Depends(get_store),
):
    """
    Compare every stored balance with opening balance + transaction effects.
    Non-zero drift points at a partially applied operation.
    """
    return await reconcile(store, owner)


@router.get("/{account_id}", response_model=AccountOut)
async def get_account(
    account_id: str,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    return await ledger.get_account(owner, account_id)


@router.put("/{account_id}", response_model=AccountOut)
async def update_account(
    account_id: str,
    payload: AccountUpdate,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    """
    Edit name / type. Sending `balance` is a manual override and needs
    `override_balance: true`; it detaches the balance from transaction history.
    """
    return await ledger.update_account(owner, account_id, payload)


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    owner: str = Depends(get_current_owner),
    ledger: LedgerService = Depends(get_ledger),
):
    await ledger.delete_account(owner, account_id)
    return {"message": "Account deleted successfully"}
