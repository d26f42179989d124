# routes_loans.py
"""
Routes for loans (plain owner-scoped CRUD).
"""

from typing import List

from fastapi import APIRouter, Depends

from app.deps import get_current_owner, get_loans
from app.schemas import LoanCreate, LoanOut, LoanUpdate
from app.services.loans import LoanService

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=List[LoanOut])
async def list_loans(
    owner: str = Depends(get_current_owner),
    loans: LoanService = Depends(get_loans),
):
    return await loans.list_loans(owner)


@router.post("", response_model=LoanOut, status_code=201)
async def create_loan(
    payload: LoanCreate,
    owner: str = Depends(get_current_owner),
    loans: LoanService = Depends(get_loans),
):
    return await loans.create_loan(owner, payload)


@router.get("/{loan_id}", response_model=LoanOut)
async def get_loan(
    loan_id: str,
    owner: str = Depends(get_current_owner),
    loans: LoanService = Depends(get_loans),
):
    return await loans.get_loan(owner, loan_id)


@router.put("/{loan_id}", response_model=LoanOut)
async def update_loan(
    loan_id: str,
    payload: LoanUpdate,
    owner: str = Depends(get_current_owner),
    loans: LoanService = Depends(get_loans),
):
    return await loans.update_loan(owner, loan_id, payload)


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    owner: str = Depends(get_current_owner),
    loans: LoanService = Depends(get_loans),
):
    await loans.delete_loan(owner, loan_id)
    return {"message": "Loan deleted successfully"}
