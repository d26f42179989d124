# app/services/loans.py
"""
Loan bookkeeping. Loans reference nothing, so they are plain owner-scoped CRUD
plus one rule: the outstanding balance may never exceed the total amount.
"""

import logging
from typing import List

from models import Loan
from app.errors import Invalid, NotFound
from app.schemas import LoanCreate, LoanUpdate
from app.store import Store

logger = logging.getLogger(__name__)


class LoanService:
    def __init__(self, store: Store):
        self.store = store

    async def list_loans(self, owner: str) -> List[Loan]:
        return await self.store.list_loans(owner)

    async def get_loan(self, owner: str, loan_id: str) -> Loan:
        loan = await self.store.get_loan(owner, loan_id)
        if loan is None:
            raise NotFound("Loan not found")
        return loan

    async def create_loan(self, owner: str, payload: LoanCreate) -> Loan:
        fields = payload.model_dump()
        if fields["outstanding_balance"] is None:
            fields["outstanding_balance"] = fields["total_amount"]
        if fields["outstanding_balance"] > fields["total_amount"]:
            raise Invalid("outstanding_balance cannot exceed total_amount")

        loan = await self.store.insert_loan(owner, fields)
        logger.info("[loans] created loan %s (%s outstanding)", loan.id, loan.outstanding_balance)
        return loan

    async def update_loan(self, owner: str, loan_id: str, payload: LoanUpdate) -> Loan:
        existing = await self.get_loan(owner, loan_id)
        changes = payload.model_dump(exclude_unset=True)

        total = changes.get("total_amount", existing.total_amount)
        outstanding = changes.get("outstanding_balance", existing.outstanding_balance)
        if outstanding is None or total is None:
            raise Invalid("total_amount and outstanding_balance cannot be cleared")
        if outstanding > total:
            raise Invalid("outstanding_balance cannot exceed total_amount")

        loan = await self.store.update_loan(owner, loan_id, changes)
        if loan is None:
            raise NotFound("Loan not found")
        return loan

    async def delete_loan(self, owner: str, loan_id: str) -> None:
        if not await self.store.delete_loan(owner, loan_id):
            raise NotFound("Loan not found")
        logger.info("[loans] deleted loan %s", loan_id)
