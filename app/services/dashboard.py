# app/services/dashboard.py
"""
Monthly dashboard summary for one owner.

Totals are aggregated in SQL (sum / case / group by); only the final shaping
happens in Python.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Account, Loan, Transaction
from app.schemas import AccountTypeSummary, DashboardSummary, TransactionOut
from app.services.periods import get_month_range
from app.store import Store

RECENT_LIMIT = 5


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


async def dashboard_summary(store: Store, owner: str, month: Optional[str] = None) -> DashboardSummary:
    month_start, next_month_start, normalized_month = get_month_range(month)

    async def work(session: AsyncSession) -> DashboardSummary:
        # Accounts: total and per-type breakdown
        type_rows = (
            await session.execute(
                select(
                    Account.type,
                    func.count(Account.id).label("n_accounts"),
                    func.coalesce(func.sum(Account.balance), 0).label("balance"),
                )
                .where(Account.user_id == owner)
                .group_by(Account.type)
            )
        ).all()
        accounts_by_type = {
            r.type: AccountTypeSummary(count=int(r.n_accounts), balance=_money(r.balance))
            for r in type_rows
        }
        total_balance = sum((s.balance for s in accounts_by_type.values()), Decimal("0.00"))

        in_month = (
            Transaction.user_id == owner,
            Transaction.date >= month_start,
            Transaction.date < next_month_start,
        )

        # Monthly totals
        income, expense = (
            await session.execute(
                select(
                    func.coalesce(
                        func.sum(case((Transaction.type == "income", Transaction.amount), else_=0)),
                        0,
                    ),
                    func.coalesce(
                        func.sum(case((Transaction.type == "expense", Transaction.amount), else_=0)),
                        0,
                    ),
                ).where(*in_month)
            )
        ).one()
        income = _money(income)
        expense = _money(expense)

        # Spending by category (expenses only)
        category_rows = (
            await session.execute(
                select(
                    Transaction.category,
                    func.sum(Transaction.amount).label("spent"),
                )
                .where(*in_month, Transaction.type == "expense")
                .group_by(Transaction.category)
                .order_by(func.sum(Transaction.amount).desc())
            )
        ).all()
        spending_by_category = {r.category: _money(r.spent) for r in category_rows}

        # Loans
        loan_count, total_outstanding, total_emi = (
            await session.execute(
                select(
                    func.count(Loan.id),
                    func.coalesce(func.sum(Loan.outstanding_balance), 0),
                    func.coalesce(func.sum(Loan.emi_amount), 0),
                ).where(Loan.user_id == owner)
            )
        ).one()

        # Most recently recorded transactions
        recent = (
            await session.execute(
                select(Transaction)
                .where(Transaction.user_id == owner)
                .order_by(Transaction.created_at.desc())
                .limit(RECENT_LIMIT)
            )
        ).scalars().all()

        return DashboardSummary(
            month=normalized_month,
            start_date=month_start,
            end_date=next_month_start - timedelta(days=1),
            total_balance=total_balance,
            monthly_income=income,
            monthly_expense=expense,
            net_cash_flow=income - expense,
            spending_by_category=spending_by_category,
            accounts_by_type=accounts_by_type,
            loan_count=int(loan_count or 0),
            total_outstanding=_money(total_outstanding),
            total_emi=_money(total_emi),
            recent_transactions=[TransactionOut.model_validate(tx) for tx in recent],
        )

    return await store.run("dashboard summary", work)
