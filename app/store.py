# app/store.py
# Role: Persistence boundary for the ledger.
#       Every public method is one short unit of work (own session, own commit)
#       scoped to a single owner. Balances only ever change through
#       increment_balance, a relative UPDATE applied by the database.

"""
Async store over SQLAlchemy.

The store never hands a session to its callers, so a caller cannot hold a
multi-statement transaction open. Each call is bounded by `timeout` seconds;
timeouts and driver errors surface as Unavailable.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from db import Base
from models import Account, Loan, Transaction
from app.errors import Conflict, NotFound, Unavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
    def __init__(self, engine: AsyncEngine, timeout: float = 5.0):
        self.engine = engine
        self.timeout = timeout
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    async def create_schema(self) -> None:
        """Create tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    # -------------------------------------------------------------------
    # Unit-of-work runner
    # -------------------------------------------------------------------

    async def run(self, step: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run `work` in a fresh session under the store timeout.

        `step` names the call in log lines and error messages.
        """

        async def unit() -> T:
            async with self._sessions() as session:
                return await work(session)

        try:
            return await asyncio.wait_for(unit(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[store] %s timed out after %.1fs", step, self.timeout)
            raise Unavailable(f"Store call '{step}' timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("[store] %s failed: %r", step, exc)
            raise Unavailable(f"Store call '{step}' failed") from exc

    # -------------------------------------------------------------------
    # Generic owner-scoped CRUD
    # -------------------------------------------------------------------

    async def _get(self, model, owner: str, entity_id: str):
        async def work(session: AsyncSession):
            result = await session.execute(
                select(model).where(model.id == entity_id, model.user_id == owner)
            )
            return result.scalar_one_or_none()

        return await self.run(f"get {model.__tablename__}", work)

    async def _insert(self, model, owner: str, fields: Dict[str, Any]):
        async def work(session: AsyncSession):
            obj = model(user_id=owner, **fields)
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            return obj

        return await self.run(f"insert {model.__tablename__}", work)

    async def _update(self, model, owner: str, entity_id: str, fields: Dict[str, Any]):
        async def work(session: AsyncSession):
            result = await session.execute(
                select(model).where(model.id == entity_id, model.user_id == owner)
            )
            obj = result.scalar_one_or_none()
            if obj is None:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            await session.commit()
            await session.refresh(obj)
            return obj

        return await self.run(f"update {model.__tablename__}", work)

    async def _delete(self, model, owner: str, entity_id: str) -> bool:
        async def work(session: AsyncSession):
            result = await session.execute(
                delete(model).where(model.id == entity_id, model.user_id == owner)
            )
            await session.commit()
            return result.rowcount == 1

        return await self.run(f"delete {model.__tablename__}", work)

    # -------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------

    async def get_account(self, owner: str, account_id: str) -> Optional[Account]:
        return await self._get(Account, owner, account_id)

    async def list_accounts(self, owner: str) -> List[Account]:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(Account)
                .where(Account.user_id == owner)
                .order_by(Account.created_at.desc())
            )
            return list(result.scalars().all())

        return await self.run("list accounts", work)

    async def insert_account(self, owner: str, fields: Dict[str, Any]) -> Account:
        return await self._insert(Account, owner, fields)

    async def update_account(self, owner: str, account_id: str, fields: Dict[str, Any]) -> Optional[Account]:
        return await self._update(Account, owner, account_id, fields)

    async def increment_balance(self, owner: str, account_id: str, delta: Decimal) -> bool:
        """
        Atomically add `delta` to the account's balance.

        Returns False when no account with this id exists for `owner`, so the
        caller learns about a concurrently deleted account at the moment the
        delta would have been applied.
        """

        async def work(session: AsyncSession):
            result = await session.execute(
                update(Account)
                .where(Account.id == account_id, Account.user_id == owner)
                .values(balance=Account.balance + delta)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

        return await self.run("increment balance", work)

    async def override_balance(self, owner: str, account_id: str, new_balance: Decimal) -> bool:
        """
        Set the balance to an absolute value in one statement.

        The opening balance moves by the same amount so that reconciliation
        keeps measuring drift from transaction history after the override.
        """

        async def work(session: AsyncSession):
            result = await session.execute(
                update(Account)
                .where(Account.id == account_id, Account.user_id == owner)
                .values(
                    balance=new_balance,
                    opening_balance=Account.opening_balance + (new_balance - Account.balance),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

        return await self.run("override balance", work)

    async def count_account_references(self, owner: str, account_id: str) -> int:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == owner,
                    or_(
                        Transaction.from_account_id == account_id,
                        Transaction.to_account_id == account_id,
                    ),
                )
            )
            return int(result.scalar() or 0)

        return await self.run("count account references", work)

    async def delete_account_if_unreferenced(self, owner: str, account_id: str) -> bool:
        """
        Delete the account only if no transaction references it.

        The reference check and the delete are one statement; a transaction
        inserted concurrently is additionally blocked by the foreign key.
        """
        referenced = exists().where(
            or_(
                Transaction.from_account_id == Account.id,
                Transaction.to_account_id == Account.id,
            )
        )

        async def work(session: AsyncSession):
            try:
                result = await session.execute(
                    delete(Account)
                    .where(Account.id == account_id, Account.user_id == owner, ~referenced)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise Conflict("Cannot delete account with existing transactions") from exc
            return result.rowcount == 1

        return await self.run("delete account", work)

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    async def get_transaction(self, owner: str, transaction_id: str) -> Optional[Transaction]:
        return await self._get(Transaction, owner, transaction_id)

    async def list_transactions(self, owner: str, offset: int = 0, limit: int = 50) -> List[Transaction]:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == owner)
                .order_by(Transaction.date.desc(), Transaction.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

        return await self.run("list transactions", work)

    async def insert_transaction(self, owner: str, fields: Dict[str, Any]) -> Transaction:
        async def work(session: AsyncSession):
            tx = Transaction(user_id=owner, **fields)
            session.add(tx)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                # Only the account foreign keys can fail here
                raise NotFound("Referenced account no longer exists") from exc
            return await self._reload_transaction(session, owner, tx.id)

        return await self.run("insert transactions", work)

    async def update_transaction(
        self, owner: str, transaction_id: str, fields: Dict[str, Any], expected_version: int
    ) -> Optional[Transaction]:
        """
        Overwrite the row only if it is still at `expected_version`.

        Returns None when the row is gone or was changed by someone else in the
        meantime; the caller tells the two apart.
        """

        async def work(session: AsyncSession):
            try:
                result = await session.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == transaction_id,
                        Transaction.user_id == owner,
                        Transaction.version == expected_version,
                    )
                    .values(version=Transaction.version + 1, **fields)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise NotFound("Referenced account no longer exists") from exc
            if result.rowcount != 1:
                return None
            return await self._reload_transaction(session, owner, transaction_id)

        return await self.run("update transactions", work)

    async def delete_transaction(self, owner: str, transaction_id: str, expected_version: int) -> bool:
        """Delete the row only if it is still at `expected_version`."""

        async def work(session: AsyncSession):
            result = await session.execute(
                delete(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == owner,
                    Transaction.version == expected_version,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

        return await self.run("delete transactions", work)

    @staticmethod
    async def _reload_transaction(session: AsyncSession, owner: str, transaction_id: str) -> Optional[Transaction]:
        # populate_existing also refreshes the account summaries of an already loaded row
        result = await session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id, Transaction.user_id == owner)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------

    async def get_loan(self, owner: str, loan_id: str) -> Optional[Loan]:
        return await self._get(Loan, owner, loan_id)

    async def list_loans(self, owner: str) -> List[Loan]:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(Loan).where(Loan.user_id == owner).order_by(Loan.created_at.desc())
            )
            return list(result.scalars().all())

        return await self.run("list loans", work)

    async def insert_loan(self, owner: str, fields: Dict[str, Any]) -> Loan:
        return await self._insert(Loan, owner, fields)

    async def update_loan(self, owner: str, loan_id: str, fields: Dict[str, Any]) -> Optional[Loan]:
        return await self._update(Loan, owner, loan_id, fields)

    async def delete_loan(self, owner: str, loan_id: str) -> bool:
        return await self._delete(Loan, owner, loan_id)

    # -------------------------------------------------------------------
    # Reconciliation reads
    # -------------------------------------------------------------------

    async def account_rows(self, owner: str) -> List[Dict[str, Any]]:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(
                    Account.id,
                    Account.name,
                    Account.balance,
                    Account.opening_balance,
                ).where(Account.user_id == owner)
            )
            return [dict(row._mapping) for row in result]

        return await self.run("read account rows", work)

    async def transaction_rows(self, owner: str) -> List[Dict[str, Any]]:
        async def work(session: AsyncSession):
            result = await session.execute(
                select(
                    Transaction.id,
                    Transaction.type,
                    Transaction.amount,
                    Transaction.from_account_id,
                    Transaction.to_account_id,
                ).where(Transaction.user_id == owner)
            )
            return [dict(row._mapping) for row in result]

        return await self.run("read transaction rows", work)
