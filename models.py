# models.py
# Role: SQLAlchemy ORM models for the finance ledger domain.
#       Defines accounts, the transactions that move their balances,
#       and loans. Every row is owned by exactly one user (user_id).

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from sqlalchemy.orm import relationship

from db import Base

ACCOUNT_TYPES = ("savings", "checking", "credit", "investment")
TRANSACTION_TYPES = ("income", "expense", "transfer")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    """
    ORM model representing one financial account.

    `balance` is maintained by the ledger: it always equals
    `opening_balance` plus the effect of every transaction that
    references the account as source or destination.
    """

    __tablename__ = "accounts"

    # Primary key (uuid string)
    id = Column(String(36), primary_key=True, default=_new_id)

    # Owner identity (subject of the bearer token)
    user_id = Column(String(64), nullable=False, index=True)

    # Display name, e.g. "Main checking"
    name = Column(String(255), nullable=False)

    # One of ACCOUNT_TYPES
    type = Column(String(20), nullable=False)

    # Current balance (signed)
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Balance at creation time; baseline for reconciliation
    opening_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class Transaction(Base):
    """
    ORM model representing a single income, expense or transfer.

    The amount is always stored as a positive magnitude; its sign is
    derived from `type` when balances are adjusted. Income and expense
    reference one account (from_account_id); transfers also reference
    a destination (to_account_id).
    """

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    user_id = Column(String(64), nullable=False, index=True)

    # income | expense | transfer
    type = Column(String(10), nullable=False)

    # Positive magnitude
    amount = Column(Numeric(12, 2), nullable=False)

    # Free-text category, e.g. "Groceries"
    category = Column(String(100), nullable=False)

    # Calendar date of the transaction
    date = Column(Date, nullable=False, index=True)

    # Optional free-text notes
    notes = Column(Text, nullable=True)

    # Source leg (always set)
    from_account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Destination leg (transfers only)
    to_account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    # Bumped on every write; updates and deletes only match the version they read
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    # Account summaries for reads (loaded together with the row)
    from_account = relationship("Account", foreign_keys=[from_account_id], lazy="selectin")
    to_account = relationship("Account", foreign_keys=[to_account_id], lazy="selectin")


class Loan(Base):
    """
    ORM model for a loan tracked by the user.

    No amortization is computed; the outstanding balance is edited by hand.
    """

    __tablename__ = "loans"

    id = Column(String(36), primary_key=True, default=_new_id)

    user_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)

    # Original principal
    total_amount = Column(Numeric(12, 2), nullable=False)

    # Amount still owed (<= total_amount)
    outstanding_balance = Column(Numeric(12, 2), nullable=False)

    # Periodic installment (EMI)
    emi_amount = Column(Numeric(12, 2), nullable=False)

    start_date = Column(Date, nullable=False)

    duration_months = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
