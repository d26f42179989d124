# app/schemas.py
"""
Request and response schemas (pydantic).

Transaction creation is a tagged union on `type`:
- income / expense -> IncomeCreate / ExpenseCreate (one account: from_account_id)
- transfer         -> TransferCreate (from_account_id and to_account_id, distinct)

Partial updates use the *Update models; only the fields the client actually
sent are applied (`model_dump(exclude_unset=True)`).
"""

import datetime as dt
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    model_validator,
)

AccountType = Literal["savings", "checking", "credit", "investment"]
TransactionType = Literal["income", "expense", "transfer"]

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Money = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]
PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]
NonNegativeMoney = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]


# ---- Accounts ----

class AccountCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: NonEmptyStr
    type: AccountType
    balance: Money = Decimal("0.00")


class AccountUpdate(BaseModel):
    """
    Partial account edit.

    Editing `balance` directly bypasses transaction history, so it is only
    accepted together with `override_balance=true`.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[NonEmptyStr] = None
    type: Optional[AccountType] = None
    balance: Optional[Money] = None
    override_balance: bool = False


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    balance: Decimal
    opening_balance: Decimal
    created_at: dt.datetime
    updated_at: dt.datetime


class AccountDrift(BaseModel):
    account_id: str
    name: str
    stored_balance: Decimal
    expected_balance: Decimal
    drift: Decimal


# ---- Transactions ----

class _TransactionBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: PositiveMoney
    category: NonEmptyStr
    date: dt.date = Field(default_factory=dt.date.today)
    notes: Optional[str] = None
    from_account_id: NonEmptyStr


class IncomeCreate(_TransactionBase):
    type: Literal["income"]


class ExpenseCreate(_TransactionBase):
    type: Literal["expense"]


class TransferCreate(_TransactionBase):
    type: Literal["transfer"]
    to_account_id: NonEmptyStr

    @model_validator(mode="after")
    def _legs_differ(self):
        if self.from_account_id == self.to_account_id:
            raise ValueError("Transfer source and destination accounts must differ")
        return self


TransactionCreate = Annotated[
    Union[IncomeCreate, ExpenseCreate, TransferCreate],
    Field(discriminator="type"),
]

transaction_create_adapter = TypeAdapter(TransactionCreate)


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[PositiveMoney] = None
    category: Optional[NonEmptyStr] = None
    date: Optional[dt.date] = None
    notes: Optional[str] = None
    from_account_id: Optional[NonEmptyStr] = None
    to_account_id: Optional[NonEmptyStr] = None


class AccountRef(BaseModel):
    """Account summary embedded in transaction reads."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    amount: Decimal
    category: str
    date: dt.date
    notes: Optional[str] = None
    from_account_id: str
    to_account_id: Optional[str] = None
    from_account: Optional[AccountRef] = None
    to_account: Optional[AccountRef] = None
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime


# ---- Loans ----

class LoanCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: NonEmptyStr
    total_amount: PositiveMoney
    # Defaults to total_amount when omitted
    outstanding_balance: Optional[NonNegativeMoney] = None
    emi_amount: PositiveMoney
    start_date: dt.date = Field(default_factory=dt.date.today)
    duration_months: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _outstanding_within_total(self):
        if self.outstanding_balance is not None and self.outstanding_balance > self.total_amount:
            raise ValueError("outstanding_balance cannot exceed total_amount")
        return self


class LoanUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[NonEmptyStr] = None
    total_amount: Optional[PositiveMoney] = None
    outstanding_balance: Optional[NonNegativeMoney] = None
    emi_amount: Optional[PositiveMoney] = None
    start_date: Optional[dt.date] = None
    duration_months: Optional[int] = Field(None, gt=0)


class LoanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    total_amount: Decimal
    outstanding_balance: Decimal
    emi_amount: Decimal
    start_date: dt.date
    duration_months: int
    created_at: dt.datetime
    updated_at: dt.datetime


# ---- Dashboard ----

class AccountTypeSummary(BaseModel):
    count: int
    balance: Decimal


class DashboardSummary(BaseModel):
    month: str
    start_date: dt.date
    end_date: dt.date
    total_balance: Decimal
    monthly_income: Decimal
    monthly_expense: Decimal
    net_cash_flow: Decimal
    spending_by_category: Dict[str, Decimal]
    accounts_by_type: Dict[str, AccountTypeSummary]
    loan_count: int
    total_outstanding: Decimal
    total_emi: Decimal
    recent_transactions: List[TransactionOut]
