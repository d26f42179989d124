# app/services/reconcile.py
#
# Reconciliation read
# Recomputes each account's expected balance from the transactions currently
# stored and reports how far the stored balance has drifted from it.
# A non-zero drift means a partially applied operation (or a bug) left the
# balance out of step with history.

from decimal import Decimal
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from app.schemas import AccountDrift
from app.store import Store

CENT = Decimal("0.01")


def _to_cents(value: Any) -> int:
    """Decimal/float/None -> integer cents."""
    if value is None:
        return 0
    return int((Decimal(str(value)) / CENT).to_integral_value())


def _from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) * CENT).quantize(CENT)


def leg_frame(transactions: pd.DataFrame) -> pd.DataFrame:
    """
    Expand transactions into one row per balance leg.

    Columns: account_id, delta_cents.
    """
    if transactions.empty:
        return pd.DataFrame({
            "account_id": pd.Series(dtype="object"),
            "delta_cents": pd.Series(dtype="int64"),
        })

    cents = transactions["amount"].map(_to_cents).astype("int64")

    # Source leg: + for income, - for expense and transfer
    source = pd.DataFrame({
        "account_id": transactions["from_account_id"],
        "delta_cents": np.where(transactions["type"] == "income", cents, -cents),
    })

    # Destination leg: transfers only
    is_transfer = transactions["type"] == "transfer"
    destination = pd.DataFrame({
        "account_id": transactions.loc[is_transfer, "to_account_id"],
        "delta_cents": cents[is_transfer],
    })

    if destination.empty:
        return source
    return pd.concat([source, destination], ignore_index=True)


def compute_drift(
    account_rows: List[Dict[str, Any]],
    transaction_rows: List[Dict[str, Any]],
) -> pd.DataFrame:
    """
    Return one row per account with stored / expected balance and drift (cents).
    """
    accounts = pd.DataFrame(account_rows, columns=["id", "name", "balance", "opening_balance"])
    if accounts.empty:
        return accounts.assign(stored_cents=[], expected_cents=[], drift_cents=[])

    transactions = pd.DataFrame(
        transaction_rows,
        columns=["id", "type", "amount", "from_account_id", "to_account_id"],
    )

    effects = (
        leg_frame(transactions)
        .groupby("account_id", as_index=False)["delta_cents"]
        .sum()
        .rename(columns={"account_id": "id", "delta_cents": "effect_cents"})
    )

    df = accounts.merge(effects, on="id", how="left")
    df["effect_cents"] = df["effect_cents"].fillna(0).astype("int64")
    df["stored_cents"] = df["balance"].map(_to_cents).astype("int64")
    df["expected_cents"] = df["opening_balance"].map(_to_cents).astype("int64") + df["effect_cents"]
    df["drift_cents"] = df["stored_cents"] - df["expected_cents"]
    return df


async def reconcile(store: Store, owner: str) -> List[AccountDrift]:
    """Compare every account of `owner` against its transaction history."""
    account_rows = await store.account_rows(owner)
    transaction_rows = await store.transaction_rows(owner)

    df = compute_drift(account_rows, transaction_rows)

    return [
        AccountDrift(
            account_id=row.id,
            name=row.name,
            stored_balance=_from_cents(row.stored_cents),
            expected_balance=_from_cents(row.expected_cents),
            drift=_from_cents(row.drift_cents),
        )
        for row in df.itertuples(index=False)
    ]
