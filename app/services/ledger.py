# app/services/ledger.py
#
# Ledger Accounting Service
# Keeps every account balance equal to its opening balance plus the effect of
# all transactions that reference it, across create / update / delete.

"""
Balance-consistent transaction accounting.

A transaction's effect on balances is expressed as a list of legs
(account_id, delta):

    income   -> [(source, +amount)]
    expense  -> [(source, -amount)]
    transfer -> [(source, -amount), (destination, +amount)]

Legs are applied one by one through the store's atomic increment. The store
offers no cross-row transaction, so every operation:

1. validates everything (Invalid / NotFound / Conflict) before mutating,
2. applies balance legs first and writes the transaction row last,
3. reverses already-applied legs if a later step fails, logging each
   failing step with its account and delta.

Updates and deletes write the row only if its `version` is still the one
that was read. Of two concurrent edits to the same transaction, the loser
reverts its legs and gets Conflict.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from models import Account, Transaction
from app.errors import Conflict, Invalid, LedgerError, NotFound
from app.schemas import (
    AccountCreate,
    AccountUpdate,
    TransactionCreate,
    TransactionUpdate,
    transaction_create_adapter,
)
from app.store import Store

logger = logging.getLogger(__name__)

TRANSACTION_FIELDS = (
    "type",
    "amount",
    "category",
    "date",
    "notes",
    "from_account_id",
    "to_account_id",
)


@dataclass(frozen=True)
class Leg:
    account_id: str
    delta: Decimal

    def reversed(self) -> "Leg":
        return Leg(self.account_id, -self.delta)


# ---- Balance effects ----

def effect(tx_type: str, amount: Decimal) -> Tuple[Decimal, Optional[Decimal]]:
    """Return (source_delta, dest_delta) for a transaction type and amount."""
    if tx_type == "income":
        return amount, None
    if tx_type == "expense":
        return -amount, None
    if tx_type == "transfer":
        return -amount, amount
    raise Invalid(f"Unknown transaction type: {tx_type!r}")


def legs_for(
    tx_type: str,
    amount: Decimal,
    from_account_id: str,
    to_account_id: Optional[str] = None,
) -> List[Leg]:
    source_delta, dest_delta = effect(tx_type, Decimal(amount))
    legs = [Leg(from_account_id, source_delta)]
    if dest_delta is not None:
        if not to_account_id:
            raise Invalid("Transfer transactions require both from and to accounts")
        legs.append(Leg(to_account_id, dest_delta))
    return legs


def legs_of(tx: Any) -> List[Leg]:
    """Legs of a stored transaction or a validated create payload."""
    return legs_for(tx.type, tx.amount, tx.from_account_id, getattr(tx, "to_account_id", None))


# ---- Payload helpers ----

def validate_transaction(data: Dict[str, Any]) -> TransactionCreate:
    """Validate a full transaction draft, mapping pydantic errors to Invalid."""
    try:
        return transaction_create_adapter.validate_python(data)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'transaction'}: {err['msg']}"
            for err in exc.errors()
        )
        raise Invalid(f"Invalid transaction: {details}") from exc


def merge_transaction(existing: Transaction, changes: Dict[str, Any]) -> TransactionCreate:
    """
    Overlay a partial update onto a stored transaction and validate the result.

    Switching to income or expense drops the destination leg; switching to
    transfer requires one.
    """
    merged = {field: getattr(existing, field) for field in TRANSACTION_FIELDS}
    merged.update(changes)

    if merged["type"] != "transfer":
        merged.pop("to_account_id", None)
    elif not merged.get("to_account_id"):
        raise Invalid("Transfer transactions require both from and to accounts")

    return validate_transaction(merged)


def transaction_fields(draft: TransactionCreate) -> Dict[str, Any]:
    return {
        "type": draft.type,
        "amount": draft.amount,
        "category": draft.category,
        "date": draft.date,
        "notes": draft.notes,
        "from_account_id": draft.from_account_id,
        "to_account_id": getattr(draft, "to_account_id", None),
    }


class LedgerService:
    """Account and transaction operations that keep balances consistent."""

    def __init__(self, store: Store):
        self.store = store

    # -------------------------------------------------------------------
    # Leg application
    # -------------------------------------------------------------------

    async def _apply_legs(self, owner: str, legs: List[Leg], step: str) -> List[Leg]:
        applied: List[Leg] = []
        for leg in legs:
            try:
                found = await self.store.increment_balance(owner, leg.account_id, leg.delta)
            except LedgerError:
                logger.error(
                    "[ledger] %s: failed to apply %s to account %s",
                    step, leg.delta, leg.account_id,
                )
                await self._compensate(owner, applied, step)
                raise

            if not found:
                logger.error(
                    "[ledger] %s: account %s vanished before %s could be applied",
                    step, leg.account_id, leg.delta,
                )
                await self._compensate(owner, applied, step)
                raise NotFound(f"Account {leg.account_id} not found")

            logger.debug("[ledger] %s: applied %s to account %s", step, leg.delta, leg.account_id)
            applied.append(leg)
        return applied

    async def _compensate(self, owner: str, applied: List[Leg], step: str) -> None:
        """
        Undo legs that were already applied, newest first.

        A failed undo cannot be retried here; it is logged with the exact
        account and delta so the balance can be fixed by hand, and the
        caller re-raises the original error.
        """
        for leg in reversed(applied):
            undo = leg.reversed()
            try:
                found = await self.store.increment_balance(owner, undo.account_id, undo.delta)
            except LedgerError as exc:
                logger.critical(
                    "[ledger] %s: compensation failed, account %s still needs %s (%s)",
                    step, undo.account_id, undo.delta, exc.message,
                )
                continue
            if not found:
                logger.critical(
                    "[ledger] %s: compensation skipped, account %s no longer exists (pending %s)",
                    step, undo.account_id, undo.delta,
                )
                continue
            logger.warning("[ledger] %s: reverted %s on account %s", step, leg.delta, leg.account_id)

    async def _lost_write(self, owner: str, transaction_id: str) -> LedgerError:
        """Error for a row write that matched nothing: edited concurrently, or gone."""
        if await self.store.get_transaction(owner, transaction_id) is not None:
            return Conflict("Transaction was changed by another request; reload and retry")
        return NotFound("Transaction not found")

    async def _require_accounts(self, owner: str, *account_ids: Optional[str]) -> None:
        for account_id in dict.fromkeys(a for a in account_ids if a):
            if await self.store.get_account(owner, account_id) is None:
                raise NotFound(f"Account {account_id} not found")

    # -------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------

    async def list_accounts(self, owner: str) -> List[Account]:
        return await self.store.list_accounts(owner)

    async def get_account(self, owner: str, account_id: str) -> Account:
        account = await self.store.get_account(owner, account_id)
        if account is None:
            raise NotFound("Account not found")
        return account

    async def create_account(self, owner: str, payload: AccountCreate) -> Account:
        account = await self.store.insert_account(
            owner,
            {
                "name": payload.name,
                "type": payload.type,
                "balance": payload.balance,
                "opening_balance": payload.balance,
            },
        )
        logger.info("[ledger] created account %s (%s) with balance %s", account.id, account.type, account.balance)
        return account

    async def update_account(self, owner: str, account_id: str, payload: AccountUpdate) -> Account:
        """
        Edit name / type, and optionally override the balance.

        A balance override is an administrative action: it breaks the link
        between the balance and transaction history, so it is refused unless
        `override_balance` is set.
        """
        changes = payload.model_dump(exclude_unset=True, exclude={"override_balance"})
        new_balance = changes.pop("balance", None)
        if new_balance is not None and not payload.override_balance:
            raise Invalid(
                "Editing the balance directly requires override_balance=true; "
                "record a transaction instead"
            )

        account = await self.get_account(owner, account_id)

        if changes:
            account = await self.store.update_account(owner, account_id, changes)
            if account is None:
                raise NotFound("Account not found")

        if new_balance is not None:
            if not await self.store.override_balance(owner, account_id, new_balance):
                raise NotFound("Account not found")
            logger.warning(
                "[ledger] manual balance override on account %s: set to %s",
                account_id, new_balance,
            )
            account = await self.get_account(owner, account_id)

        return account

    async def delete_account(self, owner: str, account_id: str) -> None:
        await self.get_account(owner, account_id)

        if await self.store.count_account_references(owner, account_id) > 0:
            raise Conflict("Cannot delete account with existing transactions")

        if not await self.store.delete_account_if_unreferenced(owner, account_id):
            # Lost a race: either a transaction now references it, or it is gone
            if await self.store.get_account(owner, account_id) is not None:
                raise Conflict("Cannot delete account with existing transactions")
            raise NotFound("Account not found")

        logger.info("[ledger] deleted account %s", account_id)

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    async def list_transactions(self, owner: str, page: int = 1, limit: int = 50) -> List[Transaction]:
        if page < 1 or limit < 1:
            raise Invalid("page and limit must be positive")
        return await self.store.list_transactions(owner, offset=(page - 1) * limit, limit=limit)

    async def get_transaction(self, owner: str, transaction_id: str) -> Transaction:
        tx = await self.store.get_transaction(owner, transaction_id)
        if tx is None:
            raise NotFound("Transaction not found")
        return tx

    async def create_transaction(self, owner: str, payload: TransactionCreate) -> Transaction:
        legs = legs_of(payload)
        await self._require_accounts(owner, *(leg.account_id for leg in legs))

        step = f"create {payload.type}"
        applied = await self._apply_legs(owner, legs, step)

        try:
            tx = await self.store.insert_transaction(owner, transaction_fields(payload))
        except LedgerError:
            logger.error("[ledger] %s: transaction row not written, reverting %d leg(s)", step, len(applied))
            await self._compensate(owner, applied, step)
            raise

        logger.info("[ledger] created %s transaction %s for %s", tx.type, tx.id, tx.amount)
        return tx

    async def update_transaction(
        self, owner: str, transaction_id: str, payload: TransactionUpdate
    ) -> Transaction:
        existing = await self.get_transaction(owner, transaction_id)
        draft = merge_transaction(existing, payload.model_dump(exclude_unset=True))

        old_legs = legs_of(existing)
        new_legs = legs_of(draft)
        await self._require_accounts(owner, *(leg.account_id for leg in new_legs))

        # Old legs are reversed and new legs applied individually, never netted
        steps: List[Leg] = []
        if old_legs != new_legs:
            steps = [leg.reversed() for leg in old_legs] + new_legs

        step = f"update {transaction_id}"
        applied = await self._apply_legs(owner, steps, step)

        try:
            tx = await self.store.update_transaction(
                owner, transaction_id, transaction_fields(draft), existing.version
            )
        except LedgerError:
            logger.error("[ledger] %s: transaction row not updated, reverting %d leg(s)", step, len(applied))
            await self._compensate(owner, applied, step)
            raise

        if tx is None:
            logger.error(
                "[ledger] %s: transaction changed or removed mid-update, reverting %d leg(s)",
                step, len(applied),
            )
            await self._compensate(owner, applied, step)
            raise await self._lost_write(owner, transaction_id)

        logger.info("[ledger] updated transaction %s", transaction_id)
        return tx

    async def delete_transaction(self, owner: str, transaction_id: str) -> None:
        existing = await self.get_transaction(owner, transaction_id)

        step = f"delete {transaction_id}"
        applied = await self._apply_legs(owner, [leg.reversed() for leg in legs_of(existing)], step)

        try:
            deleted = await self.store.delete_transaction(owner, transaction_id, existing.version)
        except LedgerError:
            logger.error("[ledger] %s: transaction row not deleted, reverting %d leg(s)", step, len(applied))
            await self._compensate(owner, applied, step)
            raise

        if not deleted:
            logger.error(
                "[ledger] %s: transaction changed or removed mid-delete, reverting %d leg(s)",
                step, len(applied),
            )
            await self._compensate(owner, applied, step)
            raise await self._lost_write(owner, transaction_id)

        logger.info("[ledger] deleted transaction %s", transaction_id)
