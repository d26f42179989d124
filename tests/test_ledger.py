import asyncio
import logging
from datetime import date
from decimal import Decimal

import pytest

from app.errors import Conflict, Invalid, NotFound, Unavailable
from app.schemas import (
    ExpenseCreate,
    IncomeCreate,
    TransactionUpdate,
    TransferCreate,
)
from app.services.ledger import LedgerService, Leg, effect, legs_for
from app.services.reconcile import reconcile
from app.store import Store

from tests.conftest import OTHER_OWNER, OWNER, balance_of, make_account


def expense(account, amount, category="Groceries"):
    return ExpenseCreate(
        type="expense",
        amount=Decimal(amount),
        category=category,
        date=date(2025, 3, 14),
        from_account_id=account.id,
    )


def income(account, amount, category="Salary"):
    return IncomeCreate(
        type="income",
        amount=Decimal(amount),
        category=category,
        date=date(2025, 3, 1),
        from_account_id=account.id,
    )


def transfer(source, destination, amount):
    return TransferCreate(
        type="transfer",
        amount=Decimal(amount),
        category="Savings",
        date=date(2025, 3, 20),
        from_account_id=source.id,
        to_account_id=destination.id,
    )


# ---- effect / legs ----

def test_effect_table():
    assert effect("income", Decimal("10")) == (Decimal("10"), None)
    assert effect("expense", Decimal("10")) == (Decimal("-10"), None)
    assert effect("transfer", Decimal("10")) == (Decimal("-10"), Decimal("10"))


def test_effect_rejects_unknown_type():
    with pytest.raises(Invalid):
        effect("refund", Decimal("1"))


def test_transfer_legs_need_destination():
    assert legs_for("transfer", Decimal("5"), "a", "b") == [Leg("a", Decimal("-5")), Leg("b", Decimal("5"))]
    with pytest.raises(Invalid):
        legs_for("transfer", Decimal("5"), "a", None)


# ---- create / update / delete ----

@pytest.mark.asyncio
async def test_expense_update_delete_scenario(ledger):
    account = await make_account(ledger, balance="1000")

    tx = await ledger.create_transaction(OWNER, expense(account, "200"))
    assert await balance_of(ledger, account) == Decimal("800")

    await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("150")))
    assert await balance_of(ledger, account) == Decimal("850")

    await ledger.delete_transaction(OWNER, tx.id)
    assert await balance_of(ledger, account) == Decimal("1000")


@pytest.mark.asyncio
async def test_create_then_delete_restores_balances(ledger):
    account = await make_account(ledger, balance="250.50")

    tx = await ledger.create_transaction(OWNER, income(account, "99.99"))
    assert await balance_of(ledger, account) == Decimal("350.49")

    await ledger.delete_transaction(OWNER, tx.id)
    assert await balance_of(ledger, account) == Decimal("250.50")


@pytest.mark.asyncio
async def test_update_repoints_expense_to_other_account(ledger):
    a = await make_account(ledger, "A", balance="1000")
    b = await make_account(ledger, "B", balance="1000")

    tx = await ledger.create_transaction(OWNER, expense(a, "100"))
    assert await balance_of(ledger, a) == Decimal("900")

    updated = await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(from_account_id=b.id))

    assert updated.from_account_id == b.id
    assert await balance_of(ledger, a) == Decimal("1000")
    assert await balance_of(ledger, b) == Decimal("900")


@pytest.mark.asyncio
async def test_transfer_symmetry(ledger):
    a = await make_account(ledger, "A", balance="500")
    b = await make_account(ledger, "B", balance="20", type="savings")

    tx = await ledger.create_transaction(OWNER, transfer(a, b, "50"))
    assert await balance_of(ledger, a) == Decimal("450")
    assert await balance_of(ledger, b) == Decimal("70")

    await ledger.delete_transaction(OWNER, tx.id)
    assert await balance_of(ledger, a) == Decimal("500")
    assert await balance_of(ledger, b) == Decimal("20")


@pytest.mark.asyncio
async def test_update_transfer_into_expense_reverses_both_legs(ledger):
    a = await make_account(ledger, "A", balance="500")
    b = await make_account(ledger, "B", balance="0")

    tx = await ledger.create_transaction(OWNER, transfer(a, b, "50"))
    updated = await ledger.update_transaction(
        OWNER, tx.id, TransactionUpdate(type="expense", amount=Decimal("30"))
    )

    assert updated.type == "expense"
    assert updated.to_account_id is None
    assert await balance_of(ledger, a) == Decimal("470")
    assert await balance_of(ledger, b) == Decimal("0")


@pytest.mark.asyncio
async def test_update_transfer_destination(ledger):
    a = await make_account(ledger, "A", balance="100")
    b = await make_account(ledger, "B", balance="100")
    c = await make_account(ledger, "C", balance="100")

    tx = await ledger.create_transaction(OWNER, transfer(a, b, "40"))
    await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(to_account_id=c.id, amount=Decimal("10")))

    assert await balance_of(ledger, a) == Decimal("90")
    assert await balance_of(ledger, b) == Decimal("100")
    assert await balance_of(ledger, c) == Decimal("110")


@pytest.mark.asyncio
async def test_create_then_update_matches_direct_create(ledger):
    a1 = await make_account(ledger, "A1", balance="1000")
    b1 = await make_account(ledger, "B1", balance="300")
    a2 = await make_account(ledger, "A2", balance="1000")
    b2 = await make_account(ledger, "B2", balance="300")

    # history: income on A1, edited into a transfer B1 -> A1 of 75
    tx = await ledger.create_transaction(OWNER, income(a1, "400"))
    await ledger.update_transaction(
        OWNER,
        tx.id,
        TransactionUpdate(type="transfer", amount=Decimal("75"), from_account_id=b1.id, to_account_id=a1.id),
    )

    # direct: the same transfer created outright
    await ledger.create_transaction(OWNER, transfer(b2, a2, "75"))

    assert await balance_of(ledger, a1) == await balance_of(ledger, a2)
    assert await balance_of(ledger, b1) == await balance_of(ledger, b2)


@pytest.mark.asyncio
async def test_metadata_only_update_keeps_balances(ledger):
    account = await make_account(ledger, balance="100")
    tx = await ledger.create_transaction(OWNER, expense(account, "10"))

    updated = await ledger.update_transaction(
        OWNER, tx.id, TransactionUpdate(category="Dining", notes="team lunch")
    )

    assert updated.category == "Dining"
    assert updated.notes == "team lunch"
    assert await balance_of(ledger, account) == Decimal("90")


# ---- validation ----

@pytest.mark.asyncio
async def test_create_against_foreign_account_is_not_found(ledger):
    theirs = await make_account(ledger, owner=OTHER_OWNER)

    with pytest.raises(NotFound):
        await ledger.create_transaction(OWNER, expense(theirs, "10"))

    assert await balance_of(ledger, theirs, owner=OTHER_OWNER) == Decimal("1000")


@pytest.mark.asyncio
async def test_transfer_with_missing_destination_leaves_source_untouched(ledger):
    a = await make_account(ledger, "A", balance="100")
    payload = TransferCreate(
        type="transfer",
        amount=Decimal("10"),
        category="Move",
        from_account_id=a.id,
        to_account_id="does-not-exist",
    )

    with pytest.raises(NotFound):
        await ledger.create_transaction(OWNER, payload)

    assert await balance_of(ledger, a) == Decimal("100")
    assert await ledger.list_transactions(OWNER) == []


@pytest.mark.asyncio
async def test_update_into_transfer_without_destination_is_invalid(ledger):
    account = await make_account(ledger, balance="100")
    tx = await ledger.create_transaction(OWNER, expense(account, "10"))

    with pytest.raises(Invalid):
        await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(type="transfer"))

    assert await balance_of(ledger, account) == Decimal("90")


@pytest.mark.asyncio
async def test_update_into_self_transfer_is_invalid(ledger):
    a = await make_account(ledger, "A", balance="100")
    b = await make_account(ledger, "B", balance="100")
    tx = await ledger.create_transaction(OWNER, transfer(a, b, "10"))

    with pytest.raises(Invalid):
        await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(to_account_id=a.id))

    assert await balance_of(ledger, a) == Decimal("90")
    assert await balance_of(ledger, b) == Decimal("110")


@pytest.mark.asyncio
async def test_other_owner_cannot_touch_transaction(ledger):
    account = await make_account(ledger, balance="100")
    tx = await ledger.create_transaction(OWNER, expense(account, "10"))

    with pytest.raises(NotFound):
        await ledger.update_transaction(OTHER_OWNER, tx.id, TransactionUpdate(amount=Decimal("1")))
    with pytest.raises(NotFound):
        await ledger.delete_transaction(OTHER_OWNER, tx.id)

    assert await balance_of(ledger, account) == Decimal("90")


@pytest.mark.asyncio
async def test_list_transactions_paginates_newest_first(ledger):
    account = await make_account(ledger, balance="100")
    for day in (1, 2, 3):
        await ledger.create_transaction(
            OWNER,
            ExpenseCreate(
                type="expense",
                amount=Decimal("1"),
                category="Coffee",
                date=date(2025, 5, day),
                from_account_id=account.id,
            ),
        )

    first = await ledger.list_transactions(OWNER, page=1, limit=2)
    second = await ledger.list_transactions(OWNER, page=2, limit=2)

    assert [tx.date.day for tx in first] == [3, 2]
    assert [tx.date.day for tx in second] == [1]


# ---- concurrency ----

@pytest.mark.asyncio
async def test_concurrent_expenses_are_not_lost(ledger):
    account = await make_account(ledger, balance="100")

    await asyncio.gather(
        ledger.create_transaction(OWNER, expense(account, "10")),
        ledger.create_transaction(OWNER, expense(account, "20")),
    )

    assert await balance_of(ledger, account) == Decimal("70")


# ---- reconciliation over a history of edits ----

@pytest.mark.asyncio
async def test_balances_match_surviving_transactions_after_edits(ledger, store):
    a = await make_account(ledger, "A", balance="1000")
    b = await make_account(ledger, "B", balance="200")

    t1 = await ledger.create_transaction(OWNER, expense(a, "120"))
    t2 = await ledger.create_transaction(OWNER, transfer(a, b, "300"))
    t3 = await ledger.create_transaction(OWNER, income(b, "55.25"))
    await ledger.update_transaction(OWNER, t1.id, TransactionUpdate(from_account_id=b.id, amount=Decimal("20")))
    await ledger.update_transaction(OWNER, t2.id, TransactionUpdate(amount=Decimal("100")))
    await ledger.delete_transaction(OWNER, t3.id)

    # surviving: expense 20 on B, transfer 100 A -> B
    assert await balance_of(ledger, a) == Decimal("900")
    assert await balance_of(ledger, b) == Decimal("280")

    drifts = await reconcile(store, OWNER)
    assert all(d.drift == Decimal("0") for d in drifts)


# ---- partial failure ----

class FailingInsertStore(Store):
    async def insert_transaction(self, owner, fields):
        raise Unavailable("Store call 'insert transactions' timed out")


class VanishingDestinationStore(Store):
    """Destination account disappears right before its leg is applied."""

    def __init__(self, engine, vanishing_id):
        super().__init__(engine)
        self.vanishing_id = vanishing_id

    async def increment_balance(self, owner, account_id, delta):
        if account_id == self.vanishing_id:
            return False
        return await super().increment_balance(owner, account_id, delta)


@pytest.mark.asyncio
async def test_failed_insert_reverts_applied_legs_and_logs(store, caplog):
    ledger = LedgerService(store)
    account = await make_account(ledger, balance="1000")

    failing = LedgerService(FailingInsertStore(store.engine))
    with caplog.at_level(logging.WARNING, logger="app.services.ledger"):
        with pytest.raises(Unavailable):
            await failing.create_transaction(OWNER, expense(account, "200"))

    assert await balance_of(ledger, account) == Decimal("1000")
    assert "transaction row not written" in caplog.text
    assert account.id in caplog.text


@pytest.mark.asyncio
async def test_vanished_destination_fails_closed(store, caplog):
    ledger = LedgerService(store)
    a = await make_account(ledger, "A", balance="500")
    b = await make_account(ledger, "B", balance="0")

    racing = LedgerService(VanishingDestinationStore(store.engine, b.id))
    with caplog.at_level(logging.ERROR, logger="app.services.ledger"):
        with pytest.raises(NotFound):
            await racing.create_transaction(OWNER, transfer(a, b, "50"))

    assert await balance_of(ledger, a) == Decimal("500")
    assert await ledger.list_transactions(OWNER) == []
    assert b.id in caplog.text


class FailingRowWriteStore(Store):
    """Balance legs go through; writing the transaction row itself fails."""

    async def update_transaction(self, owner, transaction_id, fields, expected_version):
        raise Unavailable("Store call 'update transactions' timed out")

    async def delete_transaction(self, owner, transaction_id, expected_version):
        raise Unavailable("Store call 'delete transactions' timed out")


@pytest.mark.asyncio
async def test_failed_row_update_reverts_legs_and_logs(store, caplog):
    ledger = LedgerService(store)
    a = await make_account(ledger, "A", balance="1000")
    b = await make_account(ledger, "B", balance="0")
    tx = await ledger.create_transaction(OWNER, expense(a, "200"))

    failing = LedgerService(FailingRowWriteStore(store.engine))
    with caplog.at_level(logging.WARNING, logger="app.services.ledger"):
        with pytest.raises(Unavailable):
            await failing.update_transaction(
                OWNER, tx.id, TransactionUpdate(from_account_id=b.id, amount=Decimal("50.00"))
            )

    assert await balance_of(ledger, a) == Decimal("800")
    assert await balance_of(ledger, b) == Decimal("0")
    assert (await ledger.get_transaction(OWNER, tx.id)).amount == Decimal("200")
    assert "transaction row not updated" in caplog.text
    # every reverted leg names its account and delta
    assert f"reverted -50.00 on account {b.id}" in caplog.text
    assert f"reverted 200.00 on account {a.id}" in caplog.text


@pytest.mark.asyncio
async def test_failed_row_delete_reverts_legs_and_logs(store, caplog):
    ledger = LedgerService(store)
    a = await make_account(ledger, "A", balance="300")
    b = await make_account(ledger, "B", balance="0")
    tx = await ledger.create_transaction(OWNER, transfer(a, b, "120"))

    failing = LedgerService(FailingRowWriteStore(store.engine))
    with caplog.at_level(logging.WARNING, logger="app.services.ledger"):
        with pytest.raises(Unavailable):
            await failing.delete_transaction(OWNER, tx.id)

    assert await balance_of(ledger, a) == Decimal("180")
    assert await balance_of(ledger, b) == Decimal("120")
    assert (await ledger.get_transaction(OWNER, tx.id)).id == tx.id
    assert "transaction row not deleted" in caplog.text
    assert a.id in caplog.text and b.id in caplog.text


# ---- concurrent edits of one transaction ----

class InterleavingStore(Store):
    """Runs a competing operation right after the first transaction read."""

    def __init__(self, engine, competitor):
        super().__init__(engine)
        self.competitor = competitor

    async def get_transaction(self, owner, transaction_id):
        tx = await super().get_transaction(owner, transaction_id)
        if self.competitor is not None:
            competitor, self.competitor = self.competitor, None
            await competitor()
        return tx


@pytest.mark.asyncio
async def test_update_losing_to_concurrent_update_conflicts(store):
    ledger = LedgerService(store)
    account = await make_account(ledger, balance="1000")
    tx = await ledger.create_transaction(OWNER, expense(account, "200"))

    async def competing_edit():
        await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("150")))

    racing = LedgerService(InterleavingStore(store.engine, competing_edit))
    with pytest.raises(Conflict):
        await racing.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("100")))

    stored = await ledger.get_transaction(OWNER, tx.id)
    assert stored.amount == Decimal("150")
    assert stored.version == 2
    assert await balance_of(ledger, account) == Decimal("850")


@pytest.mark.asyncio
async def test_delete_losing_to_concurrent_update_conflicts(store):
    ledger = LedgerService(store)
    account = await make_account(ledger, balance="1000")
    tx = await ledger.create_transaction(OWNER, expense(account, "200"))

    async def competing_edit():
        await ledger.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("150")))

    racing = LedgerService(InterleavingStore(store.engine, competing_edit))
    with pytest.raises(Conflict):
        await racing.delete_transaction(OWNER, tx.id)

    assert (await ledger.get_transaction(OWNER, tx.id)).amount == Decimal("150")
    assert await balance_of(ledger, account) == Decimal("850")


@pytest.mark.asyncio
async def test_update_losing_to_concurrent_delete_is_not_found(store):
    ledger = LedgerService(store)
    account = await make_account(ledger, balance="1000")
    tx = await ledger.create_transaction(OWNER, expense(account, "200"))

    async def competing_delete():
        await ledger.delete_transaction(OWNER, tx.id)

    racing = LedgerService(InterleavingStore(store.engine, competing_delete))
    with pytest.raises(NotFound):
        await racing.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("100")))

    assert await ledger.list_transactions(OWNER) == []
    assert await balance_of(ledger, account) == Decimal("1000")


@pytest.mark.asyncio
async def test_simultaneous_updates_leave_balance_matching_survivor(ledger, store):
    account = await make_account(ledger, balance="1000")
    tx = await ledger.create_transaction(OWNER, expense(account, "200"))

    results = await asyncio.gather(
        ledger.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("150"))),
        ledger.update_transaction(OWNER, tx.id, TransactionUpdate(amount=Decimal("100"))),
        return_exceptions=True,
    )

    # either both ran one after the other, or the loser got Conflict
    assert all(not isinstance(r, Exception) or isinstance(r, Conflict) for r in results)
    survivor = await ledger.get_transaction(OWNER, tx.id)
    assert await balance_of(ledger, account) == Decimal("1000") - survivor.amount
    assert all(d.drift == Decimal("0") for d in await reconcile(store, OWNER))
