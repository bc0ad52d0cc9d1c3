"""Running-balance maintenance for an account's transactions.

Every transaction carries ``order`` (position among transactions sharing its
date, contiguous from 0) and ``balance_cents`` (sum of ``amount_cents`` of all
transactions up to and including it in ``(date, order)`` sequence).

The functions here only flush; the calling service commits, so each mutation
lands as a single database transaction. Callers hold ``ledger_lock`` for the
account while mutating.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from models import Transaction

logger = logging.getLogger(__name__)

BALANCE_FIELDS = frozenset({"date", "amount_cents"})


class LedgerLocks:
    """Per-account writer locks.

    Insert reads the preceding row before writing, so two writers on the same
    account must not interleave.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def for_account(self, account_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    def discard(self, account_id: str) -> None:
        with self._guard:
            self._locks.pop(account_id, None)


ledger_locks = LedgerLocks()


@contextmanager
def ledger_lock(account_id: str) -> Iterator[None]:
    lock = ledger_locks.for_account(account_id)
    with lock:
        yield


def _previous(session: Session, account_id: str, on: date) -> Optional[Transaction]:
    return session.scalar(
        select(Transaction)
        .where(Transaction.account_id == account_id, Transaction.date <= on)
        .order_by(Transaction.date.desc(), Transaction.order.desc())
        .limit(1)
    )


def insert_transaction(
    session: Session, account_id: str, fields: dict[str, object]
) -> Transaction:
    on: date = fields["date"]  # type: ignore[assignment]
    amount = int(fields["amount_cents"])  # type: ignore[arg-type]

    prev = _previous(session, account_id, on)
    if prev is None:
        order, balance = 0, amount
    else:
        order = prev.order + 1 if prev.date == on else 0
        balance = prev.balance_cents + amount

    txn = Transaction(
        account_id=account_id,
        order=order,
        balance_cents=balance,
        **fields,
    )
    session.add(txn)
    session.flush()

    # Later days shift by the new amount; their order is per-day and unaffected.
    session.execute(
        update(Transaction)
        .where(
            Transaction.account_id == account_id,
            Transaction.date > on,
        )
        .values(balance_cents=Transaction.balance_cents + amount)
        .execution_options(synchronize_session="fetch")
    )
    logger.info(
        f"ledger_insert: account={account_id} txn={txn.id} date={on} "
        f"order={order} balance={balance}"
    )
    return txn


def _last_order_on(
    session: Session, account_id: str, on: date, exclude_id: str
) -> Optional[int]:
    return session.scalar(
        select(func.max(Transaction.order)).where(
            Transaction.account_id == account_id,
            Transaction.date == on,
            Transaction.id != exclude_id,
        )
    )


def update_transaction(
    session: Session, txn: Transaction, fields: dict[str, object]
) -> bool:
    """Apply ``fields`` to ``txn``; returns True when the ledger was rebuilt."""
    old_date = txn.date
    old_amount = txn.amount_cents
    for name, value in fields.items():
        setattr(txn, name, value)

    date_changed = txn.date != old_date
    amount_changed = txn.amount_cents != old_amount
    if not (date_changed or amount_changed):
        session.flush()
        return False

    if date_changed:
        # A moved transaction goes last among the entries already on its new day.
        last = _last_order_on(session, txn.account_id, txn.date, txn.id)
        txn.order = 0 if last is None else last + 1
    session.flush()
    recompute_ledger(session, txn.account_id)
    return True


def delete_transaction(session: Session, txn: Transaction) -> None:
    account_id = txn.account_id
    on, order, amount = txn.date, txn.order, txn.amount_cents

    session.delete(txn)
    session.flush()

    session.execute(
        update(Transaction)
        .where(
            Transaction.account_id == account_id,
            or_(
                Transaction.date > on,
                and_(Transaction.date == on, Transaction.order > order),
            ),
        )
        .values(balance_cents=Transaction.balance_cents - amount)
        .execution_options(synchronize_session="fetch")
    )
    session.execute(
        update(Transaction)
        .where(
            Transaction.account_id == account_id,
            Transaction.date == on,
            Transaction.order > order,
        )
        .values(order=Transaction.order - 1)
        .execution_options(synchronize_session="fetch")
    )
    logger.info(
        f"ledger_delete: account={account_id} date={on} order={order} amount={amount}"
    )


@dataclass(frozen=True)
class LedgerPosition:
    transaction_id: str
    order: int
    balance_cents: int


def _walk(rows: list[Transaction]) -> Iterator[tuple[Transaction, LedgerPosition]]:
    prev: Optional[Transaction] = None
    order = 0
    balance = 0
    for txn in rows:
        if prev is None:
            order = 0
        else:
            order = order + 1 if txn.date == prev.date else 0
        balance += txn.amount_cents
        yield txn, LedgerPosition(txn.id, order, balance)
        prev = txn


def _ordered(session: Session, account_id: str) -> list[Transaction]:
    return list(
        session.scalars(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.date.asc(), Transaction.order.asc(), Transaction.id)
        ).all()
    )


def recompute_ledger(session: Session, account_id: str) -> int:
    """Rebuild order and balance for the whole account; returns rows changed."""
    changed = 0
    for txn, expected in _walk(_ordered(session, account_id)):
        if txn.order != expected.order or txn.balance_cents != expected.balance_cents:
            txn.order = expected.order
            txn.balance_cents = expected.balance_cents
            changed += 1
    session.flush()
    logger.info(f"ledger_recompute: account={account_id} changed={changed}")
    return changed


def ledger_drift(session: Session, account_id: str) -> list[LedgerPosition]:
    """Expected positions of every transaction whose stored values disagree."""
    drift = [
        expected
        for txn, expected in _walk(_ordered(session, account_id))
        if txn.order != expected.order or txn.balance_cents != expected.balance_cents
    ]
    if drift:
        logger.warning(f"ledger_drift: account={account_id} rows={len(drift)}")
    return drift
