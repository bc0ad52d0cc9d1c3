import random
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import NotFound
from ledger import ledger_drift, recompute_ledger
from models import Transaction
from schemas import AccountIn, TransactionIn, TransactionUpdate
from services import AccountService, ImportService, TransactionService


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_account(session: Session, name: str = "Checking") -> str:
    return AccountService(session).create(AccountIn(name=name, currency="EUR")).id


def add(session: Session, account_id: str, on: date, amount_cents: int, **extra):
    data = TransactionIn(
        title=extra.pop("title", f"txn {amount_cents}"),
        date=on,
        amount_cents=amount_cents,
        **extra,
    )
    return TransactionService(session).create(account_id, data)


def ledger_rows(session: Session, account_id: str) -> list[Transaction]:
    session.expire_all()
    return session.scalars(
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .order_by(Transaction.date, Transaction.order)
    ).all()


def assert_consistent(session: Session, account_id: str) -> None:
    rows = ledger_rows(session, account_id)
    running = 0
    by_day: dict[date, list[int]] = {}
    for row in rows:
        running += row.amount_cents
        assert row.balance_cents == running, (row.title, row.date, row.order)
        by_day.setdefault(row.date, []).append(row.order)
    for orders in by_day.values():
        assert orders == list(range(len(orders)))


def test_same_day_inserts_get_contiguous_order_and_running_balance():
    session = make_session()
    account_id = make_account(session)
    day = date(2025, 3, 1)

    first = add(session, account_id, day, 10000)
    second = add(session, account_id, day, -3000)
    third = add(session, account_id, day, 5000)

    assert [first.order, second.order, third.order] == [0, 1, 2]
    assert [first.balance_cents, second.balance_cents, third.balance_cents] == [
        10000,
        7000,
        12000,
    ]


def test_insert_before_existing_shifts_later_balances():
    session = make_session()
    account_id = make_account(session)
    later = add(session, account_id, date(2025, 3, 10), 7000)

    earlier = add(session, account_id, date(2025, 3, 1), 2000)

    assert earlier.order == 0
    assert earlier.balance_cents == 2000
    session.refresh(later)
    assert later.balance_cents == 9000
    assert later.order == 0
    assert_consistent(session, account_id)


def test_insert_on_later_day_starts_new_bucket():
    session = make_session()
    account_id = make_account(session)
    add(session, account_id, date(2025, 3, 1), 500)
    add(session, account_id, date(2025, 3, 1), 700)

    txn = add(session, account_id, date(2025, 3, 2), -200)

    assert txn.order == 0
    assert txn.balance_cents == 1000


def test_delete_middle_transaction_closes_gap():
    session = make_session()
    account_id = make_account(session)
    day = date(2025, 3, 1)
    first = add(session, account_id, day, 10000)
    middle = add(session, account_id, day, -3000)
    last = add(session, account_id, day, 5000)
    next_day = add(session, account_id, date(2025, 3, 2), 100)

    TransactionService(session).delete(middle.id)

    rows = ledger_rows(session, account_id)
    assert [row.id for row in rows] == [first.id, last.id, next_day.id]
    assert [row.order for row in rows] == [0, 1, 0]
    assert [row.balance_cents for row in rows] == [10000, 15000, 15100]


def test_delete_missing_transaction_raises_not_found():
    session = make_session()
    make_account(session)
    with pytest.raises(NotFound):
        TransactionService(session).delete("missing")


def test_delete_then_reinsert_restores_balances():
    session = make_session()
    account_id = make_account(session)
    add(session, account_id, date(2025, 1, 1), 1000)
    target = add(session, account_id, date(2025, 1, 2), -250)
    add(session, account_id, date(2025, 1, 3), 400)
    before = [row.balance_cents for row in ledger_rows(session, account_id)]

    TransactionService(session).delete(target.id)
    add(session, account_id, date(2025, 1, 2), -250)

    after = [row.balance_cents for row in ledger_rows(session, account_id)]
    assert after == before


def test_update_amount_recomputes_following_balances():
    session = make_session()
    account_id = make_account(session)
    day = date(2025, 3, 1)
    add(session, account_id, day, 10000)
    middle = add(session, account_id, day, -3000)
    add(session, account_id, day, 5000)

    TransactionService(session).update(
        middle.id, TransactionUpdate(amount_cents=-1000)
    )

    rows = ledger_rows(session, account_id)
    assert [row.balance_cents for row in rows] == [10000, 9000, 14000]
    assert_consistent(session, account_id)


def test_update_date_moves_transaction_last_in_new_day():
    session = make_session()
    account_id = make_account(session)
    moved = add(session, account_id, date(2025, 3, 1), 100, title="moved")
    stay = add(session, account_id, date(2025, 3, 1), 200, title="stay")
    add(session, account_id, date(2025, 3, 5), 300, title="a")
    add(session, account_id, date(2025, 3, 5), 400, title="b")

    updated = TransactionService(session).update(
        moved.id, TransactionUpdate(date=date(2025, 3, 5))
    )

    assert updated.date == date(2025, 3, 5)
    assert updated.order == 2
    rows = ledger_rows(session, account_id)
    assert [row.title for row in rows] == ["stay", "a", "b", "moved"]
    assert [row.balance_cents for row in rows] == [200, 500, 900, 1000]
    session.refresh(stay)
    assert stay.order == 0
    assert_consistent(session, account_id)


def test_update_without_balance_fields_keeps_ledger():
    session = make_session()
    account_id = make_account(session)
    txn = add(session, account_id, date(2025, 3, 1), 100)

    updated = TransactionService(session).update(
        txn.id, TransactionUpdate(title="Groceries", payee="Market")
    )

    assert updated.title == "Groceries"
    assert updated.payee == "Market"
    assert updated.balance_cents == 100
    assert updated.order == 0


def test_temporary_transactions_still_count_towards_balance():
    session = make_session()
    account_id = make_account(session)
    add(session, account_id, date(2025, 3, 1), 100, is_temporary=True)
    txn = add(session, account_id, date(2025, 3, 2), 50)

    assert txn.balance_cents == 150


def test_accounts_have_independent_ledgers():
    session = make_session()
    checking = make_account(session, "Checking")
    savings = make_account(session, "Savings")
    add(session, checking, date(2025, 3, 1), 100)

    txn = add(session, savings, date(2025, 3, 1), 40)

    assert txn.order == 0
    assert txn.balance_cents == 40


def test_random_sequence_keeps_ledger_consistent():
    session = make_session()
    account_id = make_account(session)
    service = TransactionService(session)
    rng = random.Random(7)
    ids: list[str] = []

    for _ in range(60):
        action = rng.random()
        if ids and action < 0.25:
            service.delete(ids.pop(rng.randrange(len(ids))))
        elif ids and action < 0.45:
            service.update(
                rng.choice(ids),
                TransactionUpdate(
                    date=date(2025, 1, rng.randint(1, 6)),
                    amount_cents=rng.randint(-5000, 5000),
                ),
            )
        else:
            txn = add(
                session,
                account_id,
                date(2025, 1, rng.randint(1, 6)),
                rng.randint(-5000, 5000),
            )
            ids.append(txn.id)
        assert_consistent(session, account_id)


def test_recompute_is_idempotent_and_repairs_drift():
    session = make_session()
    account_id = make_account(session)
    add(session, account_id, date(2025, 3, 1), 100)
    broken = add(session, account_id, date(2025, 3, 1), 200)
    add(session, account_id, date(2025, 3, 2), 300)

    broken.balance_cents = 999
    broken.order = 5
    session.commit()

    drift = ledger_drift(session, account_id)
    assert [position.transaction_id for position in drift] == [broken.id]
    assert drift[0].order == 1
    assert drift[0].balance_cents == 300

    assert TransactionService(session).recompute(account_id) == 1
    assert recompute_ledger(session, account_id) == 0
    assert ledger_drift(session, account_id) == []
    assert_consistent(session, account_id)


def test_import_replaces_ledger_and_keeps_file_order_within_day():
    session = make_session()
    account_id = make_account(session)
    add(session, account_id, date(2024, 12, 31), 99999)
    rows = [
        TransactionIn(title="rent", date=date(2025, 1, 3), amount_cents=-80000),
        TransactionIn(title="salary", date=date(2025, 1, 1), amount_cents=250000),
        TransactionIn(title="coffee", date=date(2025, 1, 3), amount_cents=-350),
    ]

    assert ImportService(session).replace_transactions(account_id, rows) == 3

    imported = ledger_rows(session, account_id)
    assert [row.title for row in imported] == ["salary", "rent", "coffee"]
    assert [row.order for row in imported] == [0, 0, 1]
    assert [row.balance_cents for row in imported] == [250000, 170000, 169650]


def test_concurrent_writers_on_one_account_keep_ledger_consistent(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with SessionLocal() as session:
        account_id = make_account(session)
    days = [date(2025, 4, 1), date(2025, 4, 2), date(2025, 4, 3)]

    def write(i: int) -> None:
        with SessionLocal() as session:
            add(session, account_id, days[i % len(days)], 100 + i, title=f"w{i}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(40)))

    with SessionLocal() as session:
        rows = ledger_rows(session, account_id)
        assert len(rows) == 40
        assert rows[-1].balance_cents == sum(100 + i for i in range(40))
        assert_consistent(session, account_id)
