from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from errors import NotFound, Conflict, ValidationFailed
from ledger import (
    BALANCE_FIELDS,
    delete_transaction,
    insert_transaction,
    ledger_drift,
    ledger_lock,
    ledger_locks,
    recompute_ledger,
    update_transaction,
)
from models import Account, Category, SubCategory, Transaction, Widget
from query_builder import cents
from schemas import (
    AccountIn,
    CategoryIn,
    TransactionIn,
    TransactionUpdate,
    WidgetIn,
    WidgetUpdate,
)
from widget_config import dump_widget_config, parse_widget_config
from widgets import ShapedResult, query_tracker, run_widget_query

logger = logging.getLogger(__name__)


@dataclass
class TransactionFilters:
    title: Optional[str] = None
    description: Optional[str] = None
    payee: Optional[str] = None
    is_temporary: Optional[bool] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_ids: Optional[list[str]] = None


def _contains(column, value: str):
    like = f"%{value.lower()}%"
    return func.lower(func.coalesce(column, "")).like(like)


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        return self.session.scalars(select(Account).order_by(Account.name)).all()

    def get(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            name=data.name.strip(),
            currency=data.currency or get_settings().default_currency,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def rename(self, account_id: str, name: str) -> Account:
        account = self.get(account_id)
        account.name = name.strip()
        self.session.commit()
        return account

    def delete(self, account_id: str) -> None:
        with ledger_lock(account_id):
            account = self.get(account_id)
            self.session.delete(account)
            self.session.commit()
        ledger_locks.discard(account_id)
        logger.info(f"account_deleted: account={account_id}")


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_account(self, account_id: str) -> list[Category]:
        AccountService(self.session).get(account_id)
        stmt = (
            select(Category)
            .options(selectinload(Category.sub_categories))
            .where(Category.account_id == account_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def get_sub(self, sub_category_id: str) -> SubCategory:
        sub = self.session.get(SubCategory, sub_category_id)
        if not sub:
            raise NotFound("Sub-category not found")
        return sub

    def create(self, account_id: str, data: CategoryIn) -> Category:
        AccountService(self.session).get(account_id)
        existing = self.session.scalar(
            select(Category).where(
                Category.account_id == account_id,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise Conflict("Category with this name already exists")
        category = Category(
            account_id=account_id, name=data.name.strip(), icon=data.icon
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def create_sub(self, category_id: str, data: CategoryIn) -> SubCategory:
        category = self.get(category_id)
        existing = self.session.scalar(
            select(SubCategory).where(
                SubCategory.category_id == category_id,
                func.lower(SubCategory.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise Conflict("Sub-category with this name already exists")
        sub = SubCategory(
            category_id=category.id,
            account_id=category.account_id,
            name=data.name.strip(),
            icon=data.icon,
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def rename(self, category_id: str, name: str) -> Category:
        category = self.get(category_id)
        category.name = name.strip()
        self.session.commit()
        return category

    def rename_sub(self, sub_category_id: str, name: str) -> SubCategory:
        sub = self.get_sub(sub_category_id)
        sub.name = name.strip()
        self.session.commit()
        return sub

    def _drop_transactions(self, account_id: str, condition) -> int:
        result = self.session.execute(
            delete(Transaction)
            .where(Transaction.account_id == account_id, condition)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def delete(self, category_id: str) -> None:
        category = self.get(category_id)
        account_id = category.account_id
        with ledger_lock(account_id):
            sub_ids = [sub.id for sub in category.sub_categories]
            condition = Transaction.category_id == category_id
            if sub_ids:
                condition = or_(condition, Transaction.sub_category_id.in_(sub_ids))
            removed = self._drop_transactions(account_id, condition)
            self.session.delete(category)
            self.session.flush()
            if removed:
                recompute_ledger(self.session, account_id)
            self.session.commit()
        logger.info(
            f"category_deleted: account={account_id} category={category_id} "
            f"transactions={removed}"
        )

    def delete_sub(self, sub_category_id: str) -> None:
        sub = self.get_sub(sub_category_id)
        account_id = sub.account_id
        with ledger_lock(account_id):
            removed = self._drop_transactions(
                account_id, Transaction.sub_category_id == sub_category_id
            )
            self.session.delete(sub)
            self.session.flush()
            if removed:
                recompute_ledger(self.session, account_id)
            self.session.commit()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _check_category_refs(
        self,
        account_id: str,
        category_id: Optional[str],
        sub_category_id: Optional[str],
        *,
        prefix: str = "",
    ) -> None:
        if sub_category_id and not category_id:
            raise ValidationFailed.single(
                f"{prefix}sub_category_id", "Sub-category requires a category"
            )
        if category_id:
            category = self.session.get(Category, category_id)
            if not category or category.account_id != account_id:
                raise ValidationFailed.single(
                    f"{prefix}category_id", "Category not found"
                )
        if sub_category_id:
            sub = self.session.get(SubCategory, sub_category_id)
            if not sub or sub.account_id != account_id:
                raise ValidationFailed.single(
                    f"{prefix}sub_category_id", "Sub-category not found"
                )
            if sub.category_id != category_id:
                raise ValidationFailed.single(
                    f"{prefix}sub_category_id",
                    "Sub-category does not belong to the selected category",
                )

    def get(self, transaction_id: str) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.sub_category)
            )
            .where(Transaction.id == transaction_id)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def create(self, account_id: str, data: TransactionIn) -> Transaction:
        AccountService(self.session).get(account_id)
        self._check_category_refs(account_id, data.category_id, data.sub_category_id)
        with ledger_lock(account_id):
            txn = insert_transaction(self.session, account_id, data.model_dump())
            self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        account_id = txn.account_id
        fields = data.model_dump(exclude_unset=True)
        category_id = fields.get("category_id", txn.category_id)
        sub_category_id = fields.get("sub_category_id", txn.sub_category_id)
        self._check_category_refs(account_id, category_id, sub_category_id)

        with ledger_lock(account_id):
            # re-read under the lock; a concurrent delete may have won
            current = self.session.get(Transaction, transaction_id, populate_existing=True)
            if current is None:
                raise Conflict("Transaction was removed while editing")
            rebuilt = update_transaction(self.session, current, fields)
            self.session.commit()
        if rebuilt:
            logger.info(
                f"ledger_update: account={account_id} txn={transaction_id} "
                f"fields={sorted(BALANCE_FIELDS & fields.keys())} recomputed=True"
            )
        self.session.refresh(current)
        return current

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        account_id = txn.account_id
        with ledger_lock(account_id):
            current = self.session.get(Transaction, transaction_id, populate_existing=True)
            if current is None:
                raise NotFound("Transaction not found")
            delete_transaction(self.session, current)
            self.session.commit()

    def recompute(self, account_id: str) -> int:
        AccountService(self.session).get(account_id)
        with ledger_lock(account_id):
            changed = recompute_ledger(self.session, account_id)
            self.session.commit()
        return changed

    def drift(self, account_id: str):
        AccountService(self.session).get(account_id)
        return ledger_drift(self.session, account_id)

    def list(
        self,
        account_id: str,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.sub_category)
            )
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.date.desc(), Transaction.order.desc())
            .offset(offset)
        )
        if limit:
            stmt = stmt.limit(limit)
        if filters.title:
            stmt = stmt.where(_contains(Transaction.title, filters.title))
        if filters.description:
            stmt = stmt.where(_contains(Transaction.description, filters.description))
        if filters.payee:
            stmt = stmt.where(_contains(Transaction.payee, filters.payee))
        if filters.is_temporary is not None:
            stmt = stmt.where(Transaction.is_temporary.is_(filters.is_temporary))
        if filters.min_amount is not None:
            stmt = stmt.where(Transaction.amount_cents >= cents(filters.min_amount))
        if filters.max_amount is not None:
            stmt = stmt.where(Transaction.amount_cents <= cents(filters.max_amount))
        if filters.start_date:
            stmt = stmt.where(Transaction.date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Transaction.date <= filters.end_date)
        if filters.category_ids:
            stmt = stmt.where(
                or_(
                    Transaction.category_id.in_(filters.category_ids),
                    Transaction.sub_category_id.in_(filters.category_ids),
                )
            )
        return self.session.scalars(stmt).unique().all()

    def suggest_titles(self, account_id: str, query: str, limit: int = 10) -> list[str]:
        query = query.strip()
        if not query:
            return []
        titles = self.session.scalars(
            select(Transaction.title)
            .where(
                Transaction.account_id == account_id,
                _contains(Transaction.title, query),
            )
            .distinct()
        ).all()
        ranked = sorted(
            titles, key=lambda title: (Levenshtein.distance(query, title), title)
        )
        return ranked[:limit]


class ImportService:
    """Bulk loading of already parsed rows into an account ledger."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def replace_transactions(self, account_id: str, rows: list[TransactionIn]) -> int:
        AccountService(self.session).get(account_id)
        checker = TransactionService(self.session)
        for index, row in enumerate(rows):
            checker._check_category_refs(
                account_id,
                row.category_id,
                row.sub_category_id,
                prefix=f"rows.{index}.",
            )

        with ledger_lock(account_id):
            self.session.execute(
                delete(Transaction)
                .where(Transaction.account_id == account_id)
                .execution_options(synchronize_session="fetch")
            )
            # stable sort keeps the file's order within a day
            ordered_rows = sorted(rows, key=lambda row: row.date)
            prev_date: Optional[date] = None
            order = 0
            for row in ordered_rows:
                order = order + 1 if row.date == prev_date else 0
                prev_date = row.date
                self.session.add(
                    Transaction(
                        account_id=account_id,
                        order=order,
                        balance_cents=0,
                        **row.model_dump(),
                    )
                )
            self.session.flush()
            recompute_ledger(self.session, account_id)
            self.session.commit()
        logger.info(f"ledger_import: account={account_id} rows={len(rows)}")
        return len(rows)


class WidgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_account(self, account_id: str) -> list[Widget]:
        AccountService(self.session).get(account_id)
        stmt = (
            select(Widget)
            .where(Widget.account_id == account_id)
            .order_by(Widget.y, Widget.x, Widget.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, widget_id: str) -> Widget:
        widget = self.session.get(Widget, widget_id)
        if not widget:
            raise NotFound("Widget not found")
        return widget

    def create(self, account_id: str, data: WidgetIn) -> Widget:
        AccountService(self.session).get(account_id)
        widget = Widget(
            account_id=account_id,
            name=data.name.strip(),
            x=data.x,
            y=data.y,
            width=data.width,
            height=data.height,
            config=dump_widget_config(data.config),
        )
        self.session.add(widget)
        self.session.commit()
        self.session.refresh(widget)
        return widget

    def update(self, widget_id: str, data: WidgetUpdate) -> Widget:
        widget = self.get(widget_id)
        fields = data.model_dump(exclude_unset=True, exclude={"config"})
        for name, value in fields.items():
            if value is not None:
                setattr(widget, name, value)
        if data.config is not None:
            widget.config = dump_widget_config(data.config)
        self.session.commit()
        self.session.refresh(widget)
        return widget

    def delete(self, widget_id: str) -> None:
        widget = self.get(widget_id)
        self.session.delete(widget)
        self.session.commit()
        query_tracker.forget(widget_id)

    def config_of(self, widget: Widget):
        return parse_widget_config(widget.config)

    def run(self, widget_id: str, today: Optional[date] = None) -> ShapedResult:
        widget = self.get(widget_id)
        config = self.config_of(widget)
        return query_tracker.run(
            widget.id,
            lambda: run_widget_query(self.session, widget.account_id, config, today),
        )

    def preview(
        self, account_id: str, config, today: Optional[date] = None
    ) -> ShapedResult:
        AccountService(self.session).get(account_id)
        return run_widget_query(self.session, account_id, config, today)
