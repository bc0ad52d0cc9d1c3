"""Compile widget configuration pieces into SQLAlchemy expressions.

Each logical column resolves through ``COLUMNS`` to one select expression and
one group key. Select lists, GROUP BY, ORDER BY and filters all read from the
same entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import Select, String, and_, false, func, not_, or_, select
from sqlalchemy.sql.elements import ColumnElement

from errors import AggregationError
from models import Category, SubCategory, Transaction
from periods import resolve_date_value
from widget_config import (
    AggregationColumn,
    AggregationOption,
    AmountFilter,
    CategoryFilter,
    CategoryOperator,
    DateFilter,
    DateOperator,
    GroupByField,
    NumberOperator,
    SortOrder,
    StringOperator,
    TableColumn,
    TextFilter,
    XAxis,
)

NOT_AVAILABLE = "N/A"

DAY_SQL = func.strftime("%Y-%m-%d", Transaction.date)
MONTH_SQL = func.strftime("%Y-%m", Transaction.date)
YEAR_SQL = func.strftime("%Y", Transaction.date)


@dataclass(frozen=True)
class ColumnSpec:
    select: ColumnElement
    group_key: ColumnElement
    money: bool = False


COLUMNS: dict[TableColumn, ColumnSpec] = {
    TableColumn.title: ColumnSpec(Transaction.title, Transaction.title),
    TableColumn.description: ColumnSpec(
        Transaction.description, Transaction.description
    ),
    TableColumn.payee: ColumnSpec(Transaction.payee, Transaction.payee),
    TableColumn.date: ColumnSpec(DAY_SQL, Transaction.date),
    TableColumn.day: ColumnSpec(DAY_SQL, Transaction.date),
    TableColumn.month: ColumnSpec(MONTH_SQL, MONTH_SQL),
    TableColumn.year: ColumnSpec(YEAR_SQL, YEAR_SQL),
    TableColumn.amount: ColumnSpec(
        Transaction.amount_cents, Transaction.amount_cents, money=True
    ),
    TableColumn.balance: ColumnSpec(
        Transaction.balance_cents, Transaction.balance_cents, money=True
    ),
    # Grouped by the displayed name: sub-category names repeat across parents.
    TableColumn.category: ColumnSpec(Category.name, Category.name),
    TableColumn.subcategory: ColumnSpec(SubCategory.name, SubCategory.name),
}


def column_spec(column: Union[TableColumn, XAxis, GroupByField, str]) -> ColumnSpec:
    try:
        return COLUMNS[TableColumn(getattr(column, "value", column))]
    except (KeyError, ValueError) as exc:
        raise AggregationError(f"Unsupported column: {column}") from exc


def aggregate_expression(
    option: Union[AggregationOption, AggregationColumn, str], absolute: bool = False
) -> ColumnElement:
    amount = func.abs(Transaction.amount_cents) if absolute else Transaction.amount_cents
    name = getattr(option, "value", option)
    if name == AggregationOption.count.value:
        return func.count()
    if name == AggregationOption.sum.value:
        return func.sum(amount)
    if name == AggregationOption.average.value:
        return func.avg(amount)
    if name == AggregationOption.max.value:
        return func.max(amount)
    if name == AggregationOption.min.value:
        return func.min(amount)
    raise AggregationError(f"Unsupported aggregation: {option}")


def is_aggregate(column: Union[TableColumn, AggregationColumn, str]) -> bool:
    name = getattr(column, "value", column)
    return name in {item.value for item in AggregationColumn}


def select_expression(
    column: Union[TableColumn, AggregationColumn, XAxis, str], absolute: bool = False
) -> ColumnElement:
    if is_aggregate(column):
        return aggregate_expression(column, absolute)
    return column_spec(column).select


def cents(value: Union[Decimal, float, int]) -> int:
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), ROUND_HALF_UP))


_TEXT_COLUMNS = {
    "Title": Transaction.title,
    "Description": Transaction.description,
    "Payee": Transaction.payee,
}


def _text_predicate(flt: TextFilter) -> ColumnElement:
    column = _TEXT_COLUMNS.get(flt.field)
    if column is None:
        raise AggregationError(f"Unsupported text filter field: {flt.field}")
    value = func.coalesce(column, "")
    if flt.operator == StringOperator.includes:
        return func.lower(value, type_=String).contains(
            flt.value.lower(), autoescape=True
        )
    if flt.operator == StringOperator.equals:
        return value == flt.value
    raise AggregationError(
        f"Operator {flt.operator} is not supported for {flt.field}"
    )


def _category_predicate(flt: CategoryFilter) -> ColumnElement:
    if flt.operator != CategoryOperator.one_of:
        raise AggregationError(f"Operator {flt.operator} is not supported for Category")
    if not isinstance(flt.value, (list, tuple)):
        raise AggregationError("Invalid category filter value")
    ids = list(flt.value)
    if not ids:
        return false()
    return or_(
        func.coalesce(Transaction.category_id, "").in_(ids),
        func.coalesce(Transaction.sub_category_id, "").in_(ids),
    )


def _date_predicate(flt: DateFilter, today: Optional[date]) -> ColumnElement:
    try:
        target = resolve_date_value(flt.value, today=today)
    except ValueError as exc:
        raise AggregationError(f"Invalid date filter value: {flt.value}") from exc
    if flt.operator == DateOperator.before:
        return Transaction.date <= target
    if flt.operator == DateOperator.equals:
        return Transaction.date == target
    if flt.operator == DateOperator.after:
        return Transaction.date >= target
    raise AggregationError(f"Operator {flt.operator} is not supported for Date")


def _amount_predicate(flt: AmountFilter) -> ColumnElement:
    try:
        target = cents(flt.value)
    except (ArithmeticError, ValueError) as exc:
        raise AggregationError(f"Invalid amount filter value: {flt.value}") from exc
    if flt.operator == NumberOperator.less_than:
        return Transaction.amount_cents < target
    if flt.operator == NumberOperator.equals:
        return Transaction.amount_cents == target
    if flt.operator == NumberOperator.greater_than:
        return Transaction.amount_cents > target
    raise AggregationError(f"Operator {flt.operator} is not supported for Amount")


def compile_filter(flt, today: Optional[date] = None) -> ColumnElement:
    if isinstance(flt, TextFilter):
        predicate = _text_predicate(flt)
    elif isinstance(flt, CategoryFilter):
        predicate = _category_predicate(flt)
    elif isinstance(flt, DateFilter):
        predicate = _date_predicate(flt, today)
    elif isinstance(flt, AmountFilter):
        predicate = _amount_predicate(flt)
    else:
        raise AggregationError(f"Unsupported filter: {flt!r}")
    if flt.reverse_filter:
        predicate = not_(predicate)
    return predicate


def compile_filters(
    filters: Iterable, today: Optional[date] = None
) -> list[ColumnElement]:
    return [compile_filter(flt, today) for flt in filters]


def ordered(expr: ColumnElement, order: SortOrder) -> ColumnElement:
    if order == SortOrder.descending:
        return expr.desc().nulls_last()
    return expr.asc().nulls_last()


def base_select(
    account_id: str,
    columns: Sequence[ColumnElement],
    filters: Iterable = (),
    *,
    order_by: Sequence[ColumnElement] = (),
    today: Optional[date] = None,
) -> Select:
    conditions = [Transaction.account_id == account_id]
    conditions.extend(compile_filters(filters, today))
    conditions.append(Transaction.is_temporary.is_(False))
    stmt = (
        select(*columns)
        .select_from(Transaction)
        .outerjoin(Category, Category.id == Transaction.category_id)
        .outerjoin(SubCategory, SubCategory.id == Transaction.sub_category_id)
        .where(and_(*conditions))
    )
    if order_by:
        stmt = stmt.order_by(*order_by)
    return stmt
