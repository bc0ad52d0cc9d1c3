from __future__ import annotations

import itertools
import logging
import threading
from datetime import date
from typing import Any, Callable, Optional, TypeVar, Union

from sqlalchemy import func, literal
from sqlalchemy.orm import Session

from errors import AggregationError, QuerySuperseded
from query_builder import (
    NOT_AVAILABLE,
    aggregate_expression,
    base_select,
    column_spec,
    is_aggregate,
    ordered,
    select_expression,
)
from widget_config import (
    AggregationColumn,
    AggregationOption,
    BarChartConfig,
    CardConfig,
    LineChartConfig,
    PieChartConfig,
    TableConfig,
)

logger = logging.getLogger(__name__)

EMPTY_CARD = "--"
SERIES_VALUE_KEY = "Amount"

ChartData = dict[str, list]
ShapedResult = Union[str, ChartData, list[dict[str, Any]]]
T = TypeVar("T")


def cents_to_units(cents: Union[int, float]) -> float:
    return cents / 100


def aggregate_value(option: Union[AggregationOption, AggregationColumn, str], raw):
    if raw is None:
        return None
    name = getattr(option, "value", option)
    if name == AggregationOption.count.value:
        return int(raw)
    return cents_to_units(raw)


def _limit(rows: list, limit: int) -> list:
    return rows[:limit] if limit else rows


def chart_data(
    session: Session,
    account_id: str,
    config: Union[BarChartConfig, LineChartConfig],
    today: Optional[date] = None,
) -> ChartData:
    x_spec = column_spec(config.x_axis)
    columns = [
        func.coalesce(x_spec.select, NOT_AVAILABLE).label("x"),
        aggregate_expression(
            config.aggregation_option, config.convert_to_absolute
        ).label("y"),
    ]
    group_keys = [x_spec.group_key]
    if config.group_by:
        g_spec = column_spec(config.group_by.field)
        columns.append(func.coalesce(g_spec.select, NOT_AVAILABLE).label("series"))
        group_keys.append(g_spec.group_key)
    else:
        columns.append(literal("").label("series"))

    stmt = base_select(
        account_id,
        columns,
        config.filters,
        order_by=[ordered(x_spec.select, config.sort_by)],
        today=today,
    ).group_by(*group_keys)
    rows = session.execute(stmt).all()

    if not config.group_by:
        values = [
            {
                "x": str(row.x),
                SERIES_VALUE_KEY: aggregate_value(config.aggregation_option, row.y)
                or 0,
            }
            for row in rows
        ]
        return {"values": _limit(values, config.limit), "keys": [SERIES_VALUE_KEY]}

    keys = sorted({str(row.series) for row in rows})
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        x = str(row.x)
        point = grouped.get(x)
        if point is None:
            point = {"x": x}
            point.update({key: 0 for key in keys})
            grouped[x] = point
        value = aggregate_value(config.aggregation_option, row.y)
        point[str(row.series)] = value or 0
    return {"values": _limit(list(grouped.values()), config.limit), "keys": keys}


def pie_data(
    session: Session,
    account_id: str,
    config: PieChartConfig,
    today: Optional[date] = None,
) -> list[dict[str, Any]]:
    spec = column_spec(config.group_by_field)
    stmt = base_select(
        account_id,
        [
            func.coalesce(spec.select, NOT_AVAILABLE).label("group"),
            aggregate_expression(
                config.aggregation_option, config.convert_to_absolute
            ).label("value"),
        ],
        config.filters,
        order_by=[ordered(spec.select, config.sort_by)],
        today=today,
    ).group_by(spec.group_key)
    if config.limit:
        stmt = stmt.limit(config.limit)
    return [
        {
            "group": str(row.group),
            "value": aggregate_value(config.aggregation_option, row.value) or 0,
        }
        for row in session.execute(stmt).all()
    ]


def _cell(column, raw):
    if raw is None:
        return None
    if is_aggregate(column):
        value = aggregate_value(column, raw)
        if column == AggregationColumn.count:
            return value
        return f"{value:.2f}"
    if column_spec(column).money:
        return cents_to_units(raw)
    return raw


def table_data(
    session: Session,
    account_id: str,
    config: TableConfig,
    today: Optional[date] = None,
) -> list[dict[str, Any]]:
    absolute = config.convert_to_absolute
    names = [ref.column for ref in config.table_columns]
    columns = [
        select_expression(name, absolute).label(f"c{i}") for i, name in enumerate(names)
    ]
    order_by = [
        ordered(select_expression(sort.column, absolute), sort.order)
        for sort in config.sort_by_columns
    ]
    stmt = base_select(
        account_id, columns, config.filters, order_by=order_by, today=today
    )
    if config.group_by_columns:
        stmt = stmt.group_by(
            *(column_spec(ref.column).group_key for ref in config.group_by_columns)
        )
    if config.limit:
        stmt = stmt.limit(config.limit)

    out: list[dict[str, Any]] = []
    for row in session.execute(stmt).all():
        out.append(
            {name.value: _cell(name, row[i]) for i, name in enumerate(names)}
        )
    return out


def card_value(
    session: Session,
    account_id: str,
    config: CardConfig,
    today: Optional[date] = None,
) -> str:
    absolute = config.convert_to_absolute
    display = config.display_value
    order_by = [
        ordered(select_expression(sort.column, absolute), sort.order)
        for sort in config.sort_by_columns
    ]
    stmt = base_select(
        account_id,
        [select_expression(display, absolute).label("value")],
        config.filters,
        order_by=order_by,
        today=today,
    ).limit(1)
    row = session.execute(stmt).first()
    if row is None or row.value is None:
        return EMPTY_CARD

    value = row.value
    if display == AggregationColumn.count:
        return str(aggregate_value(display, value))
    if is_aggregate(display):
        value = aggregate_value(display, value)
    elif column_spec(display).money:
        value = cents_to_units(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:.2f}"
    return str(value)


def run_widget_query(
    session: Session,
    account_id: str,
    config,
    today: Optional[date] = None,
) -> ShapedResult:
    if isinstance(config, (BarChartConfig, LineChartConfig)):
        return chart_data(session, account_id, config, today)
    if isinstance(config, PieChartConfig):
        return pie_data(session, account_id, config, today)
    if isinstance(config, TableConfig):
        return table_data(session, account_id, config, today)
    if isinstance(config, CardConfig):
        return card_value(session, account_id, config, today)
    raise AggregationError(f"Unsupported widget config: {type(config).__name__}")


class QueryTracker:
    """Last-write-wins bookkeeping for widget queries.

    A query that finishes after a newer query for the same widget started is
    discarded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._latest: dict[str, int] = {}

    def begin(self, key: str) -> int:
        with self._lock:
            token = next(self._tokens)
            self._latest[key] = token
            return token

    def is_current(self, key: str, token: int) -> bool:
        with self._lock:
            return self._latest.get(key) == token

    def forget(self, key: str) -> None:
        with self._lock:
            self._latest.pop(key, None)

    def run(self, key: str, fn: Callable[[], T]) -> T:
        token = self.begin(key)
        result = fn()
        if not self.is_current(key, token):
            logger.warning(f"widget_query_superseded: widget={key} token={token}")
            raise QuerySuperseded(f"A newer query for widget {key} is running")
        return result


query_tracker = QueryTracker()
