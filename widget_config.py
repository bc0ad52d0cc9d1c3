"""Widget configuration model.

A widget's ``config`` column stores one of the variants below as JSON, keyed
by ``type``. Field names are camelCase on the wire (``xAxis``,
``reverseFilter``...) and snake_case in Python.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic import field_validator
from pydantic.alias_generators import to_camel

from errors import ValidationFailed


class WidgetType(str, Enum):
    bar_chart = "Bar Chart"
    line_chart = "Line Chart"
    pie_chart = "Pie Chart"
    table = "Table"
    card = "Card"


class XAxis(str, Enum):
    date = "Date"
    month = "Month"
    year = "Year"
    category = "Category"
    subcategory = "Subcategory"
    payee = "Payee"


class GroupByField(str, Enum):
    month = "Month"
    year = "Year"
    category = "Category"
    subcategory = "Subcategory"


class AggregationOption(str, Enum):
    count = "Count"
    sum = "Sum"
    average = "Average"
    max = "Max"
    min = "Min"


class SortOrder(str, Enum):
    ascending = "Ascending"
    descending = "Descending"


class LineType(str, Enum):
    line = "Line"
    area = "Area"


class FilterField(str, Enum):
    title = "Title"
    description = "Description"
    date = "Date"
    payee = "Payee"
    amount = "Amount"
    category = "Category"


class StringOperator(str, Enum):
    includes = "Includes"
    equals = "Equals"


class NumberOperator(str, Enum):
    less_than = "Less Than"
    equals = "Equals"
    greater_than = "Greater Than"


class DateOperator(str, Enum):
    before = "Before"
    equals = "Equals"
    after = "After"


class CategoryOperator(str, Enum):
    one_of = "One Of"


class DatePreset(str, Enum):
    today = "Today"
    first_day_of_week = "First Day of This Week"
    first_day_of_month = "First Day of This Month"
    first_day_of_quarter = "First Day of This Quarter"
    first_day_of_year = "First Day of This Year"


class TableColumn(str, Enum):
    title = "Title"
    description = "Description"
    payee = "Payee"
    date = "Date"
    day = "Day"
    month = "Month"
    year = "Year"
    amount = "Amount"
    balance = "Balance"
    category = "Category"
    subcategory = "Subcategory"


class AggregationColumn(str, Enum):
    sum = "Sum"
    average = "Average"
    min = "Min"
    max = "Max"
    count = "Count"


AnyColumn = Union[TableColumn, AggregationColumn]


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class TextFilter(_ConfigModel):
    field: Literal["Title", "Description", "Payee"]
    operator: StringOperator
    value: str = Field(..., min_length=1)
    reverse_filter: bool = False


class CategoryFilter(_ConfigModel):
    field: Literal["Category"]
    operator: CategoryOperator = CategoryOperator.one_of
    value: list[str]
    reverse_filter: bool = False


class DateFilter(_ConfigModel):
    field: Literal["Date"]
    operator: DateOperator
    value: Union[DatePreset, int, dt.date]
    reverse_filter: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            raise ValueError("Invalid date filter value")
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
        return value


class AmountFilter(_ConfigModel):
    field: Literal["Amount"]
    operator: NumberOperator
    value: Decimal
    reverse_filter: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            raise ValueError("Invalid filter value")
        return value


Filter = Annotated[
    Union[TextFilter, CategoryFilter, DateFilter, AmountFilter],
    Field(discriminator="field"),
]


class BarGroupBy(_ConfigModel):
    field: GroupByField
    is_stacked: bool = False


class LineGroupBy(_ConfigModel):
    field: GroupByField
    is_stacked: bool = False
    line_type: LineType = LineType.line


class SortColumn(_ConfigModel):
    column: AnyColumn
    order: SortOrder = SortOrder.ascending


class _BaseWidgetConfig(_ConfigModel):
    filters: list[Filter] = Field(default_factory=list)
    convert_to_absolute: bool = False


class BarChartConfig(_BaseWidgetConfig):
    type: Literal["Bar Chart"]
    x_axis: XAxis
    aggregation_option: AggregationOption
    group_by: Optional[BarGroupBy] = None
    sort_by: SortOrder = SortOrder.ascending
    limit: int = Field(default=0, ge=0)


class LineChartConfig(_BaseWidgetConfig):
    type: Literal["Line Chart"]
    x_axis: XAxis
    aggregation_option: AggregationOption
    group_by: Optional[LineGroupBy] = None
    sort_by: SortOrder = SortOrder.ascending
    limit: int = Field(default=0, ge=0)


class PieChartConfig(_BaseWidgetConfig):
    type: Literal["Pie Chart"]
    aggregation_option: AggregationOption
    group_by_field: XAxis
    sort_by: SortOrder = SortOrder.ascending
    limit: int = Field(default=0, ge=0)


class TableColumnRef(_ConfigModel):
    column: AnyColumn


class GroupColumnRef(_ConfigModel):
    column: TableColumn


def _no_duplicates(refs: list, label: str) -> None:
    names = [ref.column for ref in refs]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate {label} detected")


class TableConfig(_BaseWidgetConfig):
    type: Literal["Table"]
    table_columns: list[TableColumnRef] = Field(..., min_length=1)
    group_by_columns: list[GroupColumnRef] = Field(default_factory=list)
    sort_by_columns: list[SortColumn] = Field(default_factory=list)
    limit: int = Field(default=0, ge=0)

    @field_validator("table_columns")
    @classmethod
    def _unique_table_columns(cls, value: list[TableColumnRef]):
        _no_duplicates(value, "table columns")
        return value

    @field_validator("group_by_columns")
    @classmethod
    def _unique_group_columns(cls, value: list[GroupColumnRef]):
        _no_duplicates(value, "group by columns")
        return value


class CardConfig(_BaseWidgetConfig):
    type: Literal["Card"]
    display_value: AnyColumn
    sort_by_columns: list[SortColumn] = Field(default_factory=list)
    icon: Optional[str] = None
    text: str = ""


WidgetConfig = Annotated[
    Union[BarChartConfig, LineChartConfig, PieChartConfig, TableConfig, CardConfig],
    Field(discriminator="type"),
]

_widget_config_adapter: TypeAdapter = TypeAdapter(WidgetConfig)


def parse_widget_config(data: Any) -> WidgetConfig:
    try:
        return _widget_config_adapter.validate_python(data)
    except ValidationError as exc:
        raise ValidationFailed.from_pydantic(exc, prefix="config") from exc


def dump_widget_config(config: WidgetConfig) -> dict[str, Any]:
    return config.model_dump(mode="json", by_alias=True)
