from datetime import date

import pytest

from errors import ValidationFailed
from widget_config import (
    BarChartConfig,
    CardConfig,
    DateFilter,
    DatePreset,
    LineType,
    XAxis,
    dump_widget_config,
    parse_widget_config,
)


def test_bar_chart_parses_camel_case_fields():
    config = parse_widget_config(
        {
            "type": "Bar Chart",
            "xAxis": "Category",
            "aggregationOption": "Average",
            "groupBy": {"field": "Month", "isStacked": True},
            "convertToAbsolute": True,
            "filters": [
                {
                    "field": "Title",
                    "operator": "Includes",
                    "value": "rent",
                    "reverseFilter": True,
                }
            ],
        }
    )

    assert isinstance(config, BarChartConfig)
    assert config.x_axis == XAxis.category
    assert config.group_by.is_stacked is True
    assert config.convert_to_absolute is True
    assert config.filters[0].reverse_filter is True
    assert config.limit == 0


def test_line_chart_group_by_defaults_to_plain_line():
    config = parse_widget_config(
        {
            "type": "Line Chart",
            "xAxis": "Date",
            "aggregationOption": "Sum",
            "groupBy": {"field": "Year"},
        }
    )

    assert config.group_by.line_type == LineType.line


def test_dump_uses_wire_names():
    config = parse_widget_config({"type": "Card", "displayValue": "Balance"})

    dumped = dump_widget_config(config)

    assert dumped["displayValue"] == "Balance"
    assert dumped["sortByColumns"] == []
    assert isinstance(parse_widget_config(dumped), CardConfig)


def test_date_filter_accepts_preset_offset_and_date():
    def value_of(raw):
        return DateFilter.model_validate(
            {"field": "Date", "operator": "Before", "value": raw}
        ).value

    assert value_of("First Day of This Quarter") == DatePreset.first_day_of_quarter
    assert value_of("30") == 30
    assert value_of(7) == 7
    assert value_of("2025-02-01") == date(2025, 2, 1)


def test_missing_required_field_is_reported_by_name():
    with pytest.raises(ValidationFailed) as excinfo:
        parse_widget_config({"type": "Bar Chart", "aggregationOption": "Sum"})

    keys = list(excinfo.value.errors)
    assert keys
    assert all(key.startswith("config") for key in keys)
    assert any("xAxis" in key for key in keys)


def test_unknown_widget_type_is_rejected():
    with pytest.raises(ValidationFailed):
        parse_widget_config({"type": "Gauge"})


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "Table", "tableColumns": []},
        {
            "type": "Table",
            "tableColumns": [{"column": "Title"}, {"column": "Title"}],
        },
        {
            "type": "Table",
            "tableColumns": [{"column": "Sum"}],
            "groupByColumns": [{"column": "Sum"}],
        },
        {
            "type": "Pie Chart",
            "aggregationOption": "Sum",
            "groupByField": "Category",
            "limit": -1,
        },
        {
            "type": "Card",
            "displayValue": "Sum",
            "filters": [{"field": "Date", "operator": "Before", "value": " "}],
        },
        {
            "type": "Card",
            "displayValue": "Sum",
            "filters": [{"field": "Title", "operator": "Before", "value": "x"}],
        },
    ],
)
def test_invalid_configs_raise_validation_failed(payload):
    with pytest.raises(ValidationFailed):
        parse_widget_config(payload)


def test_table_duplicate_columns_message():
    with pytest.raises(ValidationFailed) as excinfo:
        parse_widget_config(
            {
                "type": "Table",
                "tableColumns": [{"column": "Sum"}, {"column": "Sum"}],
            }
        )

    assert any("Duplicate" in msg for msg in excinfo.value.errors.values())
