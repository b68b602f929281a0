import json
from datetime import date, datetime

from sitedata.db.models import Site
from sitedata.ingestion.schemas import DataRowInput, ValueKind, classify_value
from sitedata.ingestion.validator import (
    DATE_FIELD,
    NO_SCHEMA_MESSAGE,
    SCHEMA_FIELD,
    SCHEMA_INVALID_MESSAGE,
    SCHEMA_NOT_FOUND_MESSAGE,
    SchemaValidator,
    parse_schema_definition,
    validate_rows,
)
from tests.factories import TEMPERATURE_SCHEMA, make_schema

TODAY = date(2026, 3, 15)


def _columns(definition=None):
    return parse_schema_definition(json.dumps(definition or TEMPERATURE_SCHEMA))


def _row(day=date(2026, 3, 1), **sensor_data):
    return DataRowInput(date=day, sensor_data=sensor_data)


def test_missing_required_field_is_one_error():
    warnings, errors = validate_rows(_columns(), [_row(pressure=3)], TODAY)

    assert len(errors) == 1
    assert errors[0].field == "temperature"
    assert errors[0].row_index == 0
    assert errors[0].message == "Required field 'temperature' is missing"
    assert warnings == []


def test_value_below_minimum_is_a_warning():
    warnings, errors = validate_rows(_columns(), [_row(temperature=-5)], TODAY)

    assert errors == []
    assert len(warnings) == 1
    assert warnings[0].field == "temperature"
    assert warnings[0].message == "Value -5 is below minimum 0"


def test_value_in_range_is_clean():
    warnings, errors = validate_rows(_columns(), [_row(temperature=50)], TODAY)

    assert warnings == []
    assert errors == []


def test_value_above_maximum_is_a_warning():
    warnings, errors = validate_rows(_columns(), [_row(temperature=100.5)], TODAY)

    assert errors == []
    assert [w.message for w in warnings] == ["Value 100.5 is above maximum 100"]


def test_numeric_string_is_range_checked():
    warnings, _ = validate_rows(_columns(), [_row(temperature="150")], TODAY)

    assert [w.message for w in warnings] == ["Value 150 is above maximum 100"]


def test_unparsable_and_boolean_values_are_not_range_checked():
    rows = [_row(temperature="n/a"), _row(temperature=True), _row(temperature=None)]
    warnings, errors = validate_rows(_columns(), rows, TODAY)

    assert warnings == []
    assert errors == []


def test_string_columns_are_not_range_checked():
    columns = _columns({"operator": {"dataType": "string", "min": 10}})
    warnings, errors = validate_rows(columns, [_row(operator=3)], TODAY)

    assert warnings == []
    assert errors == []


def test_unknown_field_warns():
    warnings, errors = validate_rows(_columns(), [_row(temperature=20, humidity=40)], TODAY)

    assert errors == []
    assert len(warnings) == 1
    assert warnings[0].field == "humidity"
    assert warnings[0].message == "Unknown field 'humidity' not in schema"


def test_future_date_is_an_error():
    warnings, errors = validate_rows(_columns(), [_row(day=date(2026, 3, 16), temperature=20)], TODAY)

    assert len(errors) == 1
    assert errors[0].field == DATE_FIELD
    assert errors[0].message == "Date cannot be in the future"


def test_today_is_not_in_the_future():
    _, errors = validate_rows(_columns(), [_row(day=TODAY, temperature=20)], TODAY)

    assert errors == []


def test_time_of_day_is_ignored_for_future_check():
    row = _row(day=datetime(2026, 3, 15, 23, 59), temperature=20)
    _, errors = validate_rows(_columns(), [row], TODAY)

    assert errors == []


def test_empty_column_map_still_rejects_future_dates():
    warnings, errors = validate_rows({}, [_row(day=date(2027, 1, 1))], TODAY)

    assert warnings == []
    assert [e.field for e in errors] == [DATE_FIELD]


def test_issues_follow_row_order_then_checks():
    rows = [
        _row(day=date(2026, 4, 1), pressure=1),
        _row(temperature=-1, extra=1),
    ]
    warnings, errors = validate_rows(_columns(), rows, TODAY)

    assert [(e.row_index, e.field) for e in errors] == [(0, DATE_FIELD), (0, "temperature")]
    assert [(w.row_index, w.field) for w in warnings] == [(1, "temperature"), (1, "extra")]


def test_parse_schema_definition_rejects_non_column_maps():
    assert parse_schema_definition("not json") is None
    assert parse_schema_definition("[1, 2, 3]") is None
    assert parse_schema_definition('{"temperature": 5}') is None
    assert parse_schema_definition("{}") == {}


def test_parse_schema_definition_defaults():
    columns = parse_schema_definition('{"note": {}}')

    assert columns["note"].data_type == "string"
    assert not columns["note"].required
    assert not columns["note"].is_numeric


def test_parse_schema_definition_rejects_loosely_typed_columns():
    assert parse_schema_definition('{"temperature": {"required": "yes"}}') is None
    assert parse_schema_definition('{"temperature": {"dataType": "number", "min": "5"}}') is None
    assert parse_schema_definition('{"temperature": {"dataType": "number", "max": true}}') is None


def test_parse_schema_definition_accepts_integer_bounds():
    columns = parse_schema_definition('{"temperature": {"dataType": "number", "min": -40, "max": 60.5}}')

    assert columns["temperature"].min == -40.0
    assert columns["temperature"].max == 60.5


def test_classify_value_keeps_booleans_apart():
    assert classify_value(True) == ValueKind.BOOLEAN
    assert classify_value(1) == ValueKind.NUMBER
    assert classify_value(1.5) == ValueKind.NUMBER
    assert classify_value("1") == ValueKind.STRING
    assert classify_value(None) == ValueKind.NULL


async def test_site_without_schema_accepts_everything(session, site):
    rows = [_row(day=date(2099, 1, 1), anything=1)]
    warnings, errors = await SchemaValidator(session).validate(site, rows)

    assert errors == []
    assert len(warnings) == 1
    assert warnings[0].field == SCHEMA_FIELD
    assert warnings[0].row_index == -1
    assert warnings[0].message == NO_SCHEMA_MESSAGE


async def test_dangling_schema_pointer_accepts_everything(session, site):
    detached = Site(id=site.id, company_id=site.company_id, current_schema_version_id=424242)
    warnings, errors = await SchemaValidator(session).validate(detached, [_row(temperature=-5)])

    assert errors == []
    assert [w.message for w in warnings] == [SCHEMA_NOT_FOUND_MESSAGE]


async def test_unparseable_schema_accepts_everything(session, site):
    await make_schema(session, site, definition="{broken")
    warnings, errors = await SchemaValidator(session).validate(site, [_row(pressure=1)])

    assert errors == []
    assert [w.message for w in warnings] == [SCHEMA_INVALID_MESSAGE]


async def test_loosely_typed_schema_accepts_everything(session, site):
    await make_schema(session, site, definition='{"temperature": {"dataType": "number", "required": "yes"}}')
    warnings, errors = await SchemaValidator(session).validate(site, [_row(pressure=1)])

    assert errors == []
    assert [w.message for w in warnings] == [SCHEMA_INVALID_MESSAGE]


async def test_current_schema_is_applied(session, site):
    await make_schema(session, site)
    warnings, errors = await SchemaValidator(session).validate(
        site, [_row(pressure=1)], today=TODAY
    )

    assert [e.field for e in errors] == ["temperature"]
    assert warnings == []
