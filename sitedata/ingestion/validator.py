"""Schema-driven validation of uploaded rows.

The site's current schema version decides which columns are required, which
are known, and the numeric ranges to check. Missing or unusable schemas do not
block an upload: the rows are accepted with a single schema-level warning.
Only future dates and missing required columns are errors; everything else is
reported as a warning.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitedata.db.models import Site, SiteDataSchema
from sitedata.ingestion.schemas import (
    DataRowInput,
    SchemaColumn,
    SensorValue,
    ValidationIssue,
    ValueKind,
    classify_value,
)

logger = logging.getLogger(__name__)

SCHEMA_FIELD = "schema"
DATE_FIELD = "date"

NO_SCHEMA_MESSAGE = "No schema defined for this site. Data will be accepted without validation."
SCHEMA_NOT_FOUND_MESSAGE = "Schema version not found. Data will be accepted without validation."
SCHEMA_INVALID_MESSAGE = "Schema definition is invalid. Data will be accepted without validation."

_COLUMN_MAP = TypeAdapter(dict[str, SchemaColumn])


def parse_schema_definition(definition: str) -> Optional[dict[str, SchemaColumn]]:
    """Parse a stored schema definition into its column map, or None if it is not one."""
    try:
        return _COLUMN_MAP.validate_json(definition)
    except ValidationError:
        return None


def _schema_warning(message: str) -> ValidationIssue:
    return ValidationIssue(row_index=-1, date=None, field=SCHEMA_FIELD, message=message)


def _format_number(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


def _as_number(value: SensorValue) -> Optional[float]:
    """Numeric reading of a sensor value; strings count when they parse as a number."""
    kind = classify_value(value)
    if kind == ValueKind.NUMBER:
        return float(value)
    if kind == ValueKind.STRING:
        try:
            return float(value)
        except ValueError:
            return None
    return None


def validate_rows(
    columns: dict[str, SchemaColumn],
    rows: Sequence[DataRowInput],
    today: date,
) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
    """Check rows against a parsed column map. Returns ``(warnings, errors)``."""
    warnings: list[ValidationIssue] = []
    errors: list[ValidationIssue] = []

    for index, row in enumerate(rows):
        if row.day > today:
            errors.append(ValidationIssue(
                row_index=index,
                date=row.date,
                field=DATE_FIELD,
                message="Date cannot be in the future",
            ))

        for name, column in columns.items():
            if column.required and name not in row.sensor_data:
                errors.append(ValidationIssue(
                    row_index=index,
                    date=row.date,
                    field=name,
                    message=f"Required field '{name}' is missing",
                ))

        for name, value in row.sensor_data.items():
            column = columns.get(name)
            if column is None:
                warnings.append(ValidationIssue(
                    row_index=index,
                    date=row.date,
                    field=name,
                    message=f"Unknown field '{name}' not in schema",
                ))
                continue

            if not column.is_numeric:
                continue
            number = _as_number(value)
            if number is None:
                continue

            if column.min is not None and number < column.min:
                warnings.append(ValidationIssue(
                    row_index=index,
                    date=row.date,
                    field=name,
                    message=(
                        f"Value {_format_number(number)} is below minimum "
                        f"{_format_number(column.min)}"
                    ),
                ))
            if column.max is not None and number > column.max:
                warnings.append(ValidationIssue(
                    row_index=index,
                    date=row.date,
                    field=name,
                    message=(
                        f"Value {_format_number(number)} is above maximum "
                        f"{_format_number(column.max)}"
                    ),
                ))

    return warnings, errors


class SchemaValidator:
    """Resolves a site's current schema and validates rows against it."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate(
        self,
        site: Site,
        rows: Sequence[DataRowInput],
        today: Optional[date] = None,
    ) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        if today is None:
            today = datetime.now(timezone.utc).date()

        if site.current_schema_version_id is None:
            return [_schema_warning(NO_SCHEMA_MESSAGE)], []

        result = await self.session.execute(
            select(SiteDataSchema).where(SiteDataSchema.id == site.current_schema_version_id)
        )
        schema = result.scalar_one_or_none()
        if schema is None:
            logger.warning(
                f"Site {site.id} points at schema {site.current_schema_version_id}, which does not exist"
            )
            return [_schema_warning(SCHEMA_NOT_FOUND_MESSAGE)], []

        columns = parse_schema_definition(schema.schema_definition)
        if columns is None:
            logger.warning(f"Failed to parse schema definition {schema.id} for site {site.id}")
            return [_schema_warning(SCHEMA_INVALID_MESSAGE)], []

        return validate_rows(columns, rows, today)
