import enum
from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sitedata.common.base_model import ApiModel

# A sensor reading as sent on the wire. Exact JSON types are kept, so ``true``
# stays a bool and is never mistaken for the number 1.
SensorValue = Union[bool, int, float, str, None]

# Rows may carry a bare day or a full timestamp; only the calendar day is stored.
DateValue = Union[datetime, date]


class ValueKind(str, enum.Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"


def classify_value(value: SensorValue) -> ValueKind:
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int; test it first.
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    return ValueKind.STRING


def calendar_day(value: DateValue) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


# ============================================================
# UPLOAD REQUEST
# ============================================================
class DataRowInput(ApiModel):
    date: DateValue
    sensor_data: dict[str, SensorValue]

    @property
    def day(self) -> date:
        return calendar_day(self.date)


class DataUploadRequest(ApiModel):
    rows: list[DataRowInput] = Field(..., min_length=1)
    overwrite_existing: bool = False
    skip_validation: bool = False


# ============================================================
# UPLOAD RESULT
# ============================================================
class ValidationIssue(ApiModel):
    """A warning or error about one row, or about the schema when ``row_index`` is -1."""

    row_index: int
    date: Optional[DateValue] = None
    field: str
    message: str


class DataUploadResult(ApiModel):
    upload_id: Optional[int] = None
    success: bool = False
    rows_parsed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    warnings: list[ValidationIssue] = Field(default_factory=list)
    errors: list[ValidationIssue] = Field(default_factory=list)
    inference_triggered: bool = False
    inference_request_id: Optional[int] = None


# ============================================================
# SCHEMA DEFINITION
# ============================================================
class SchemaColumn(BaseModel):
    """One column of a site data schema: ``{"dataType": "number", "required": true, "min": 0}``."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    data_type: str = "string"
    required: bool = Field(False, strict=True)
    min: Optional[float] = Field(None, strict=True)
    max: Optional[float] = Field(None, strict=True)
    unit: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return self.data_type == "number"
