"""Field type system.

The closed set of data types a field can declare, the canonical Python form of
each, and the conversion/comparison rules shared by the normalizer, the index
writer and the query planner.

  Data type                         -> Canonical value   -> Index column
  -------------------------------------------------------------------------
  Text, Note, Tags, Json, File, Enum -> str               -> string
  Lookup                            -> uuid.UUID         -> string
  Number                            -> int (64-bit)      -> integer
  Decimal                           -> decimal.Decimal   -> number (+ exact key)
  Boolean                           -> bool              -> bool
  Date, DateTime                    -> datetime (UTC)    -> date
"""

import json
import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeAlias

from tabula.services.exceptions import TypeMismatchError, ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from tabula.schemas.table import FieldSchema


CanonicalValue: TypeAlias = str | int | Decimal | bool | datetime | uuid.UUID

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class DataType(str, Enum):
    """Value types a field can declare."""

    TEXT = "Text"
    NUMBER = "Number"
    DECIMAL = "Decimal"
    BOOLEAN = "Boolean"
    DATE = "Date"
    DATETIME = "DateTime"
    ENUM = "Enum"
    LOOKUP = "Lookup"
    FILE = "File"
    NOTE = "Note"
    TAGS = "Tags"
    JSON = "Json"


class FilterOperator(str, Enum):
    """Comparison operators accepted by structured filters."""

    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"


class IndexColumn(Enum):
    """Typed value column of the secondary index."""

    STRING = "string_value"
    INTEGER = "integer_value"
    NUMBER = "number_value"
    DATE = "date_value"
    BOOL = "bool_value"


STRING_TYPES = frozenset(
    {DataType.TEXT, DataType.NOTE, DataType.TAGS, DataType.JSON, DataType.FILE, DataType.ENUM}
)
NUMERIC_TYPES = frozenset({DataType.NUMBER, DataType.DECIMAL})
TEMPORAL_TYPES = frozenset({DataType.DATE, DataType.DATETIME})
LABEL_TYPES = frozenset({DataType.TEXT, DataType.NOTE})

_ORDERED_OPERATORS = frozenset(
    {
        FilterOperator.EQUALS,
        FilterOperator.GREATER_THAN,
        FilterOperator.GREATER_THAN_OR_EQUAL,
        FilterOperator.LESS_THAN,
        FilterOperator.LESS_THAN_OR_EQUAL,
    }
)
_TEXT_OPERATORS = frozenset({FilterOperator.EQUALS, FilterOperator.CONTAINS})
_EQUALITY_OPERATORS = frozenset({FilterOperator.EQUALS})


def index_column(data_type: DataType) -> IndexColumn:
    """Index column holding values of the given type."""
    match data_type:
        case DataType.NUMBER:
            return IndexColumn.INTEGER
        case DataType.DECIMAL:
            return IndexColumn.NUMBER
        case DataType.DATE | DataType.DATETIME:
            return IndexColumn.DATE
        case DataType.BOOLEAN:
            return IndexColumn.BOOL
        case (
            DataType.TEXT
            | DataType.NOTE
            | DataType.TAGS
            | DataType.JSON
            | DataType.FILE
            | DataType.ENUM
            | DataType.LOOKUP
        ):
            return IndexColumn.STRING
    raise RuntimeError(f"Unhandled data type {data_type!r}")


def index_data_type(field: "FieldSchema") -> DataType:
    """Type a field's values have in the index. Computed values are indexed as text."""
    return DataType.TEXT if field.is_computed else field.data_type


def allowed_operators(data_type: DataType) -> frozenset[FilterOperator]:
    """Filter operators supported for a data type."""
    match index_column(data_type):
        case IndexColumn.INTEGER | IndexColumn.NUMBER | IndexColumn.DATE:
            return _ORDERED_OPERATORS
        case IndexColumn.BOOL:
            return _EQUALITY_OPERATORS
        case IndexColumn.STRING:
            return _TEXT_OPERATORS
    raise RuntimeError(f"Unhandled data type {data_type!r}")  # pragma: no cover


# --- Conversion ---


def normalize(field: "FieldSchema", raw: Any) -> CanonicalValue:
    """Convert a native or primitive value into the field's canonical value.

    Raises:
        TypeMismatchError: if the value cannot represent the field's type.
    """
    if raw is None:
        raise TypeMismatchError(field.name, "does not accept null")

    match field.data_type:
        case DataType.TEXT | DataType.NOTE | DataType.FILE | DataType.ENUM:
            value = _to_text(field, raw)
        case DataType.TAGS:
            value = _to_tags(field, raw)
        case DataType.JSON:
            value = _to_json_text(field, raw)
        case DataType.LOOKUP:
            return _to_uuid(field, raw)
        case DataType.NUMBER:
            return _to_integer(field, raw)
        case DataType.DECIMAL:
            return _to_decimal(field, raw)
        case DataType.BOOLEAN:
            return _to_boolean(field, raw)
        case DataType.DATE | DataType.DATETIME:
            return _to_instant(field, raw)
        case _:  # pragma: no cover
            raise RuntimeError(f"Unhandled data type {field.data_type!r}")

    # enum members are stored with their declared spelling
    if field.enum_values:
        for allowed in field.enum_values:
            if allowed.casefold() == value.casefold():
                return allowed
    return value


def _to_text(field: "FieldSchema", raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    raise TypeMismatchError(field.name, "expects text content")


def _to_tags(field: "FieldSchema", raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (list, tuple)) and all(isinstance(tag, str) for tag in raw):
        return ", ".join(tag.strip() for tag in raw if tag.strip())
    raise TypeMismatchError(field.name, "expects text or a list of tags")


def _to_json_text(field: "FieldSchema", raw: Any) -> str:
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, ensure_ascii=False, separators=(",", ":"))
    if isinstance(raw, str):
        try:
            json.loads(raw)
        except json.JSONDecodeError as e:
            raise TypeMismatchError(field.name, f"expects a JSON document ({e.msg})") from e
        return raw
    raise TypeMismatchError(field.name, "expects a JSON document")


def _to_uuid(field: "FieldSchema", raw: Any) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    if isinstance(raw, str):
        try:
            return uuid.UUID(raw.strip())
        except ValueError as e:
            raise TypeMismatchError(field.name, "expects a UUID lookup value") from e
    raise TypeMismatchError(field.name, "expects a UUID lookup value")


def _to_integer(field: "FieldSchema", raw: Any) -> int:
    if isinstance(raw, bool):
        raise TypeMismatchError(field.name, "expects an integer number")

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, (float, Decimal)):
        if not _is_integral(raw):
            raise TypeMismatchError(field.name, "expects an integer number")
        value = int(raw)
    elif isinstance(raw, str):
        try:
            value = int(raw.strip())
        except ValueError as e:
            raise TypeMismatchError(field.name, "expects an integer number") from e
    else:
        raise TypeMismatchError(field.name, "expects an integer number")

    if not INT64_MIN <= value <= INT64_MAX:
        raise TypeMismatchError(field.name, "is out of the 64-bit integer range")
    return value


def _is_integral(raw: float | Decimal) -> bool:
    if isinstance(raw, float):
        return raw.is_integer()
    return raw.is_finite() and raw == raw.to_integral_value()


def _to_decimal(field: "FieldSchema", raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise TypeMismatchError(field.name, "expects a decimal number")

    try:
        if isinstance(raw, Decimal):
            value = raw
        elif isinstance(raw, int):
            value = Decimal(raw)
        elif isinstance(raw, float):
            value = Decimal(repr(raw))
        elif isinstance(raw, str):
            value = Decimal(raw.strip())
        else:
            raise TypeMismatchError(field.name, "expects a decimal number")
    except InvalidOperation as e:
        raise TypeMismatchError(field.name, "expects a decimal number") from e

    if not value.is_finite():
        raise TypeMismatchError(field.name, "expects a finite decimal number")
    return value


def _to_boolean(field: "FieldSchema", raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise TypeMismatchError(field.name, "expects a boolean value")


def _to_instant(field: "FieldSchema", raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        value = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str):
        try:
            value = datetime.fromisoformat(raw.strip())
        except ValueError as e:
            raise TypeMismatchError(
                field.name, "expects an ISO-8601 date/time string"
            ) from e
    else:
        raise TypeMismatchError(field.name, "expects an ISO-8601 date/time string")

    # naive values are taken to be UTC already
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Constraints ---


def validate(field: "FieldSchema", value: CanonicalValue) -> None:
    """Check a canonical value against the field's declared constraints.

    Raises:
        ValidationError: on a length, pattern, enum or range violation.
    """
    if isinstance(value, str):
        _validate_text(field, value)

    if field.data_type in NUMERIC_TYPES:
        _validate_range(field, value)


def _validate_text(field: "FieldSchema", value: str) -> None:
    if field.min_length is not None and len(value) < field.min_length:
        raise ValidationError(field.name, f"must be at least {field.min_length} characters")

    if field.max_length is not None and len(value) > field.max_length:
        raise ValidationError(field.name, f"must be at most {field.max_length} characters")

    if field.validation_pattern and not re.search(field.validation_pattern, value):
        raise ValidationError(field.name, "does not match the expected pattern")

    if field.enum_values:
        if not any(value.casefold() == allowed.casefold() for allowed in field.enum_values):
            allowed = ", ".join(field.enum_values)
            raise ValidationError(field.name, f"must be one of: {allowed}")


def _validate_range(field: "FieldSchema", value: CanonicalValue) -> None:
    numeric = Decimal(value)  # widen Number and Decimal to one precision
    if field.min_value is not None and numeric < field.min_value:
        raise ValidationError(field.name, f"must be greater than or equal to {field.min_value}")
    if field.max_value is not None and numeric > field.max_value:
        raise ValidationError(field.name, f"must be less than or equal to {field.max_value}")


# --- Storage and index projections ---


def to_storage(value: CanonicalValue) -> Any:
    """JSON-safe form of a canonical value, as written into the record document."""
    match value:
        case bool() | int() | str():
            return value
        case Decimal():
            return str(value)
        case datetime():
            return value.astimezone(timezone.utc).isoformat()
        case uuid.UUID():
            return str(value)
    raise RuntimeError(f"Not a canonical value: {value!r}")


def to_index_value(data_type: DataType, value: CanonicalValue) -> tuple[IndexColumn, Any]:
    """Column and bound value for the secondary index row of a canonical value."""
    column = index_column(data_type)
    match column:
        case IndexColumn.INTEGER:
            return column, int(value)
        case IndexColumn.NUMBER:
            return column, float(value)
        case IndexColumn.DATE:
            # sqlite compares stored instants textually, so keep them naive UTC
            return column, value.astimezone(timezone.utc).replace(tzinfo=None)
        case IndexColumn.BOOL:
            return column, bool(value)
        case IndexColumn.STRING:
            return column, str(value)
    raise RuntimeError(f"Unhandled index column {column!r}")  # pragma: no cover


def decimal_key(value: Decimal) -> str:
    """Exact text of a decimal used for equality: plain notation, no trailing zeros.

    ``2.50``, ``2.5`` and ``25E-1`` share a key; ``0.1`` and ``0.10000000000000001``
    do not, although their floats are equal.
    """
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_value(value: Any) -> str:
    """Human-readable text for a canonical value (labels, search content)."""
    match value:
        case None:
            return ""
        case bool():
            return "true" if value else "false"
        case datetime():
            return value.isoformat()
        case _:
            return str(value)
