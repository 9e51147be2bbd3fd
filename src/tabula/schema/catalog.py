"""Rules applied to table definitions before they enter the catalog.

Pure functions over ``TableSchema``; persistence lives in the catalog service.
"""

import json
import re
import uuid

from tabula.schema import types
from tabula.schema.types import DataType
from tabula.schemas.table import TableSchema, ViewSchema
from tabula.services.exceptions import SchemaError, ValidationError

DEFAULT_VIEW_NAME = "all"


def ensure_default_views(table: TableSchema) -> int:
    """Make sure the table has a default view.

    Adds an ``all`` view with an empty filter when the table declares no views,
    fills missing display names and picks the default view.

    Returns:
        Number of views added (0 or 1), so callers can tell whether anything changed.
    """
    added = 0

    if not table.views:
        table.views.append(
            ViewSchema(
                name=DEFAULT_VIEW_NAME,
                display_name=table.title,
                description="Default view generated automatically",
                query_definition="{}",
                visualization="table",
                is_default=True,
            )
        )
        added += 1

    for view in table.views:
        if not view.display_name:
            view.display_name = view.name

    if not any(view.is_default for view in table.views):
        preferred = table.get_view(table.default_view) if table.default_view else None
        (preferred or table.views[0]).is_default = True

    if not table.default_view:
        table.default_view = next(view.name for view in table.views if view.is_default)

    return added


def normalize_table_definition(table: TableSchema) -> None:
    """Assign ids and owner ids, and fill defaulted labels."""
    if table.id is None:
        table.id = uuid.uuid4()
    if not table.display_name:
        table.display_name = table.name

    for field in table.fields:
        if field.id is None:
            field.id = uuid.uuid4()
        field.table_id = table.id
        if not field.label:
            field.label = field.name

    for view in table.views:
        if view.id is None:
            view.id = uuid.uuid4()
        view.table_id = table.id


def validate_table_definition(table: TableSchema) -> None:
    """Reject definitions the engine cannot serve.

    Raises:
        SchemaError: on a blank name, duplicate field or view names, or an invalid
            field or view declaration.
    """
    if not table.name.strip():
        raise SchemaError("Table name is required")

    _ensure_unique_names([f.name for f in table.fields], "Field", table.name)
    _ensure_unique_names([v.name for v in table.views], "View", table.name)

    for field in table.fields:
        _validate_field_definition(table, field)

    for view in table.views:
        validate_view_definition(table, view)

    if table.default_view and table.get_view(table.default_view) is None:
        raise SchemaError(
            f"Default view '{table.default_view}' is not defined for table {table.name}"
        )


def validate_view_definition(table: TableSchema, view: ViewSchema) -> None:
    """A view's filter map must be a JSON object keyed by declared fields."""
    try:
        filters = view.equality_filters()
    except (json.JSONDecodeError, ValueError) as e:
        raise SchemaError(f"Invalid view definition for view {view.name}: {e}") from e

    for field_name in filters:
        ensure_field_exists(table, field_name)


def ensure_field_exists(table: TableSchema, field_name: str):
    """Return the named field or raise SchemaError."""
    field = table.get_field(field_name)
    if field is None:
        raise SchemaError(f"Field '{field_name}' is not defined for table {table.name}")
    return field


def _ensure_unique_names(names: list[str], kind: str, table_name: str) -> None:
    seen: set[str] = set()
    for name in names:
        folded = name.casefold()
        if folded in seen:
            raise SchemaError(f"{kind} name '{name}' is duplicated in table {table_name}")
        seen.add(folded)


def _validate_field_definition(table: TableSchema, field) -> None:
    if field.data_type == DataType.LOOKUP and not field.lookup_target:
        raise SchemaError(f"Lookup field '{field.name}' must declare a lookup target")

    if field.is_computed and not field.computed_expression:
        raise SchemaError(f"Computed field '{field.name}' must declare an expression")

    if (
        field.min_length is not None
        and field.max_length is not None
        and field.min_length > field.max_length
    ):
        raise SchemaError(f"Field '{field.name}' has min length greater than max length")

    if (
        field.min_value is not None
        and field.max_value is not None
        and field.min_value > field.max_value
    ):
        raise SchemaError(f"Field '{field.name}' has min value greater than max value")

    if field.validation_pattern:
        try:
            re.compile(field.validation_pattern)
        except re.error as e:
            raise SchemaError(f"Field '{field.name}' has an invalid pattern: {e}") from e

    if field.default_value is not None and not field.is_computed:
        try:
            types.validate(field, types.normalize(field, field.default_value))
        except ValidationError as e:
            raise SchemaError(f"Default value of field '{field.name}' is invalid: {e}") from e
