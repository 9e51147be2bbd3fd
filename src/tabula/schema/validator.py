"""Turns a raw payload into the canonical values of a table's fields.

The validator is storage-agnostic. Checks that need the database (lookup targets,
uniqueness) are injected as async callables. The data engine supplies them
from its repositories, bound to the write session.
"""

import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeAlias

from loguru import logger

from tabula.schema import types
from tabula.schema.types import CanonicalValue, DataType
from tabula.schemas.table import FieldSchema, TableSchema
from tabula.services.exceptions import (
    ReferentialIntegrityError,
    SchemaError,
    UniquenessViolation,
    ValidationError,
)

# (field, target id) -> does a live target row exist
LookupExistsFn: TypeAlias = Callable[[FieldSchema, uuid.UUID], Awaitable[bool]]
# (field, canonical value, record id to ignore) -> does another live row hold the value
UniqueConflictFn: TypeAlias = Callable[
    [FieldSchema, CanonicalValue, Optional[uuid.UUID]], Awaitable[bool]
]


def read_case_insensitive(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Fold payload keys so field names match regardless of case."""
    return {key.casefold(): value for key, value in values.items()}


def ensure_known_fields(table: TableSchema, raw_values: Mapping[str, Any]) -> None:
    """Unknown keys fail fast instead of drifting into stored documents."""
    for key in raw_values:
        if table.get_field(key) is None:
            raise SchemaError(f"Field '{key}' is not defined for table {table.name}")


def normalize_payload(
    table: TableSchema, raw_values: Mapping[str, Any]
) -> Dict[str, CanonicalValue]:
    """Normalize and constraint-check every stored field of the table.

    A missing (or null) value takes the field's default, fails if the field is
    required, and is otherwise left out of the result. Computed fields are never
    stored, so any value given for them is dropped.

    Raises:
        SchemaError: on a key that is not a declared field.
        ValidationError: on a missing required value or a constraint violation.
    """
    ensure_known_fields(table, raw_values)
    folded = read_case_insensitive(raw_values)

    canonical: Dict[str, CanonicalValue] = {}
    for field in table.fields:
        if field.is_computed:
            continue

        raw = folded.get(field.name.casefold())
        if raw is None:
            if field.default_value is not None:
                raw = field.default_value
            elif field.is_required:
                raise ValidationError(field.name, f"is required for table {table.name}")
            else:
                continue

        value = types.normalize(field, raw)
        types.validate(field, value)
        canonical[field.name] = value

    return canonical


async def validate_record_payload(
    table: TableSchema,
    raw_values: Mapping[str, Any],
    existing_record_id: Optional[uuid.UUID] = None,
    *,
    lookup_exists: Optional[LookupExistsFn] = None,
    unique_conflict: Optional[UniqueConflictFn] = None,
) -> Dict[str, CanonicalValue]:
    """Full payload validation for an insert or an update.

    Args:
        table: Definition the payload must conform to
        raw_values: Field name -> native or primitive value
        existing_record_id: Record being updated, excluded from uniqueness checks
        lookup_exists: Checks that a lookup value references a live target row
        unique_conflict: Checks whether another live row already holds a value

    Returns:
        Field name (declared spelling) -> canonical value

    Raises:
        SchemaError, ValidationError, ReferentialIntegrityError, UniquenessViolation
    """
    canonical = normalize_payload(table, raw_values)

    for field in table.fields:
        value = canonical.get(field.name)
        if value is None:
            continue

        if field.data_type == DataType.LOOKUP and lookup_exists is not None:
            if not await lookup_exists(field, value):
                logger.debug(f"Lookup target missing: field={field.name} target={value}")
                raise ReferentialIntegrityError(
                    field.name,
                    f"Lookup value '{value}' for field '{field.name}' does not exist "
                    f"in table {field.lookup_target}",
                    target_id=value,
                )

        if field.is_unique and unique_conflict is not None:
            if await unique_conflict(field, value, existing_record_id):
                logger.debug(f"Unique value already used: table={table.name} field={field.name}")
                raise UniquenessViolation(field.name, table.name)

    return canonical


def from_storage(table: TableSchema, data: Mapping[str, Any]) -> Dict[str, CanonicalValue]:
    """Rebuild canonical values from a stored document.

    Documents hold decimals, instants and ids as strings; anything that no longer
    matches a declared field (a field dropped from the definition) is skipped.
    """
    values: Dict[str, CanonicalValue] = {}
    for key, stored in data.items():
        field = table.get_field(key)
        if field is None or stored is None:
            continue
        values[field.name] = types.normalize(field, stored)
    return values


def to_document(values: Mapping[str, CanonicalValue]) -> Dict[str, Any]:
    """Storage form of canonical values."""
    return {name: types.to_storage(value) for name, value in values.items()}
