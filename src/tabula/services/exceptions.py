"""Typed failures raised by the table engine.

All of these describe invalid caller input and are never retried. Broken internal
invariants raise ``RuntimeError`` instead.
"""

from typing import Any


class TabulaError(Exception):
    """Base exception for all engine errors."""

    pass


class SchemaError(TabulaError):
    """Unknown table/field, duplicate field name or malformed view definition."""

    pass


class NotFoundError(TabulaError):
    """A table or record does not exist (or is tombstoned)."""

    pass


class ValidationError(TabulaError):
    """A value violates its field's constraints."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Field '{field}' {reason}")


class TypeMismatchError(ValidationError):
    """A value cannot be converted into its field's canonical type."""

    pass


class UniquenessViolation(TabulaError):
    """Another live record already holds the value of a unique field."""

    def __init__(self, field: str, table: str):
        self.field = field
        self.table = table
        super().__init__(f"Field '{field}' must be unique in table {table}")


class ReferentialIntegrityError(TabulaError):
    """A lookup value does not reference an existing row of its target table."""

    def __init__(self, field: str, message: str, target_id: Any = None):
        self.field = field
        self.target_id = target_id
        super().__init__(message)


class UnsupportedOperatorError(TabulaError):
    """A filter operator is not defined for the field's data type."""

    def __init__(self, field: str, operator: str, data_type: str):
        self.field = field
        self.operator = operator
        self.data_type = data_type
        super().__init__(f"Operator {operator} is not supported for {data_type} field '{field}'")


class AccessDenied(TabulaError):
    """The authorization policy rejected the call."""

    pass
