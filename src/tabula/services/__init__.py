"""Engine services."""

from tabula.services.exceptions import (
    AccessDenied,
    NotFoundError,
    ReferentialIntegrityError,
    SchemaError,
    TabulaError,
    TypeMismatchError,
    UniquenessViolation,
    UnsupportedOperatorError,
    ValidationError,
)

__all__ = [
    "TabulaError",
    "SchemaError",
    "NotFoundError",
    "ValidationError",
    "TypeMismatchError",
    "UniquenessViolation",
    "ReferentialIntegrityError",
    "UnsupportedOperatorError",
    "AccessDenied",
]
