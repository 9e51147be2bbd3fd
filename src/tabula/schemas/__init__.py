"""Pydantic contracts for tabula."""

from tabula.schemas.query import QueryFilter, QuerySpec
from tabula.schemas.record import (
    ChangeSet,
    LookupResolution,
    RecordPage,
    RecordResponse,
    ResolvedRecord,
)
from tabula.schemas.table import FieldSchema, TableSchema, ViewSchema

__all__ = [
    "FieldSchema",
    "TableSchema",
    "ViewSchema",
    "QueryFilter",
    "QuerySpec",
    "RecordResponse",
    "LookupResolution",
    "ResolvedRecord",
    "ChangeSet",
    "RecordPage",
]
