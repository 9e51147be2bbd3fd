"""Models package for tabula."""

from tabula.models.base import Base
from tabula.models.record import Record, RecordAudit, RecordIndex
from tabula.models.schema import SchemaField, SchemaTable, SchemaView

__all__ = [
    "Base",
    "SchemaTable",
    "SchemaField",
    "SchemaView",
    "Record",
    "RecordIndex",
    "RecordAudit",
]
