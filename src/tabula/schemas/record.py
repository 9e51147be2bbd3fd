"""Read projections of stored records."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RecordResponse(BaseModel):
    """A stored row with its canonical values."""

    id: uuid.UUID = Field(..., description="Record id")
    table_id: uuid.UUID = Field(..., description="Owning table id")
    data: Dict[str, Any] = Field(default_factory=dict, description="Canonical values by field")
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    version: int = 1


class LookupResolution(BaseModel):
    """Read-time expansion of a lookup field. Never persisted."""

    target_id: uuid.UUID
    label: Optional[str] = None
    target_table_id: uuid.UUID
    target_table_name: str


class ResolvedRecord(BaseModel):
    """A record plus the labels of the rows its lookup fields point to.

    Lookups whose target row is missing or deleted are left out of ``lookups``.
    """

    record: RecordResponse
    values: Dict[str, Any] = Field(default_factory=dict)
    lookups: Dict[str, LookupResolution] = Field(default_factory=dict)


class ChangeSet(BaseModel):
    """One entry of a record's audit trail."""

    table_id: uuid.UUID
    record_id: uuid.UUID
    change_type: Literal["create", "update", "delete"]
    version: int
    changed_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)
    previous_data: Optional[Dict[str, Any]] = None


class RecordPage(BaseModel):
    """A page of records together with the unpaged total."""

    items: List[RecordResponse] = Field(default_factory=list)
    total: int = 0
