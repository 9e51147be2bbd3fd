"""Authorization wrapper around the data engine.

Every call is checked before it is delegated; a denial raises ``AccessDenied``
and the wrapped engine is never reached. Policies implement ``Authorizer``.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol

from loguru import logger

from tabula.schemas.query import QuerySpec
from tabula.schemas.record import ChangeSet, RecordPage, RecordResponse, ResolvedRecord
from tabula.schemas.table import TableSchema
from tabula.services.catalog_service import TableRef
from tabula.services.data_engine import DataEngine, Payload, parse_payload
from tabula.services.exceptions import AccessDenied


class PermissionAction(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE_SCHEMA = "manage_schema"


class ScopeKind(str, Enum):
    TABLE = "table"
    RECORD = "record"
    FIELD = "field"


@dataclass(frozen=True)
class PermissionScope:
    """What a call touches: a table, one record of it, or one field of it."""

    kind: ScopeKind
    table: Optional[str] = None
    record_id: Optional[uuid.UUID] = None
    field: Optional[str] = None

    @classmethod
    def for_table(cls, table: Optional[TableRef]) -> "PermissionScope":
        return cls(ScopeKind.TABLE, table=str(table) if table is not None else None)

    @classmethod
    def for_record(cls, table: TableRef, record_id: uuid.UUID) -> "PermissionScope":
        return cls(ScopeKind.RECORD, table=str(table), record_id=record_id)

    @classmethod
    def for_field(cls, table: TableRef, field: str) -> "PermissionScope":
        return cls(ScopeKind.FIELD, table=str(table), field=field)


class Authorizer(Protocol):
    async def authorize(self, action: PermissionAction, scope: PermissionScope) -> bool: ...


class AllowAllAuthorizer:
    """Default policy: everything is permitted."""

    async def authorize(self, action: PermissionAction, scope: PermissionScope) -> bool:
        return True


class AuthorizedDataEngine:
    """Same surface as ``DataEngine``, with a permission check in front of each call."""

    def __init__(self, engine: DataEngine, authorizer: Authorizer):
        self.engine = engine
        self.authorizer = authorizer

    async def _require(self, action: PermissionAction, scope: PermissionScope) -> None:
        if not await self.authorizer.authorize(action, scope):
            logger.warning(f"Access denied: action={action.value} scope={scope}")
            raise AccessDenied(f"{action.value} is not permitted on {scope.kind.value} {scope}")

    async def _require_fields(
        self, action: PermissionAction, table_ref: TableRef, payload: Mapping[str, Any]
    ) -> None:
        for field_name in payload:
            await self._require(action, PermissionScope.for_field(table_ref, field_name))

    # --- Catalog ---

    async def create_table(self, definition: TableSchema | Mapping[str, Any]) -> TableSchema:
        name = definition.name if isinstance(definition, TableSchema) else definition.get("name")
        await self._require(PermissionAction.MANAGE_SCHEMA, PermissionScope.for_table(name))
        return await self.engine.create_table(definition)

    async def generate_simple_views(self, table_ref: TableRef) -> TableSchema:
        await self._require(PermissionAction.MANAGE_SCHEMA, PermissionScope.for_table(table_ref))
        return await self.engine.generate_simple_views(table_ref)

    async def get_table(self, table_ref: TableRef) -> Optional[TableSchema]:
        await self._require(PermissionAction.READ, PermissionScope.for_table(table_ref))
        return await self.engine.get_table(table_ref)

    async def get_tables(self) -> List[TableSchema]:
        await self._require(PermissionAction.READ, PermissionScope.for_table(None))
        return await self.engine.get_tables()

    # --- Writes ---

    async def insert(self, table_ref: TableRef, payload: Payload) -> RecordResponse:
        values = parse_payload(payload)
        await self._require(PermissionAction.WRITE, PermissionScope.for_table(table_ref))
        await self._require_fields(PermissionAction.WRITE, table_ref, values)
        return await self.engine.insert(table_ref, values)

    async def update(
        self, table_ref: TableRef, record_id: uuid.UUID, payload: Payload
    ) -> RecordResponse:
        values = parse_payload(payload)
        await self._require(PermissionAction.WRITE, PermissionScope.for_record(table_ref, record_id))
        await self._require_fields(PermissionAction.WRITE, table_ref, values)
        return await self.engine.update(table_ref, record_id, values)

    async def delete(self, table_ref: TableRef, record_id: uuid.UUID) -> None:
        await self._require(
            PermissionAction.DELETE, PermissionScope.for_record(table_ref, record_id)
        )
        await self.engine.delete(table_ref, record_id)

    # --- Reads ---

    async def get(self, table_ref: TableRef, record_id: uuid.UUID) -> Optional[RecordResponse]:
        await self._require(PermissionAction.READ, PermissionScope.for_record(table_ref, record_id))
        return await self.engine.get(table_ref, record_id)

    async def get_resolved(
        self, table_ref: TableRef, record_id: uuid.UUID
    ) -> Optional[ResolvedRecord]:
        await self._require(PermissionAction.READ, PermissionScope.for_record(table_ref, record_id))
        return await self.engine.get_resolved(table_ref, record_id)

    async def count(self, table_ref: TableRef, spec: Optional[QuerySpec] = None) -> int:
        await self._require(PermissionAction.READ, PermissionScope.for_table(table_ref))
        return await self.engine.count(table_ref, spec)

    async def query(
        self, table_ref: TableRef, spec: Optional[QuerySpec] = None
    ) -> List[RecordResponse]:
        await self._require(PermissionAction.READ, PermissionScope.for_table(table_ref))
        return await self.engine.query(table_ref, spec)

    async def query_resolved(
        self, table_ref: TableRef, spec: Optional[QuerySpec] = None
    ) -> List[ResolvedRecord]:
        await self._require(PermissionAction.READ, PermissionScope.for_table(table_ref))
        return await self.engine.query_resolved(table_ref, spec)

    async def page(self, table_ref: TableRef, spec: Optional[QuerySpec] = None) -> RecordPage:
        await self._require(PermissionAction.READ, PermissionScope.for_table(table_ref))
        return await self.engine.page(table_ref, spec)

    async def get_history(self, table_ref: TableRef, record_id: uuid.UUID) -> List[ChangeSet]:
        await self._require(PermissionAction.READ, PermissionScope.for_record(table_ref, record_id))
        return await self.engine.get_history(table_ref, record_id)
