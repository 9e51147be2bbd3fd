"""The data engine: validated writes and indexed reads over runtime tables.

A write is one unit of work: the document, its full index rewrite and its audit
entry commit together or not at all. The search collaborator is notified only
after the commit succeeded.
"""

import asyncio
import json
import time
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, TypeAlias

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabula import db
from tabula.models.record import Record, RecordAudit, RecordIndex
from tabula.repository.audit_repository import RecordAuditRepository
from tabula.repository.record_index_repository import RecordIndexRepository, make_entry
from tabula.repository.record_repository import RecordRepository
from tabula.schema import types
from tabula.schema.expressions import evaluate_expression
from tabula.schema.types import CanonicalValue
from tabula.schema.validator import from_storage, to_document, validate_record_payload
from tabula.schemas.query import QuerySpec
from tabula.schemas.record import ChangeSet, RecordPage, RecordResponse, ResolvedRecord
from tabula.schemas.table import FieldSchema, TableSchema
from tabula.services.catalog_service import CatalogService, TableRef
from tabula.services.exceptions import NotFoundError, SchemaError, TabulaError
from tabula.services.lookup_service import LookupResolver
from tabula.services.query_service import QueryPlanner
from tabula.services.search_service import RECORD_ENTITY, SearchIndexer

Payload: TypeAlias = Mapping[str, Any] | str


def parse_payload(payload: Payload) -> Dict[str, Any]:
    """Accept a mapping or a JSON object string."""
    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as e:
            raise SchemaError(f"Record payload is not valid JSON: {e.msg}") from e
        if not isinstance(decoded, dict):
            raise SchemaError("Record payload must be a JSON object")
        return decoded
    return dict(payload)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


class DataEngine:
    """Insert, update, delete and query rows of catalog-defined tables."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        catalog: CatalogService,
        record_repository: RecordRepository,
        index_repository: RecordIndexRepository,
        audit_repository: RecordAuditRepository,
        planner: QueryPlanner,
        lookups: LookupResolver,
        search: SearchIndexer,
        serialize_writes: bool = True,
    ):
        self.session_maker = session_maker
        self.catalog = catalog
        self.records = record_repository
        self.index = index_repository
        self.audit = audit_repository
        self.planner = planner
        self.lookups = lookups
        self.search = search
        self.serialize_writes = serialize_writes
        self._write_locks: Dict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    # --- Catalog ---

    async def create_table(self, definition: TableSchema | Mapping[str, Any]) -> TableSchema:
        return await self.catalog.create_table(definition)

    async def get_table(self, table_ref: TableRef) -> Optional[TableSchema]:
        return await self.catalog.get_table(table_ref)

    async def get_tables(self) -> List[TableSchema]:
        return await self.catalog.get_tables()

    async def generate_simple_views(self, table_ref: TableRef) -> TableSchema:
        return await self.catalog.generate_simple_views(table_ref)

    # --- Writes ---

    async def insert(self, table_ref: TableRef, payload: Payload) -> RecordResponse:
        """Validate and store a new record.

        Raises:
            NotFoundError: if the table does not exist.
            SchemaError, ValidationError, UniquenessViolation, ReferentialIntegrityError
        """
        start_time = time.time()
        table = await self.catalog.require_table(table_ref)
        raw = parse_payload(payload)
        targets = await self.lookups.target_tables(table)

        async with self._write_lock(table.id):
            async with db.scoped_session(self.session_maker) as session:
                values = await self._validate(table, raw, None, targets, session)
                now = _utcnow()
                record = Record(
                    id=uuid.uuid4(),
                    table_id=table.id,
                    data=to_document(values),
                    created_at=now,
                    version=1,
                )
                await self.records.add(record, session)
                await self._rewrite_index(table, record.id, values, session)
                await self._append_audit(table, record, "create", None, session)

        response = to_response(table, record)
        await self._notify_indexed(table, response)

        logger.info(
            f"Inserted record {record.id} into {table.name} "
            f"(table_id={table.id}, duration_ms={_elapsed_ms(start_time)})"
        )
        return response

    async def update(
        self, table_ref: TableRef, record_id: uuid.UUID, payload: Payload
    ) -> RecordResponse:
        """Replace a record's values. Fields missing from the payload are cleared
        unless they carry a default.

        Raises:
            NotFoundError: if the table or a live record with this id does not exist.
            SchemaError, ValidationError, UniquenessViolation, ReferentialIntegrityError
        """
        start_time = time.time()
        table = await self.catalog.require_table(table_ref)
        raw = parse_payload(payload)
        targets = await self.lookups.target_tables(table)

        async with self._write_lock(table.id):
            async with db.scoped_session(self.session_maker) as session:
                record = await self.records.get(table.id, record_id, session=session)
                if record is None:
                    raise NotFoundError(f"Record {record_id} was not found in table {table.name}")

                values = await self._validate(table, raw, record.id, targets, session)
                previous = dict(record.data or {})
                record.data = to_document(values)
                record.updated_at = _utcnow()
                record.version += 1
                await session.flush()
                await self._rewrite_index(table, record.id, values, session)
                await self._append_audit(table, record, "update", previous, session)

        response = to_response(table, record)
        await self._notify_indexed(table, response)

        logger.info(
            f"Updated record {record_id} in {table.name} "
            f"(version={record.version}, duration_ms={_elapsed_ms(start_time)})"
        )
        return response

    async def delete(self, table_ref: TableRef, record_id: uuid.UUID) -> None:
        """Tombstone the record on soft-delete tables, remove it otherwise.

        Raises:
            NotFoundError: if the table or a live record with this id does not exist.
        """
        start_time = time.time()
        table = await self.catalog.require_table(table_ref)

        async with self._write_lock(table.id):
            async with db.scoped_session(self.session_maker) as session:
                record = await self.records.get(table.id, record_id, session=session)
                if record is None:
                    raise NotFoundError(f"Record {record_id} was not found in table {table.name}")

                record.version += 1
                await self._append_audit(table, record, "delete", dict(record.data or {}), session)

                if table.supports_soft_delete:
                    # index rows stay; reads and uniqueness checks skip tombstones
                    now = _utcnow()
                    record.deleted_at = now
                    record.updated_at = now
                    await session.flush()
                else:
                    await self.index.delete_by_fields(session=session, record_id=record.id)
                    await self.records.delete(record, session)

        await self._notify_removed(record_id)

        logger.info(
            f"Deleted record {record_id} from {table.name} "
            f"(soft={table.supports_soft_delete}, duration_ms={_elapsed_ms(start_time)})"
        )

    # --- Reads ---

    async def get(self, table_ref: TableRef, record_id: uuid.UUID) -> Optional[RecordResponse]:
        """The live record with this id, or None."""
        table = await self.catalog.require_table(table_ref)
        record = await self.records.get(table.id, record_id)
        return to_response(table, record) if record is not None else None

    async def get_resolved(
        self, table_ref: TableRef, record_id: uuid.UUID
    ) -> Optional[ResolvedRecord]:
        table = await self.catalog.require_table(table_ref)
        record = await self.records.get(table.id, record_id)
        if record is None:
            return None
        return await self.lookups.resolve_record(table, to_response(table, record))

    async def count(self, table_ref: TableRef, spec: Optional[QuerySpec] = None) -> int:
        table = await self.catalog.require_table(table_ref)
        return await self.planner.count(table, spec)

    async def query(
        self, table_ref: TableRef, spec: Optional[QuerySpec] = None
    ) -> List[RecordResponse]:
        start_time = time.time()
        table = await self.catalog.require_table(table_ref)
        records = await self.planner.execute(table, spec)

        logger.info(
            f"Queried {table.name}: {len(records)} records "
            f"(table_id={table.id}, duration_ms={_elapsed_ms(start_time)})"
        )
        return [to_response(table, record) for record in records]

    async def query_resolved(
        self, table_ref: TableRef, spec: Optional[QuerySpec] = None
    ) -> List[ResolvedRecord]:
        table = await self.catalog.require_table(table_ref)
        records = await self.planner.execute(table, spec)
        return await self.lookups.resolve_records(table, [to_response(table, r) for r in records])

    async def page(self, table_ref: TableRef, spec: Optional[QuerySpec] = None) -> RecordPage:
        """One page of a query together with the unpaged total."""
        items = await self.query(table_ref, spec)
        total = await self.count(table_ref, spec)
        return RecordPage(items=items, total=total)

    async def get_history(self, table_ref: TableRef, record_id: uuid.UUID) -> List[ChangeSet]:
        """Change sets of a record, oldest first. Empty for tables without audit trail."""
        table = await self.catalog.require_table(table_ref)
        entries = await self.audit.history(table.id, record_id)
        return [ChangeSet.model_validate(entry, from_attributes=True) for entry in entries]

    async def reindex_search(self, table_ref: Optional[TableRef] = None) -> int:
        """Rebuild search content for every live record (of one table, or of all)."""
        tables = (
            [await self.catalog.require_table(table_ref)]
            if table_ref is not None
            else await self.catalog.get_tables()
        )
        indexed = 0
        for table in tables:
            for record in await self.records.find_all(self.records.select_for_table(table.id)):
                await self.search.index_record(table, to_response(table, record))
                indexed += 1
        logger.info(f"Rebuilt search content for {indexed} records")
        return indexed

    # --- Internals ---

    @asynccontextmanager
    async def _write_lock(self, table_id: uuid.UUID) -> AsyncIterator[None]:
        if not self.serialize_writes:
            yield
            return
        async with self._write_locks[table_id]:
            yield

    async def _validate(
        self,
        table: TableSchema,
        raw: Mapping[str, Any],
        existing_record_id: Optional[uuid.UUID],
        targets: Dict[str, Optional[TableSchema]],
        session: AsyncSession,
    ) -> Dict[str, CanonicalValue]:
        async def lookup_exists(field: FieldSchema, target_id: uuid.UUID) -> bool:
            return await self.lookups.target_exists(targets.get(field.name), target_id, session)

        async def unique_conflict(
            field: FieldSchema, value: CanonicalValue, exclude: Optional[uuid.UUID]
        ) -> bool:
            return await self.index.has_conflict(
                table.id, field.name, field.data_type, value, exclude, session=session
            )

        try:
            return await validate_record_payload(
                table,
                raw,
                existing_record_id,
                lookup_exists=lookup_exists,
                unique_conflict=unique_conflict,
            )
        except TabulaError as e:
            logger.warning(f"Rejected write to {table.name}: {e}")
            raise

    async def _rewrite_index(
        self,
        table: TableSchema,
        record_id: uuid.UUID,
        values: Dict[str, CanonicalValue],
        session: AsyncSession,
    ) -> None:
        await self.index.replace_for_record(
            record_id, index_entries(table, record_id, values), session=session
        )

    async def _append_audit(
        self,
        table: TableSchema,
        record: Record,
        change_type: str,
        previous: Optional[Dict[str, Any]],
        session: AsyncSession,
    ) -> None:
        if not table.has_audit_trail:
            return
        entry = RecordAudit(
            table_id=table.id,
            record_id=record.id,
            change_type=change_type,
            version=record.version,
            changed_at=_utcnow(),
            data=dict(record.data or {}),
            previous_data=previous,
        )
        await self.audit.add(entry, session)

    async def _notify_indexed(self, table: TableSchema, record: RecordResponse) -> None:
        try:
            await self.search.index_record(table, record)
        except Exception as e:
            logger.error(f"Search indexing failed for record {record.id}: {e}")
            raise

    async def _notify_removed(self, record_id: uuid.UUID) -> None:
        try:
            await self.search.remove(RECORD_ENTITY, record_id)
        except Exception as e:
            logger.error(f"Search removal failed for record {record_id}: {e}")
            raise


def index_entries(
    table: TableSchema, record_id: uuid.UUID, values: Dict[str, CanonicalValue]
) -> List[RecordIndex]:
    """One typed index row per present value, computed fields included as text."""
    entries: List[RecordIndex] = []
    for field in table.fields:
        if field.is_computed:
            computed = evaluate_expression(field.computed_expression, values)
            if computed is not None:
                entries.append(
                    make_entry(table.id, record_id, field.name, types.index_data_type(field), computed)
                )
            continue

        value = values.get(field.name)
        if value is not None:
            entries.append(make_entry(table.id, record_id, field.name, field.data_type, value))
    return entries


def to_response(table: TableSchema, record: Record) -> RecordResponse:
    """Projection of a stored record with its document decoded into canonical values."""
    return RecordResponse(
        id=record.id,
        table_id=record.table_id,
        data=from_storage(table, record.data or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
        deleted_at=record.deleted_at,
        version=record.version,
    )
