"""Resolves lookup fields into target ids and human-readable labels."""

import uuid
from typing import Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from tabula.repository.record_repository import RecordRepository
from tabula.schema.expressions import render_template
from tabula.schema.types import LABEL_TYPES, CanonicalValue, DataType, format_value
from tabula.schema.validator import from_storage
from tabula.schemas.record import LookupResolution, RecordResponse, ResolvedRecord
from tabula.schemas.table import FieldSchema, TableSchema
from tabula.services.catalog_service import CatalogService


def resolve_label(
    table: TableSchema, values: Dict[str, CanonicalValue], lookup_field: Optional[str] = None
) -> Optional[str]:
    """Human label for a row.

    Priority: the requested label field, then the table's row label template, then
    the first Text/Note field with a value. None when nothing applies.
    """
    if lookup_field:
        field = table.get_field(lookup_field)
        if field is not None and values.get(field.name) is not None:
            label = format_value(values[field.name]).strip()
            if label:
                return label

    label = render_template(table.row_label_template, values)
    if label:
        return label

    for field in table.fields:
        if field.data_type in LABEL_TYPES and values.get(field.name) is not None:
            label = format_value(values[field.name]).strip()
            if label:
                return label

    return None


class LookupResolver:
    """Expands lookup values at read time. Nothing computed here is persisted.

    Targets are fetched under their own table's soft-delete rule; a missing or
    tombstoned target is left out of the result instead of raising.
    """

    def __init__(self, catalog: CatalogService, record_repository: RecordRepository):
        self.catalog = catalog
        self.records = record_repository

    async def target_table(self, field: FieldSchema) -> Optional[TableSchema]:
        if not field.lookup_target:
            return None
        return await self.catalog.get_table(field.lookup_target)

    async def target_tables(self, table: TableSchema) -> Dict[str, Optional[TableSchema]]:
        """Target table of every lookup field, keyed by field name."""
        targets: Dict[str, Optional[TableSchema]] = {}
        for field in table.fields:
            if field.data_type == DataType.LOOKUP:
                targets[field.name] = await self.target_table(field)
                if targets[field.name] is None:
                    logger.warning(
                        f"Lookup field '{field.name}' targets unknown table {field.lookup_target}"
                    )
        return targets

    async def target_exists(
        self,
        target: Optional[TableSchema],
        target_id: uuid.UUID,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """True when the id references a live row of the target table."""
        if target is None:
            return False
        return await self.records.exists(target.id, target_id, session=session)

    async def resolve_record(self, table: TableSchema, record: RecordResponse) -> ResolvedRecord:
        resolved = await self.resolve_records(table, [record])
        return resolved[0]

    async def resolve_records(
        self, table: TableSchema, records: Sequence[RecordResponse]
    ) -> List[ResolvedRecord]:
        """Resolve every lookup of a batch of records.

        Target tables and target labels are fetched once per batch.
        """
        lookup_fields = [f for f in table.fields if f.data_type == DataType.LOOKUP]
        targets: Dict[str, Optional[TableSchema]] = {}
        labels: Dict[tuple[str, uuid.UUID], Optional[LookupResolution]] = {}

        results: List[ResolvedRecord] = []
        for record in records:
            values = from_storage(table, record.data)
            lookups: Dict[str, LookupResolution] = {}

            for field in lookup_fields:
                target_id = values.get(field.name)
                if target_id is None:
                    continue

                if field.name not in targets:
                    targets[field.name] = await self.target_table(field)
                target = targets[field.name]
                if target is None:
                    continue

                key = (field.name, target_id)
                if key not in labels:
                    labels[key] = await self._resolve_one(field, target, target_id)
                if labels[key] is not None:
                    lookups[field.name] = labels[key]

            results.append(ResolvedRecord(record=record, values=values, lookups=lookups))
        return results

    async def lookup_labels(self, table: TableSchema, values: Dict[str, CanonicalValue]) -> List[str]:
        """Labels of every resolvable lookup in a set of values (used for search content)."""
        labels: List[str] = []
        for field in table.fields:
            if field.data_type != DataType.LOOKUP or values.get(field.name) is None:
                continue
            target = await self.target_table(field)
            if target is None:
                continue
            resolution = await self._resolve_one(field, target, values[field.name])
            if resolution is not None and resolution.label:
                labels.append(resolution.label)
        return labels

    async def _resolve_one(
        self, field: FieldSchema, target: TableSchema, target_id: uuid.UUID
    ) -> Optional[LookupResolution]:
        row = await self.records.get(target.id, target_id)
        if row is None:
            logger.debug(f"Lookup target {target_id} of field '{field.name}' is missing or deleted")
            return None

        target_values = from_storage(target, row.data)
        return LookupResolution(
            target_id=target_id,
            label=resolve_label(target, target_values, field.lookup_field),
            target_table_id=target.id,
            target_table_name=target.name,
        )
