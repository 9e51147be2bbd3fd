"""Repository for the flat secondary index (one typed value per record field)."""

import uuid
from typing import Any, Iterable, List, Optional, Sequence

from loguru import logger
from sqlalchemy import ColumnElement, Select, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from tabula.models.record import Record, RecordIndex
from tabula.repository.repository import Repository
from tabula.schema import types
from tabula.schema.types import CanonicalValue, DataType, FilterOperator, IndexColumn

LIKE_ESCAPE = "\\"


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text only matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def make_entry(
    table_id: uuid.UUID,
    record_id: uuid.UUID,
    field_name: str,
    data_type: DataType,
    value: CanonicalValue,
) -> RecordIndex:
    """Build the index row holding one canonical value in its typed column."""
    column, bound = types.to_index_value(data_type, value)
    entry = RecordIndex(table_id=table_id, record_id=record_id, field_name=field_name)
    setattr(entry, column.value, bound)
    if data_type == DataType.DECIMAL:
        entry.decimal_key = types.decimal_key(value)
    return entry


class RecordIndexRepository(Repository[RecordIndex]):
    """Typed predicates, sort keys and uniqueness probes over the index.

    Index rows of a record are never patched: ``replace_for_record`` deletes them
    all and writes the new set, inside the caller's unit of work.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, RecordIndex)

    async def replace_for_record(
        self,
        record_id: uuid.UUID,
        entries: Iterable[RecordIndex],
        session: Optional[AsyncSession] = None,
    ) -> List[RecordIndex]:
        entries = list(entries)
        async with self.use_session(session) as s:
            removed = await self.delete_by_fields(session=s, record_id=record_id)
            if entries:
                await self.add_all(entries, session=s)
            logger.trace(
                f"Rewrote index for record {record_id}: removed={removed} added={len(entries)}"
            )
            return entries

    async def find_for_record(
        self, record_id: uuid.UUID, session: Optional[AsyncSession] = None
    ) -> Sequence[RecordIndex]:
        query = (
            self.select()
            .where(RecordIndex.record_id == record_id)
            .order_by(RecordIndex.field_name, RecordIndex.id)
        )
        return await self.find_all(query, session)

    # --- Query building ---

    @staticmethod
    def value_column(column: IndexColumn) -> Any:
        return getattr(RecordIndex, column.value)

    def equals_condition(self, data_type: DataType, value: CanonicalValue) -> ColumnElement[bool]:
        """Exact match on a value. Decimals compare by key, not by their float."""
        if data_type == DataType.DECIMAL:
            return RecordIndex.decimal_key == types.decimal_key(value)
        column, bound = types.to_index_value(data_type, value)
        return self.value_column(column) == bound

    def filter_predicate(
        self,
        table_id: uuid.UUID,
        field_name: str,
        data_type: DataType,
        operator: FilterOperator,
        value: CanonicalValue,
    ) -> ColumnElement[bool]:
        """Correlated EXISTS over the index for ``field <operator> value``.

        The caller has already checked that the operator is allowed for the type.
        """
        column, bound = types.to_index_value(data_type, value)
        target = self.value_column(column)

        match operator:
            case FilterOperator.EQUALS:
                condition = self.equals_condition(data_type, value)
            case FilterOperator.CONTAINS:
                condition = target.ilike(f"%{escape_like(str(bound))}%", escape=LIKE_ESCAPE)
            case FilterOperator.GREATER_THAN:
                condition = target > bound
            case FilterOperator.GREATER_THAN_OR_EQUAL:
                condition = target >= bound
            case FilterOperator.LESS_THAN:
                condition = target < bound
            case FilterOperator.LESS_THAN_OR_EQUAL:
                condition = target <= bound
            case _:  # pragma: no cover
                raise RuntimeError(f"Unhandled operator {operator!r}")

        return exists(
            select(RecordIndex.id).where(
                RecordIndex.record_id == Record.id,
                RecordIndex.table_id == table_id,
                RecordIndex.field_name == field_name,
                condition,
            )
        )

    def order_by_field(
        self,
        query: Select,
        table_id: uuid.UUID,
        field_name: str,
        data_type: DataType,
        descending: bool = False,
    ) -> Select:
        """Outer join the field's index row and order by its typed column.

        Records without a value for the field sort last in both directions.
        """
        sort_index = aliased(RecordIndex, name="sort_index")
        sort_column = getattr(sort_index, types.index_column(data_type).value)
        ordering = sort_column.desc() if descending else sort_column.asc()

        return query.outerjoin(
            sort_index,
            (sort_index.record_id == Record.id)
            & (sort_index.table_id == table_id)
            & (sort_index.field_name == field_name),
        ).order_by(ordering.nulls_last(), Record.created_at.desc(), Record.id)

    async def has_conflict(
        self,
        table_id: uuid.UUID,
        field_name: str,
        data_type: DataType,
        value: CanonicalValue,
        exclude_record_id: Optional[uuid.UUID] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """True when another live record of the table holds the same value."""
        query = (
            select(RecordIndex.record_id)
            .join(Record, Record.id == RecordIndex.record_id)
            .where(
                RecordIndex.table_id == table_id,
                RecordIndex.field_name == field_name,
                self.equals_condition(data_type, value),
                Record.deleted_at.is_(None),
            )
            .limit(1)
        )
        if exclude_record_id is not None:
            query = query.where(RecordIndex.record_id != exclude_record_id)

        result = await self.execute_query(query, session)
        return result.scalar_one_or_none() is not None
