"""Repository for record documents."""

import uuid
from typing import Optional

from sqlalchemy import ColumnElement, Select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabula.models.record import Record
from tabula.repository.repository import Repository


class RecordRepository(Repository[Record]):
    """Documents of runtime tables.

    Read methods take ``include_deleted``; tombstoned rows are hidden unless it is
    set, so soft-deleted records drop out of every ordinary read path.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, Record)

    @staticmethod
    def live_condition() -> ColumnElement[bool]:
        return Record.deleted_at.is_(None)

    def select_for_table(self, table_id: uuid.UUID, include_deleted: bool = False) -> Select:
        query = self.select().where(Record.table_id == table_id)
        if not include_deleted:
            query = query.where(self.live_condition())
        return query

    async def get(
        self,
        table_id: uuid.UUID,
        record_id: uuid.UUID,
        include_deleted: bool = False,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Record]:
        query = self.select_for_table(table_id, include_deleted).where(Record.id == record_id)
        return await self.find_one(query, session)

    async def exists(
        self, table_id: uuid.UUID, record_id: uuid.UUID, session: Optional[AsyncSession] = None
    ) -> bool:
        """True when a live record with this id belongs to the table."""
        query = self.select(Record.id).where(
            Record.table_id == table_id, Record.id == record_id, self.live_condition()
        )
        result = await self.execute_query(query, session)
        return result.scalar_one_or_none() is not None

    async def count_for_table(
        self,
        table_id: uuid.UUID,
        include_deleted: bool = False,
        session: Optional[AsyncSession] = None,
    ) -> int:
        return await self.count(self.select_for_table(table_id, include_deleted), session)
