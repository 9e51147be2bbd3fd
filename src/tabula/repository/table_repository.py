"""Repository for the schema catalog (tables with their fields and views)."""

import uuid
from typing import List, Optional, Sequence

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.interfaces import LoaderOption

from tabula.models.schema import SchemaTable, SchemaView
from tabula.repository.repository import Repository


class TableRepository(Repository[SchemaTable]):
    """Catalog access. Tables are always loaded together with fields and views."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, SchemaTable)

    def get_load_options(self) -> List[LoaderOption]:
        return [selectinload(SchemaTable.fields), selectinload(SchemaTable.views)]

    async def get_by_id(
        self, table_id: uuid.UUID, session: Optional[AsyncSession] = None
    ) -> Optional[SchemaTable]:
        query = (
            self.select().where(SchemaTable.id == table_id).options(*self.get_load_options())
        )
        return await self.find_one(query, session)

    async def get_by_name(
        self, name: str, session: Optional[AsyncSession] = None
    ) -> Optional[SchemaTable]:
        """Find a table by name, ignoring case."""
        query = (
            self.select()
            .where(func.lower(SchemaTable.name) == name.lower())
            .options(*self.get_load_options())
        )
        return await self.find_one(query, session)

    async def list_tables(self, session: Optional[AsyncSession] = None) -> Sequence[SchemaTable]:
        query = self.select().options(*self.get_load_options()).order_by(SchemaTable.name)
        return await self.find_all(query, session)

    async def add_view(
        self,
        table_id: uuid.UUID,
        view: SchemaView,
        default_view: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> SchemaView:
        """Append a view to an already persisted table.

        ``default_view`` is recorded on the table only if it has none yet.
        """
        async with self.use_session(session) as s:
            view.table_id = table_id
            s.add(view)
            if default_view is not None:
                await s.execute(
                    update(SchemaTable)
                    .where(SchemaTable.id == table_id, SchemaTable.default_view.is_(None))
                    .values(default_view=default_view)
                )
            await s.flush()
            return view
