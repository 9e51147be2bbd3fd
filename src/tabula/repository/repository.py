"""Base repository implementation."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, List, Optional, Sequence, Type, TypeVar

from loguru import logger
from sqlalchemy import Executable, Result, Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabula import db
from tabula.models.base import Base

T = TypeVar("T", bound=Base)


class Repository(Generic[T]):
    """Base repository with common CRUD operations.

    Every method accepts an optional ``session``. When given, the call joins the
    caller's unit of work and nothing is committed here; otherwise the method runs
    in its own scoped session.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], Model: Type[T]):
        self.session_maker = session_maker
        self.Model = Model

    @asynccontextmanager
    async def use_session(self, session: Optional[AsyncSession] = None) -> AsyncIterator[AsyncSession]:
        """Yield the caller's session, or a fresh scoped one."""
        if session is not None:
            yield session
            return
        async with db.scoped_session(self.session_maker) as scoped:
            yield scoped

    def select(self, *entities: Any) -> Select:
        """All queries start here."""
        if not entities:
            entities = (self.Model,)
        return select(*entities)

    async def execute_query(
        self, query: Executable, session: Optional[AsyncSession] = None
    ) -> Result[Any]:
        """Execute a query."""
        async with self.use_session(session) as s:
            logger.trace(f"Executing query: {query}")
            return await s.execute(query)

    async def find_one(self, query: Select, session: Optional[AsyncSession] = None) -> Optional[T]:
        """Execute a query and retrieve a single record."""
        result = await self.execute_query(query, session)
        return result.scalars().one_or_none()

    async def find_all(
        self, query: Optional[Select] = None, session: Optional[AsyncSession] = None
    ) -> Sequence[T]:
        """Execute a query and return every matching record."""
        result = await self.execute_query(query if query is not None else self.select(), session)
        return list(result.scalars().all())

    async def add(self, model: T, session: Optional[AsyncSession] = None) -> T:
        """Add a model and flush it so defaults are populated."""
        async with self.use_session(session) as s:
            s.add(model)
            await s.flush()
            return model

    async def add_all(self, models: List[T], session: Optional[AsyncSession] = None) -> List[T]:
        """Add several models in one flush."""
        async with self.use_session(session) as s:
            s.add_all(models)
            await s.flush()
            return models

    async def delete(self, model: T, session: Optional[AsyncSession] = None) -> None:
        """Delete a loaded model."""
        async with self.use_session(session) as s:
            await s.delete(model)
            await s.flush()

    async def delete_by_fields(self, session: Optional[AsyncSession] = None, **filters: Any) -> int:
        """Delete every row matching the given column values."""
        conditions = [getattr(self.Model, field) == value for field, value in filters.items()]
        async with self.use_session(session) as s:
            result = await s.execute(delete(self.Model).where(*conditions))
            logger.debug(f"Deleted {result.rowcount} {self.Model.__name__} rows with {filters}")
            return result.rowcount

    async def count(
        self, query: Optional[Select] = None, session: Optional[AsyncSession] = None
    ) -> int:
        """Count rows of a query (or of the whole table)."""
        base = query if query is not None else self.select()
        count_query = select(func.count()).select_from(base.subquery())
        result = await self.execute_query(count_query, session)
        return result.scalar_one()
