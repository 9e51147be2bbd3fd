"""SQLite FTS5 store behind full-text record queries."""

import re
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabula import db

TOKEN_PATTERN = re.compile(r"\S+")


class RecordSearchRepository:
    """Keeps one FTS5 row of searchable content per record.

    Ids are stored as canonical UUID text in unindexed columns.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def index_record(
        self,
        record_id: uuid.UUID,
        table_id: uuid.UUID,
        content: str,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """Replace the searchable content of a record."""
        async with self._session(session) as s:
            await s.execute(
                text("DELETE FROM record_search WHERE record_id = :record_id"),
                {"record_id": str(record_id)},
            )
            await s.execute(
                text(
                    "INSERT INTO record_search (record_id, table_id, content) "
                    "VALUES (:record_id, :table_id, :content)"
                ),
                {"record_id": str(record_id), "table_id": str(table_id), "content": content},
            )

    async def remove(self, record_id: uuid.UUID, session: Optional[AsyncSession] = None) -> None:
        async with self._session(session) as s:
            await s.execute(
                text("DELETE FROM record_search WHERE record_id = :record_id"),
                {"record_id": str(record_id)},
            )

    async def clear(self, session: Optional[AsyncSession] = None) -> None:
        async with self._session(session) as s:
            await s.execute(text("DELETE FROM record_search"))

    async def match_record_ids(
        self, table_id: uuid.UUID, search_text: str, session: Optional[AsyncSession] = None
    ) -> Set[uuid.UUID]:
        """Ids of the table's records whose content matches every search term."""
        match_query = self.prepare_match_query(search_text)
        if not match_query:
            return set()

        sql = text(
            "SELECT record_id FROM record_search "
            "WHERE table_id = :table_id AND record_search MATCH :query"
        )
        params = {"table_id": str(table_id), "query": match_query}
        logger.trace(f"Search {sql} params: {params}")

        async with self._session(session) as s:
            try:
                result = await s.execute(sql, params)
            except OperationalError as e:
                if "fts5" in str(e).lower():
                    logger.warning(f"FTS5 syntax error for search term: {search_text}, error: {e}")
                    return set()
                raise
            return {uuid.UUID(row[0]) for row in result.fetchall()}

    @staticmethod
    def prepare_match_query(search_text: str) -> str:
        """Quote every whitespace-separated term as an FTS5 prefix string.

        Quoting neutralizes FTS5 operators and punctuation in user text; terms are
        implicitly ANDed.
        """
        terms = TOKEN_PATTERN.findall(search_text or "")
        return " ".join('"' + term.replace('"', '""') + '"*' for term in terms)

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with db.scoped_session(self.session_maker) as scoped:
            yield scoped
