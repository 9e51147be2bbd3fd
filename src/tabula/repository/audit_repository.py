"""Repository for record change history."""

import uuid
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabula.models.record import RecordAudit
from tabula.repository.repository import Repository


class RecordAuditRepository(Repository[RecordAudit]):
    """Append-only change sets for tables with an audit trail."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, RecordAudit)

    async def history(
        self,
        table_id: uuid.UUID,
        record_id: uuid.UUID,
        session: Optional[AsyncSession] = None,
    ) -> Sequence[RecordAudit]:
        query = (
            self.select()
            .where(RecordAudit.table_id == table_id, RecordAudit.record_id == record_id)
            .order_by(RecordAudit.version, RecordAudit.id)
        )
        return await self.find_all(query, session)
