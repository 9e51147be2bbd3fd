"""Full-text search collaborator notified after record writes."""

import uuid
from typing import List, Protocol, Set

from loguru import logger

from tabula.repository.search_repository import RecordSearchRepository
from tabula.schema.expressions import evaluate_expression
from tabula.schema.types import format_value
from tabula.schema.validator import from_storage
from tabula.schemas.record import RecordResponse
from tabula.schemas.table import TableSchema
from tabula.services.exceptions import SchemaError
from tabula.services.lookup_service import LookupResolver

RECORD_ENTITY = "Record"


class SearchIndexer(Protocol):
    """What the engine needs from a search backend."""

    async def index_record(self, table: TableSchema, record: RecordResponse) -> None: ...

    async def remove(self, entity_type: str, entity_id: uuid.UUID) -> None: ...

    async def match_record_ids(self, table_id: uuid.UUID, search_text: str) -> Set[uuid.UUID]: ...


class NullSearchIndexer:
    """Used when search is disabled; full-text queries are rejected."""

    async def index_record(self, table: TableSchema, record: RecordResponse) -> None:
        return None

    async def remove(self, entity_type: str, entity_id: uuid.UUID) -> None:
        return None

    async def match_record_ids(self, table_id: uuid.UUID, search_text: str) -> Set[uuid.UUID]:
        raise SchemaError("Full-text search is disabled for this engine")


class RecordSearchIndexer:
    """Keeps the FTS5 content of records current.

    Content is every stored value, every computed field (evaluated here, never
    stored) and the labels of resolvable lookups.
    """

    def __init__(self, repository: RecordSearchRepository, lookups: LookupResolver):
        self.repository = repository
        self.lookups = lookups

    async def build_content(self, table: TableSchema, record: RecordResponse) -> str:
        values = from_storage(table, record.data)
        tokens: List[str] = [format_value(value) for value in values.values()]

        for field in table.fields:
            if field.is_computed:
                computed = evaluate_expression(field.computed_expression, values)
                if computed:
                    tokens.append(computed)

        tokens.extend(await self.lookups.lookup_labels(table, values))
        return " ".join(token.strip() for token in tokens if token and token.strip())

    async def index_record(self, table: TableSchema, record: RecordResponse) -> None:
        content = await self.build_content(table, record)
        await self.repository.index_record(record.id, table.id, content)
        logger.trace(f"Indexed record {record.id} for search ({len(content)} chars)")

    async def remove(self, entity_type: str, entity_id: uuid.UUID) -> None:
        if entity_type != RECORD_ENTITY:
            logger.debug(f"Ignoring search removal for unsupported entity type {entity_type}")
            return
        await self.repository.remove(entity_id)

    async def match_record_ids(self, table_id: uuid.UUID, search_text: str) -> Set[uuid.UUID]:
        return await self.repository.match_record_ids(table_id, search_text)
