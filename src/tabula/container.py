"""Composition root for a tabula engine.

This module owns:
- Wiring repositories and services onto one session maker
- Choosing the search collaborator (FTS5 or no-op) from configuration
- Providing the authorization wrapper

Nothing here is a process-wide singleton: each ``EngineContext`` carries its own
catalog, stores and write locks, so several engines (for example one per tenant
database) can coexist.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tabula import db
from tabula.config import ConfigManager, TabulaConfig
from tabula.repository import (
    RecordAuditRepository,
    RecordIndexRepository,
    RecordRepository,
    RecordSearchRepository,
    TableRepository,
)
from tabula.services.authorization import AllowAllAuthorizer, Authorizer, AuthorizedDataEngine
from tabula.services.catalog_service import CatalogService
from tabula.services.data_engine import DataEngine
from tabula.services.lookup_service import LookupResolver
from tabula.services.query_service import QueryPlanner
from tabula.services.search_service import NullSearchIndexer, RecordSearchIndexer, SearchIndexer


@dataclass
class EngineContext:
    """Everything one engine needs, passed explicitly instead of looked up globally."""

    config: TabulaConfig
    session_maker: async_sessionmaker[AsyncSession]
    catalog: CatalogService
    lookups: LookupResolver
    search: SearchIndexer
    planner: QueryPlanner
    engine: DataEngine

    @classmethod
    def create(
        cls, config: TabulaConfig, session_maker: async_sessionmaker[AsyncSession]
    ) -> "EngineContext":
        """Wire an engine onto an initialized database."""
        table_repository = TableRepository(session_maker)
        record_repository = RecordRepository(session_maker)
        index_repository = RecordIndexRepository(session_maker)
        audit_repository = RecordAuditRepository(session_maker)

        catalog = CatalogService(table_repository)
        lookups = LookupResolver(catalog, record_repository)
        search: SearchIndexer = (
            RecordSearchIndexer(RecordSearchRepository(session_maker), lookups)
            if config.search_enabled
            else NullSearchIndexer()
        )
        planner = QueryPlanner(record_repository, index_repository, search)
        engine = DataEngine(
            session_maker,
            catalog,
            record_repository,
            index_repository,
            audit_repository,
            planner,
            lookups,
            search,
            serialize_writes=config.serialize_writes,
        )
        return cls(
            config=config,
            session_maker=session_maker,
            catalog=catalog,
            lookups=lookups,
            search=search,
            planner=planner,
            engine=engine,
        )

    def authorized(self, authorizer: Optional[Authorizer] = None) -> AuthorizedDataEngine:
        """The engine behind a permission check (allow-all by default)."""
        return AuthorizedDataEngine(self.engine, authorizer or AllowAllAuthorizer())


async def build_engine(
    config: Optional[TabulaConfig] = None,
    db_type: db.DatabaseType = db.DatabaseType.FILESYSTEM,
) -> tuple[AsyncEngine, EngineContext]:
    """Open (creating if needed) the configured database and wire an engine onto it."""
    config = config or ConfigManager().config
    engine, session_maker = await db.get_or_create_db(
        config.database_path, db_type=db_type, search_enabled=config.search_enabled
    )
    return engine, EngineContext.create(config, session_maker)
