"""Common test fixtures.

Every test gets a fresh SQLite file under ``tmp_path`` so sessions opened by
different repositories never share one in-memory connection.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tabula.config import ConfigManager, TabulaConfig
from tabula.container import EngineContext
from tabula.db import DatabaseType, engine_session_factory
from tabula.repository import (
    RecordAuditRepository,
    RecordIndexRepository,
    RecordRepository,
    RecordSearchRepository,
    TableRepository,
)
from tabula.schemas.table import TableSchema
from tabula.services.data_engine import DataEngine


@pytest.fixture
def app_config(tmp_path, monkeypatch) -> TabulaConfig:
    """Test configuration rooted in a temporary home."""
    monkeypatch.setenv("TABULA_HOME", str(tmp_path))
    monkeypatch.setenv("TABULA_ENV", "test")
    config = TabulaConfig(home=tmp_path, env="test", database_name="test.db")
    ConfigManager._config = config
    yield config
    ConfigManager().reset()


@pytest_asyncio.fixture(scope="function")
async def engine_factory(
    app_config: TabulaConfig,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    """Fresh initialized database per test."""
    async with engine_session_factory(
        app_config.database_path, DatabaseType.FILESYSTEM
    ) as (engine, session_maker):
        yield engine, session_maker


@pytest.fixture
def session_maker(engine_factory) -> async_sessionmaker[AsyncSession]:
    _, session_maker = engine_factory
    return session_maker


@pytest.fixture
def table_repository(session_maker) -> TableRepository:
    return TableRepository(session_maker)


@pytest.fixture
def record_repository(session_maker) -> RecordRepository:
    return RecordRepository(session_maker)


@pytest.fixture
def index_repository(session_maker) -> RecordIndexRepository:
    return RecordIndexRepository(session_maker)


@pytest.fixture
def audit_repository(session_maker) -> RecordAuditRepository:
    return RecordAuditRepository(session_maker)


@pytest.fixture
def search_repository(session_maker) -> RecordSearchRepository:
    return RecordSearchRepository(session_maker)


@pytest.fixture
def context(app_config, session_maker) -> EngineContext:
    return EngineContext.create(app_config, session_maker)


@pytest.fixture
def engine(context: EngineContext) -> DataEngine:
    return context.engine


# --- Sample definitions ---


@pytest.fixture
def contacts_definition() -> dict:
    return {
        "name": "Contacts",
        "displayName": "Contacts",
        "rowLabelTemplate": "{{Name}}",
        "fields": [
            {"name": "Name", "dataType": "Text", "isRequired": True, "isUnique": True, "isSortable": True},
            {"name": "Age", "dataType": "Number", "isSortable": True, "isFilterable": True},
            {"name": "Email", "dataType": "Text", "validationPattern": r"^[^@\s]+@[^@\s]+$"},
            {"name": "Active", "dataType": "Boolean", "defaultValue": "true"},
        ],
    }


@pytest_asyncio.fixture
async def contacts(engine: DataEngine, contacts_definition: dict) -> TableSchema:
    return await engine.create_table(contacts_definition)


@pytest_asyncio.fixture
async def tasks(engine: DataEngine, contacts: TableSchema) -> TableSchema:
    return await engine.create_table(
        {
            "name": "Tasks",
            "supportsSoftDelete": True,
            "hasAuditTrail": True,
            "fields": [
                {"name": "Title", "dataType": "Text", "isRequired": True},
                {
                    "name": "Status",
                    "dataType": "Enum",
                    "enumValues": "Todo,Doing,Done",
                    "defaultValue": "Todo",
                },
                {"name": "Due", "dataType": "DateTime", "isSortable": True},
                {"name": "Estimate", "dataType": "Decimal", "minValue": "0", "maxValue": "100"},
                {
                    "name": "AssignedTo",
                    "dataType": "Lookup",
                    "lookupTarget": "Contacts",
                    "lookupField": "Name",
                },
                {
                    "name": "Summary",
                    "dataType": "Text",
                    "isComputed": True,
                    "computedExpression": "concat(Title, ' [', Status, ']')",
                },
            ],
            "views": [
                {"name": "open", "queryDefinition": {"Status": "Todo"}, "isDefault": True},
                {"name": "done", "queryDefinition": {"Status": "Done"}, "sortExpression": "Due desc"},
            ],
        }
    )
