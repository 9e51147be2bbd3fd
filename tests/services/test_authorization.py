"""Tests for the authorization wrapper."""

import uuid

import pytest

from tabula.container import EngineContext
from tabula.schemas.table import TableSchema
from tabula.services.authorization import (
    AllowAllAuthorizer,
    AuthorizedDataEngine,
    PermissionAction,
    PermissionScope,
    ScopeKind,
)
from tabula.services.exceptions import AccessDenied


class RecordingAuthorizer:
    """Records every check and denies the configured (action, kind) pairs."""

    def __init__(self, deny=()):
        self.deny = set(deny)
        self.checks = []

    async def authorize(self, action: PermissionAction, scope: PermissionScope) -> bool:
        self.checks.append((action, scope))
        return (action, scope.kind) not in self.deny


class DenyField:
    def __init__(self, field: str):
        self.field = field

    async def authorize(self, action: PermissionAction, scope: PermissionScope) -> bool:
        return not (scope.kind == ScopeKind.FIELD and scope.field == self.field)


def test_scopes():
    record_id = uuid.uuid4()
    assert PermissionScope.for_table("Contacts") == PermissionScope(ScopeKind.TABLE, "Contacts")
    assert PermissionScope.for_table(None).table is None
    assert PermissionScope.for_record("Contacts", record_id).record_id == record_id
    assert PermissionScope.for_field("Contacts", "Name").field == "Name"


@pytest.mark.asyncio
async def test_allow_all_delegates(context: EngineContext, contacts: TableSchema):
    engine = context.authorized()
    assert isinstance(engine.authorizer, AllowAllAuthorizer)

    created = await engine.insert("Contacts", {"Name": "Ada"})

    assert (await engine.get("Contacts", created.id)).data["Name"] == "Ada"
    assert await engine.count("Contacts") == 1


@pytest.mark.asyncio
async def test_denied_write_never_reaches_the_engine(context: EngineContext, contacts: TableSchema):
    authorizer = RecordingAuthorizer(deny={(PermissionAction.WRITE, ScopeKind.TABLE)})
    engine = context.authorized(authorizer)

    with pytest.raises(AccessDenied):
        await engine.insert("Contacts", {"Name": "Ada"})

    assert await context.engine.count("Contacts") == 0


@pytest.mark.asyncio
async def test_insert_checks_every_payload_field(context: EngineContext, contacts: TableSchema):
    authorizer = RecordingAuthorizer()
    engine = context.authorized(authorizer)

    await engine.insert("Contacts", '{"Name": "Ada", "Age": 36}')

    scopes = [scope for _, scope in authorizer.checks]
    assert scopes == [
        PermissionScope.for_table("Contacts"),
        PermissionScope.for_field("Contacts", "Name"),
        PermissionScope.for_field("Contacts", "Age"),
    ]
    assert all(action == PermissionAction.WRITE for action, _ in authorizer.checks)


@pytest.mark.asyncio
async def test_field_level_denial(context: EngineContext, contacts: TableSchema):
    engine = context.authorized(DenyField("Age"))
    created = await engine.insert("Contacts", {"Name": "Ada"})

    with pytest.raises(AccessDenied):
        await engine.update("Contacts", created.id, {"Name": "Ada", "Age": 36})

    assert (await engine.get("Contacts", created.id)).version == 1


@pytest.mark.asyncio
async def test_delete_and_reads_use_record_scope(context: EngineContext, contacts: TableSchema):
    created = await context.engine.insert("Contacts", {"Name": "Ada"})
    authorizer = RecordingAuthorizer(deny={(PermissionAction.DELETE, ScopeKind.RECORD)})
    engine = context.authorized(authorizer)

    await engine.get_resolved("Contacts", created.id)
    await engine.get_history("Contacts", created.id)
    with pytest.raises(AccessDenied):
        await engine.delete("Contacts", created.id)

    assert [(a, s.kind) for a, s in authorizer.checks] == [
        (PermissionAction.READ, ScopeKind.RECORD),
        (PermissionAction.READ, ScopeKind.RECORD),
        (PermissionAction.DELETE, ScopeKind.RECORD),
    ]
    assert await context.engine.get("Contacts", created.id) is not None


@pytest.mark.asyncio
async def test_schema_management_requires_permission(context: EngineContext):
    authorizer = RecordingAuthorizer(deny={(PermissionAction.MANAGE_SCHEMA, ScopeKind.TABLE)})
    engine: AuthorizedDataEngine = context.authorized(authorizer)

    with pytest.raises(AccessDenied):
        await engine.create_table({"name": "Secrets", "fields": [{"name": "Value"}]})
    with pytest.raises(AccessDenied):
        await engine.generate_simple_views("Secrets")

    assert await engine.get_table("Secrets") is None
    assert await engine.get_tables() == []
