"""Engine scenarios: validated writes, index upkeep, soft delete and history."""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from tabula.models.record import Record, RecordIndex
from tabula.repository.record_index_repository import RecordIndexRepository
from tabula.repository.record_repository import RecordRepository
from tabula.schema.types import FilterOperator
from tabula.schemas.query import QueryFilter, QuerySpec
from tabula.schemas.table import TableSchema
from tabula.services.data_engine import DataEngine, index_entries, parse_payload
from tabula.services.exceptions import (
    NotFoundError,
    ReferentialIntegrityError,
    SchemaError,
    TypeMismatchError,
    UniquenessViolation,
    ValidationError,
)


def _filter(field: str, value, operator: FilterOperator = FilterOperator.EQUALS) -> QuerySpec:
    return QuerySpec(filters=[QueryFilter(field=field, operator=operator, value=value)])


# --- Payloads ---


def test_parse_payload_accepts_json_object():
    assert parse_payload('{"Name": "Ada"}') == {"Name": "Ada"}
    assert parse_payload({"Name": "Ada"}) == {"Name": "Ada"}


def test_parse_payload_rejects_other_json():
    with pytest.raises(SchemaError):
        parse_payload("[1, 2]")
    with pytest.raises(SchemaError):
        parse_payload("{broken")


# --- Insert and Get ---


@pytest.mark.asyncio
async def test_contacts_scenario(engine: DataEngine, contacts: TableSchema):
    ada = await engine.insert("Contacts", {"Name": "Ada", "Age": 36})

    with pytest.raises(UniquenessViolation) as exc:
        await engine.insert("Contacts", {"Name": "Ada", "Age": 40})
    assert exc.value.field == "Name"

    await engine.insert("Contacts", {"Name": "Bob", "Age": 20})
    matches = await engine.query(
        "Contacts", _filter("Age", 36, FilterOperator.GREATER_THAN_OR_EQUAL)
    )
    assert [record.id for record in matches] == [ada.id]


@pytest.mark.asyncio
async def test_round_trip_returns_canonical_values(engine: DataEngine, tasks: TableSchema):
    created = await engine.insert(
        "Tasks",
        {"Title": "Ship", "Due": "2024-05-01T12:00:00+02:00", "Estimate": "2.50"},
    )

    fetched = await engine.get("Tasks", created.id)

    assert fetched.version == 1
    assert fetched.table_id == tasks.id
    assert fetched.data == {
        "Title": "Ship",
        "Status": "Todo",
        "Due": datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        "Estimate": Decimal("2.50"),
    }
    # computed fields are never stored
    assert "Summary" not in fetched.data


@pytest.mark.asyncio
async def test_insert_accepts_json_text(engine: DataEngine, contacts: TableSchema):
    created = await engine.insert("Contacts", json.dumps({"name": "Ada", "age": "36"}))
    assert created.data == {"Name": "Ada", "Age": 36, "Active": True}


@pytest.mark.asyncio
async def test_insert_into_unknown_table(engine: DataEngine):
    with pytest.raises(NotFoundError):
        await engine.insert("Nowhere", {"Name": "Ada"})


@pytest.mark.asyncio
async def test_failed_insert_leaves_nothing_behind(
    engine: DataEngine, contacts: TableSchema, record_repository: RecordRepository
):
    with pytest.raises(ValidationError):
        await engine.insert("Contacts", {"Name": "Ada", "Email": "not-an-email"})
    with pytest.raises(TypeMismatchError):
        await engine.insert("Contacts", {"Name": "Ada", "Age": "old"})
    with pytest.raises(SchemaError):
        await engine.insert("Contacts", {"Name": "Ada", "Nickname": "A"})

    assert await record_repository.count_for_table(contacts.id) == 0


@pytest.mark.asyncio
async def test_failure_after_flush_rolls_back_the_write(
    engine: DataEngine, contacts: TableSchema, session_maker, monkeypatch
):
    ada = await engine.insert("Contacts", {"Name": "Ada", "Age": 36})
    rewrite = engine.index.replace_for_record

    async def rewrite_then_fail(record_id, entries, session=None):
        await rewrite(record_id, entries, session=session)
        raise RuntimeError("disk full")

    monkeypatch.setattr(engine.index, "replace_for_record", rewrite_then_fail)

    with pytest.raises(RuntimeError):
        await engine.insert("Contacts", {"Name": "Bob", "Age": 20})
    with pytest.raises(RuntimeError):
        await engine.update("Contacts", ada.id, {"Name": "Ada", "Age": 99})

    async with session_maker() as session:
        records = (await session.execute(select(Record))).scalars().all()
        assert [(r.id, r.version, r.data["Age"]) for r in records] == [(ada.id, 1, 36)]
        rows = (await session.execute(select(RecordIndex))).scalars().all()
        assert {row.record_id for row in rows} == {ada.id}
        assert {row.field_name: row.integer_value for row in rows}["Age"] == 36


@pytest.mark.asyncio
async def test_concurrent_inserts_keep_unique_values(
    engine: DataEngine, contacts: TableSchema, record_repository: RecordRepository
):
    results = await asyncio.gather(
        engine.insert("Contacts", {"Name": "Ada"}),
        engine.insert("Contacts", {"Name": "Ada"}),
        return_exceptions=True,
    )

    stored = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, UniquenessViolation)]
    assert len(stored) == 1
    assert len(rejected) == 1
    assert await record_repository.count_for_table(contacts.id) == 1


@pytest.mark.asyncio
async def test_large_integers_stay_distinct(engine: DataEngine):
    await engine.create_table(
        {"name": "Accounts", "fields": [{"name": "Code", "dataType": "Number", "isUnique": True}]}
    )
    low = await engine.insert("Accounts", {"Code": 9007199254740992})
    high = await engine.insert("Accounts", {"Code": 9007199254740993})

    assert [r.id for r in await engine.query("Accounts", _filter("Code", 9007199254740993))] == [
        high.id
    ]
    matches = await engine.query(
        "Accounts", _filter("Code", 9007199254740992, FilterOperator.LESS_THAN_OR_EQUAL)
    )
    assert [r.id for r in matches] == [low.id]

    with pytest.raises(UniquenessViolation):
        await engine.insert("Accounts", {"Code": "9007199254740993"})


@pytest.mark.asyncio
async def test_decimal_uniqueness_is_exact(engine: DataEngine):
    await engine.create_table(
        {"name": "Rates", "fields": [{"name": "Rate", "dataType": "Decimal", "isUnique": True}]}
    )
    short = await engine.insert("Rates", {"Rate": "0.1"})
    long = await engine.insert("Rates", {"Rate": "0.10000000000000001"})

    # trailing zeros do not make a different value
    with pytest.raises(UniquenessViolation):
        await engine.insert("Rates", {"Rate": "0.100"})

    assert [r.id for r in await engine.query("Rates", _filter("Rate", "0.1"))] == [short.id]
    assert [r.id for r in await engine.query("Rates", _filter("Rate", "0.10000000000000001"))] == [
        long.id
    ]


@pytest.mark.asyncio
async def test_get_missing_record(engine: DataEngine, contacts: TableSchema):
    assert await engine.get("Contacts", uuid.uuid4()) is None


# --- Update ---


@pytest.mark.asyncio
async def test_update_replaces_values_and_bumps_version(engine: DataEngine, contacts: TableSchema):
    created = await engine.insert("Contacts", {"Name": "Ada", "Age": 36, "Email": "ada@x.org"})

    updated = await engine.update("Contacts", created.id, {"Name": "Ada", "Age": 37})

    assert updated.id == created.id
    assert updated.version == 2
    assert updated.updated_at is not None
    # omitted fields are cleared, defaults come back
    assert updated.data == {"Name": "Ada", "Age": 37, "Active": True}


@pytest.mark.asyncio
async def test_index_follows_updates(engine: DataEngine, contacts: TableSchema):
    created = await engine.insert("Contacts", {"Name": "Ada", "Age": 36})
    await engine.update("Contacts", created.id, {"Name": "Ada", "Age": 50})

    assert await engine.query("Contacts", _filter("Age", 36)) == []
    assert [r.id for r in await engine.query("Contacts", _filter("Age", 50))] == [created.id]


@pytest.mark.asyncio
async def test_removed_value_drops_its_index_row(
    engine: DataEngine, contacts: TableSchema, index_repository: RecordIndexRepository
):
    created = await engine.insert("Contacts", {"Name": "Ada", "Email": "ada@x.org"})
    await engine.update("Contacts", created.id, {"Name": "Ada"})

    fields = {entry.field_name for entry in await index_repository.find_for_record(created.id)}
    assert fields == {"Name", "Active"}
    assert await engine.query("Contacts", _filter("Email", "ada@x.org")) == []


@pytest.mark.asyncio
async def test_update_uniqueness(engine: DataEngine, contacts: TableSchema):
    ada = await engine.insert("Contacts", {"Name": "Ada"})
    await engine.insert("Contacts", {"Name": "Bob"})

    # keeping its own value is fine
    await engine.update("Contacts", ada.id, {"Name": "Ada", "Age": 1})

    with pytest.raises(UniquenessViolation):
        await engine.update("Contacts", ada.id, {"Name": "Bob"})

    assert (await engine.get("Contacts", ada.id)).data["Name"] == "Ada"


@pytest.mark.asyncio
async def test_update_missing_record(engine: DataEngine, contacts: TableSchema):
    with pytest.raises(NotFoundError):
        await engine.update("Contacts", uuid.uuid4(), {"Name": "Ada"})


# --- Delete ---


@pytest.mark.asyncio
async def test_hard_delete_removes_record_and_index(
    engine: DataEngine, contacts: TableSchema, session_maker
):
    created = await engine.insert("Contacts", {"Name": "Ada"})

    await engine.delete("Contacts", created.id)

    assert await engine.get("Contacts", created.id) is None
    async with session_maker() as session:
        assert await session.get(Record, created.id) is None
        rows = await session.execute(select(RecordIndex).where(RecordIndex.record_id == created.id))
        assert rows.scalars().all() == []

    # the name is free again
    await engine.insert("Contacts", {"Name": "Ada"})


@pytest.mark.asyncio
async def test_soft_delete_keeps_tombstone(
    engine: DataEngine, tasks: TableSchema, record_repository: RecordRepository
):
    created = await engine.insert("Tasks", {"Title": "Ship"})

    await engine.delete("Tasks", created.id)

    assert await engine.get("Tasks", created.id) is None
    assert await engine.query("Tasks") == []
    assert await engine.count("Tasks") == 0

    tombstone = await record_repository.get(tasks.id, created.id, include_deleted=True)
    assert tombstone is not None
    assert tombstone.deleted_at is not None
    assert tombstone.version == 2

    with pytest.raises(NotFoundError):
        await engine.delete("Tasks", created.id)
    with pytest.raises(NotFoundError):
        await engine.update("Tasks", created.id, {"Title": "Again"})


@pytest.mark.asyncio
async def test_delete_missing_record(engine: DataEngine, contacts: TableSchema):
    with pytest.raises(NotFoundError):
        await engine.delete("Contacts", uuid.uuid4())


# --- Lookups ---


@pytest.mark.asyncio
async def test_lookup_must_reference_live_row(engine: DataEngine, tasks: TableSchema):
    with pytest.raises(ReferentialIntegrityError):
        await engine.insert("Tasks", {"Title": "Ship", "AssignedTo": str(uuid.uuid4())})

    ada = await engine.insert("Contacts", {"Name": "Ada"})
    await engine.delete("Contacts", ada.id)
    with pytest.raises(ReferentialIntegrityError):
        await engine.insert("Tasks", {"Title": "Ship", "AssignedTo": str(ada.id)})


@pytest.mark.asyncio
async def test_tasks_scenario(engine: DataEngine, tasks: TableSchema):
    ada = await engine.insert("Contacts", {"Name": "Ada", "Age": 36})
    task = await engine.insert("Tasks", {"Title": "Ship", "AssignedTo": str(ada.id)})

    resolved = await engine.query_resolved("Tasks")

    assert len(resolved) == 1
    assert resolved[0].record.id == task.id
    lookup = resolved[0].lookups["AssignedTo"]
    assert lookup.target_id == ada.id
    assert lookup.label == "Ada"
    assert lookup.target_table_name == "Contacts"
    assert lookup.target_table_id == (await engine.get_table("Contacts")).id


@pytest.mark.asyncio
async def test_resolved_lookup_degrades_when_target_is_deleted(
    engine: DataEngine, tasks: TableSchema
):
    ada = await engine.insert("Contacts", {"Name": "Ada"})
    task = await engine.insert("Tasks", {"Title": "Ship", "AssignedTo": str(ada.id)})
    await engine.delete("Contacts", ada.id)

    resolved = await engine.get_resolved("Tasks", task.id)

    assert resolved.lookups == {}
    assert resolved.values["AssignedTo"] == ada.id


# --- Computed fields ---


@pytest.mark.asyncio
async def test_computed_field_is_indexed_not_stored(
    engine: DataEngine, tasks: TableSchema, index_repository: RecordIndexRepository
):
    created = await engine.insert("Tasks", {"Title": "Ship", "Status": "doing"})

    entries = {e.field_name: e for e in await index_repository.find_for_record(created.id)}
    assert entries["Summary"].string_value == "Ship [Doing]"

    matches = await engine.query(
        "Tasks", _filter("Summary", "[doing]", FilterOperator.CONTAINS)
    )
    assert [r.id for r in matches] == [created.id]


def test_index_entries_skip_absent_values(tasks_definition_table):
    entries = index_entries(tasks_definition_table, uuid.uuid4(), {"Title": "Ship"})
    assert {e.field_name for e in entries} == {"Title", "Summary"}


@pytest.fixture
def tasks_definition_table() -> TableSchema:
    return TableSchema.model_validate(
        {
            "id": str(uuid.uuid4()),
            "name": "Tasks",
            "fields": [
                {"name": "Title"},
                {"name": "Status", "dataType": "Enum", "enumValues": "Todo,Done"},
                {"name": "Summary", "isComputed": True, "computedExpression": "concat(Title, '!')"},
            ],
        }
    )


# --- History ---


@pytest.mark.asyncio
async def test_history_records_every_change(engine: DataEngine, tasks: TableSchema):
    created = await engine.insert("Tasks", {"Title": "Ship"})
    await engine.update("Tasks", created.id, {"Title": "Ship it"})
    await engine.delete("Tasks", created.id)

    history = await engine.get_history("Tasks", created.id)

    assert [(c.change_type, c.version) for c in history] == [
        ("create", 1),
        ("update", 2),
        ("delete", 3),
    ]
    assert history[0].previous_data is None
    assert history[1].previous_data["Title"] == "Ship"
    assert history[1].data["Title"] == "Ship it"


@pytest.mark.asyncio
async def test_no_history_without_audit_trail(engine: DataEngine, contacts: TableSchema):
    created = await engine.insert("Contacts", {"Name": "Ada"})
    assert await engine.get_history("Contacts", created.id) == []


# --- Paging and search upkeep ---


@pytest.mark.asyncio
async def test_page_reports_unpaged_total(engine: DataEngine, contacts: TableSchema):
    for name in ["A", "B", "C"]:
        await engine.insert("Contacts", {"Name": name})

    page = await engine.page("Contacts", QuerySpec(take=2))

    assert len(page.items) == 2
    assert page.total == 3


@pytest.mark.asyncio
async def test_full_text_follows_writes(engine: DataEngine, contacts: TableSchema):
    created = await engine.insert("Contacts", {"Name": "Ada Lovelace"})
    assert [r.id for r in await engine.query("Contacts", QuerySpec(full_text="lovelace"))] == [
        created.id
    ]

    await engine.update("Contacts", created.id, {"Name": "Ada Byron"})
    assert await engine.query("Contacts", QuerySpec(full_text="lovelace")) == []

    await engine.delete("Contacts", created.id)
    assert await engine.query("Contacts", QuerySpec(full_text="byron")) == []


@pytest.mark.asyncio
async def test_search_content_includes_lookup_labels(engine: DataEngine, tasks: TableSchema):
    ada = await engine.insert("Contacts", {"Name": "Ada"})
    task = await engine.insert("Tasks", {"Title": "Ship", "AssignedTo": str(ada.id)})

    matches = await engine.query("Tasks", QuerySpec(full_text="ada"))
    assert [r.id for r in matches] == [task.id]


@pytest.mark.asyncio
async def test_reindex_search(engine: DataEngine, contacts: TableSchema, context):
    created = await engine.insert("Contacts", {"Name": "Ada"})
    await context.search.repository.clear()
    assert await engine.query("Contacts", QuerySpec(full_text="ada")) == []

    assert await engine.reindex_search() == 1
    assert [r.id for r in await engine.query("Contacts", QuerySpec(full_text="ada"))] == [
        created.id
    ]
