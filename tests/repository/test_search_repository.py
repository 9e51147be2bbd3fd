"""Tests for the FTS5 record search repository."""

import uuid

import pytest

from tabula.repository.search_repository import RecordSearchRepository


def test_prepare_match_query_quotes_terms():
    assert RecordSearchRepository.prepare_match_query("ada love") == '"ada"* "love"*'


def test_prepare_match_query_neutralizes_operators():
    assert RecordSearchRepository.prepare_match_query('say "hi" OR') == '"say"* """hi"""* "OR"*'


def test_prepare_match_query_blank():
    assert RecordSearchRepository.prepare_match_query("   ") == ""
    assert RecordSearchRepository.prepare_match_query(None) == ""


@pytest.mark.asyncio
async def test_match_is_scoped_to_table(search_repository: RecordSearchRepository):
    table_a, table_b = uuid.uuid4(), uuid.uuid4()
    first, second, other = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    await search_repository.index_record(first, table_a, "Ada Lovelace mathematician")
    await search_repository.index_record(second, table_a, "Alan Turing")
    await search_repository.index_record(other, table_b, "Ada in another table")

    assert await search_repository.match_record_ids(table_a, "ada") == {first}
    assert await search_repository.match_record_ids(table_a, "mathem") == {first}
    assert await search_repository.match_record_ids(table_a, "a") == {first, second}


@pytest.mark.asyncio
async def test_terms_are_anded(search_repository: RecordSearchRepository):
    table_id, record_id = uuid.uuid4(), uuid.uuid4()
    await search_repository.index_record(record_id, table_id, "Ada Lovelace")

    assert await search_repository.match_record_ids(table_id, "ada lovelace") == {record_id}
    assert await search_repository.match_record_ids(table_id, "ada turing") == set()


@pytest.mark.asyncio
async def test_index_record_replaces_content(search_repository: RecordSearchRepository):
    table_id, record_id = uuid.uuid4(), uuid.uuid4()
    await search_repository.index_record(record_id, table_id, "old words")
    await search_repository.index_record(record_id, table_id, "new words")

    assert await search_repository.match_record_ids(table_id, "old") == set()
    assert await search_repository.match_record_ids(table_id, "new") == {record_id}


@pytest.mark.asyncio
async def test_remove_and_clear(search_repository: RecordSearchRepository):
    table_id = uuid.uuid4()
    first, second = uuid.uuid4(), uuid.uuid4()
    await search_repository.index_record(first, table_id, "alpha")
    await search_repository.index_record(second, table_id, "alpha")

    await search_repository.remove(first)
    assert await search_repository.match_record_ids(table_id, "alpha") == {second}

    await search_repository.clear()
    assert await search_repository.match_record_ids(table_id, "alpha") == set()


@pytest.mark.asyncio
async def test_punctuation_does_not_break_matching(search_repository: RecordSearchRepository):
    table_id, record_id = uuid.uuid4(), uuid.uuid4()
    await search_repository.index_record(record_id, table_id, "user@example.com")

    assert await search_repository.match_record_ids(table_id, "(user*") == {record_id}
    assert await search_repository.match_record_ids(table_id, "example.com") == {record_id}
