"""Record commands: insert, update, delete, get, query and history."""

import json
import uuid
from typing import Annotated, Any, List, Optional

import typer
from loguru import logger
from rich.markup import escape
from rich.table import Table

from tabula.cli.app import app
from tabula.cli.commands.command_utils import (
    console,
    engine_context,
    parse_filter,
    run_with_cleanup,
)
from tabula.config import ConfigManager
from tabula.schema.types import format_value
from tabula.schemas.query import QuerySpec
from tabula.schemas.record import RecordResponse, ResolvedRecord
from tabula.schemas.table import TableSchema
from tabula.services.exceptions import TabulaError

record_app = typer.Typer(help="Record commands")
app.add_typer(record_app, name="record")


def _fail(action: str, error: Exception) -> typer.Exit:
    logger.error(f"Error during record {action}: {error}")
    console.print(f"[red]{type(error).__name__}: {escape(str(error))}[/red]")
    return typer.Exit(1)


def _parse_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a record id")


def _render_records(
    table: TableSchema, records: List[RecordResponse], resolved: Optional[List[ResolvedRecord]]
) -> None:
    visible = [f for f in table.fields if not f.is_hidden and not f.is_computed]
    output = Table(title=table.title)
    output.add_column("id", style="dim")
    for field in visible:
        output.add_column(field.display_label)

    for position, record in enumerate(records):
        lookups = resolved[position].lookups if resolved is not None else {}
        cells = []
        for field in visible:
            if field.name in lookups and lookups[field.name].label:
                cells.append(escape(lookups[field.name].label))
            else:
                cells.append(escape(format_value(record.data.get(field.name))))
        output.add_row(str(record.id), *cells)
    console.print(output)


def _dump(record: Any) -> None:
    console.print_json(record.model_dump_json(by_alias=False))


# --- Writes ---


async def _insert(table: str, payload: str) -> RecordResponse:
    async with engine_context() as context:
        return await context.engine.insert(table, payload)


@record_app.command()
def insert(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    payload: Annotated[str, typer.Argument(help="JSON object of field values")],
):
    """Insert a record."""
    try:
        record = run_with_cleanup(_insert(table, payload))
    except TabulaError as e:
        raise _fail("insert", e)
    console.print(f"[green]Inserted record {record.id}[/green]")


async def _update(table: str, record_id: uuid.UUID, payload: str) -> RecordResponse:
    async with engine_context() as context:
        return await context.engine.update(table, record_id, payload)


@record_app.command()
def update(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    record_id: Annotated[str, typer.Argument(help="Record id")],
    payload: Annotated[str, typer.Argument(help="JSON object with the full set of values")],
):
    """Replace the values of a record."""
    try:
        record = run_with_cleanup(_update(table, _parse_id(record_id), payload))
    except TabulaError as e:
        raise _fail("update", e)
    console.print(f"[green]Updated record {record.id} (version {record.version})[/green]")


async def _delete(table: str, record_id: uuid.UUID) -> None:
    async with engine_context() as context:
        await context.engine.delete(table, record_id)


@record_app.command()
def delete(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    record_id: Annotated[str, typer.Argument(help="Record id")],
):
    """Delete a record (tombstoned on soft-delete tables)."""
    try:
        run_with_cleanup(_delete(table, _parse_id(record_id)))
    except TabulaError as e:
        raise _fail("delete", e)
    console.print(f"[green]Deleted record {record_id}[/green]")


# --- Reads ---


async def _get(table: str, record_id: uuid.UUID, resolve: bool):
    async with engine_context() as context:
        if resolve:
            return await context.engine.get_resolved(table, record_id)
        return await context.engine.get(table, record_id)


@record_app.command()
def get(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    record_id: Annotated[str, typer.Argument(help="Record id")],
    resolve: bool = typer.Option(False, "--resolve", help="Include lookup labels"),
):
    """Show one record as JSON."""
    try:
        result = run_with_cleanup(_get(table, _parse_id(record_id), resolve))
    except TabulaError as e:
        raise _fail("get", e)
    if result is None:
        console.print(f"[red]Record {record_id} was not found[/red]")
        raise typer.Exit(1)
    _dump(result)


async def _query(table_ref: str, spec: QuerySpec, resolve: bool):
    async with engine_context() as context:
        table = await context.catalog.require_table(table_ref)
        if resolve:
            resolved = await context.engine.query_resolved(table.id, spec)
            records = [item.record for item in resolved]
        else:
            resolved = None
            records = await context.engine.query(table.id, spec)
        total = await context.engine.count(table.id, spec)
        return table, records, resolved, total


@record_app.command()
def query(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    filters: Annotated[
        Optional[List[str]],
        typer.Option("--filter", "-f", help="field:operator:value (repeatable)"),
    ] = None,
    text: Optional[str] = typer.Option(None, "--text", help="Full-text search"),
    view: Optional[str] = typer.Option(None, "--view", help="Named view to apply"),
    order_by: Optional[str] = typer.Option(None, "--order-by", help="Sortable field"),
    descending: bool = typer.Option(False, "--desc", help="Sort descending"),
    skip: Optional[int] = typer.Option(None, "--skip", min=0),
    take: Optional[int] = typer.Option(None, "--take", min=0),
    resolve: bool = typer.Option(False, "--resolve", help="Show lookup labels"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Query records of a table."""
    spec = QuerySpec(
        filters=[parse_filter(f) for f in filters or []],
        full_text=text,
        view=view,
        order_by=order_by,
        descending=descending,
        skip=skip,
        take=take if take is not None else ConfigManager().config.default_page_size,
    )
    try:
        schema, records, resolved, total = run_with_cleanup(_query(table, spec, resolve))
    except TabulaError as e:
        raise _fail("query", e)

    if as_json:
        items = resolved if resolved is not None else records
        console.print_json(json.dumps([json.loads(item.model_dump_json()) for item in items]))
        return

    _render_records(schema, records, resolved)
    console.print(f"{len(records)} of {total} records")


async def _history(table: str, record_id: uuid.UUID):
    async with engine_context() as context:
        return await context.engine.get_history(table, record_id)


@record_app.command()
def history(
    table: Annotated[str, typer.Argument(help="Table name or id")],
    record_id: Annotated[str, typer.Argument(help="Record id")],
):
    """Show the audit trail of a record."""
    try:
        entries = run_with_cleanup(_history(table, _parse_id(record_id)))
    except TabulaError as e:
        raise _fail("history", e)

    output = Table(title=f"History of {record_id}")
    output.add_column("Version", justify="right")
    output.add_column("Change")
    output.add_column("At")
    output.add_column("Data")
    for entry in entries:
        output.add_row(
            str(entry.version), entry.change_type, entry.changed_at.isoformat(), json.dumps(entry.data)
        )
    console.print(output)
