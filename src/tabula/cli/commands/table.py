"""Table definition commands: `tabula table create`, `list` and `show`."""

import json
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.markup import escape
from rich.table import Table

from tabula.cli.app import app
from tabula.cli.commands.command_utils import console, engine_context, run_with_cleanup
from tabula.schemas.table import TableSchema
from tabula.services.exceptions import TabulaError

table_app = typer.Typer(help="Table definition commands")
app.add_typer(table_app, name="table")


def _flags(field) -> str:
    names = [
        ("required", field.is_required),
        ("unique", field.is_unique),
        ("sortable", field.is_sortable),
        ("filterable", field.is_filterable),
        ("computed", field.is_computed),
    ]
    return ", ".join(name for name, on in names if on)


def _render_table(table: TableSchema) -> None:
    console.print(f"[bold]{table.title}[/bold] ({table.name}, id={table.id})")
    if table.description:
        console.print(table.description)

    fields = Table(title="Fields")
    fields.add_column("Name", style="cyan")
    fields.add_column("Type")
    fields.add_column("Flags")
    fields.add_column("Lookup")
    for field in table.fields:
        lookup = f"{field.lookup_target}.{field.lookup_field or ''}" if field.lookup_target else ""
        fields.add_row(field.name, field.data_type.value, _flags(field), lookup.rstrip("."))
    console.print(fields)

    views = Table(title="Views")
    views.add_column("Name", style="cyan")
    views.add_column("Filter")
    views.add_column("Default", justify="center")
    for view in table.views:
        views.add_row(view.name, view.query_definition, "yes" if view.is_default else "")
    console.print(views)


# --- Create ---


async def _create(definition: dict) -> TableSchema:
    async with engine_context() as context:
        return await context.engine.create_table(definition)


@table_app.command()
def create(
    definition_file: Annotated[Path, typer.Argument(help="JSON file with the table definition")],
):
    """Create a table from a JSON definition (snake_case or camelCase keys)."""
    try:
        definition = json.loads(definition_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read definition: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    try:
        table = run_with_cleanup(_create(definition))
    except (TabulaError, ValueError) as e:
        logger.error(f"Error creating table: {e}")
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Created table {table.name}[/green] (id={table.id})")


# --- List / Show ---


async def _list() -> list[TableSchema]:
    async with engine_context() as context:
        return await context.engine.get_tables()


@table_app.command("list")
def list_tables():
    """List all tables."""
    tables = run_with_cleanup(_list())
    if not tables:
        console.print("[yellow]No tables defined.[/yellow]")
        return

    output = Table(title="Tables")
    output.add_column("Name", style="cyan")
    output.add_column("Display name")
    output.add_column("Fields", justify="right")
    output.add_column("Views", justify="right")
    output.add_column("Soft delete", justify="center")
    for table in tables:
        output.add_row(
            table.name,
            table.title,
            str(len(table.fields)),
            str(len(table.views)),
            "yes" if table.supports_soft_delete else "",
        )
    console.print(output)


async def _show(name: str) -> TableSchema | None:
    async with engine_context() as context:
        return await context.engine.get_table(name)


@table_app.command()
def show(name: Annotated[str, typer.Argument(help="Table name or id")]):
    """Show a table's fields and views."""
    table = run_with_cleanup(_show(name))
    if table is None:
        console.print(f"[red]Table {name} was not found[/red]")
        raise typer.Exit(1)
    _render_table(table)
