"""Database management commands."""

import typer
from loguru import logger

from tabula.cli.app import app
from tabula.cli.commands.command_utils import console, engine_context, run_with_cleanup
from tabula.config import ConfigManager

db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


async def _init() -> None:
    async with engine_context() as context:
        tables = await context.engine.get_tables()
        console.print(
            f"[green]Database ready[/green] at {context.config.database_path} "
            f"({len(tables)} tables)"
        )


async def _reindex() -> int:
    async with engine_context() as context:
        return await context.engine.reindex_search()


@db_app.command()
def init():
    """Create the database and its tables if they do not exist."""
    logger.info(f"Initializing database at {ConfigManager().config.database_path}")
    run_with_cleanup(_init())


@db_app.command()
def reindex():
    """Rebuild the full-text search content of every record."""
    indexed = run_with_cleanup(_reindex())
    console.print(f"[green]Reindexed {indexed} records[/green]")
