"""utility functions for commands"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine, TypeVar

import typer
from rich.console import Console

from tabula import db
from tabula.config import ConfigManager
from tabula.container import EngineContext, build_engine
from tabula.schema.types import FilterOperator
from tabula.schemas.query import QueryFilter

console = Console()

T = TypeVar("T")

OPERATOR_NAMES = frozenset(op.value for op in FilterOperator)


def run_with_cleanup(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine and dispose database connections before the loop closes."""

    async def _run() -> T:
        try:
            return await coro
        finally:
            await db.shutdown_db()

    return asyncio.run(_run())


@asynccontextmanager
async def engine_context() -> AsyncIterator[EngineContext]:
    """Engine for the configured database."""
    _, context = await build_engine(ConfigManager().config)
    yield context


def parse_filter(text: str) -> QueryFilter:
    """Parse ``field:operator:value``, or ``field:value`` for equality.

    The value may itself contain colons (timestamps), so an unknown middle part is
    taken as the start of the value.
    """
    field, sep, rest = text.partition(":")
    if not sep or not field.strip():
        raise typer.BadParameter(f"Filter '{text}' must look like field:operator:value")

    operator, sep, value = rest.partition(":")
    if sep and operator.lower() in OPERATOR_NAMES:
        return QueryFilter(field=field.strip(), operator=FilterOperator(operator.lower()), value=value)
    return QueryFilter(field=field.strip(), value=rest)
