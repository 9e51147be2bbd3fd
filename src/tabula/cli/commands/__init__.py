"""CLI commands for tabula."""

from tabula.cli.commands import db, record, table

__all__ = ["db", "record", "table"]
