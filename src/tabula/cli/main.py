"""Main CLI entry point for tabula."""  # pragma: no cover

from tabula.cli.app import app  # pragma: no cover

# Register commands
from tabula.cli.commands import db, record, table  # noqa: F401  # pragma: no cover

if __name__ == "__main__":  # pragma: no cover
    app()
