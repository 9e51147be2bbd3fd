from typing import Optional

import typer

from tabula.config import ConfigManager, init_logging


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:  # pragma: no cover
        import tabula

        typer.echo(f"tabula version: {tabula.__version__}")
        raise typer.Exit()


app = typer.Typer(name="tabula", no_args_is_help=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """tabula - runtime-defined tables on an embedded SQLite store."""
    if not version and ctx.invoked_subcommand is not None:
        init_logging(ConfigManager().config)
