from __future__ import annotations

import json
import sys
from typing import List

import typer

from cptx.config import get_settings
from cptx.database import Database
from cptx.errors import RewriteError, StartupUnreachable
from cptx.infrastructure.db_factory import redact_dsn
from cptx.rewriter import BindStyle, prepare
from cptx.utils.logging import configure_logging

app = typer.Typer(help="cptx CLI: inspect configuration, probe connections, rewrite queries.")


@app.command()
def info() -> None:
    """
    Show effective configuration values (passwords redacted).
    """
    settings = get_settings()
    primary = redact_dsn(settings.primary_dsn) if settings.primary_dsn else "<unset>"
    replica = redact_dsn(settings.replica_dsn) if settings.replica_dsn else "<unset>"
    typer.echo(
        f"domain={settings.domain} | main={primary} | replica={replica} | "
        f"pool=({settings.pool_min_size},{settings.pool_max_size}) "
        f"bind_style={settings.bind_style.value}"
    )


@app.command()
def check() -> None:
    """
    Open the primary and replica pools, run the liveness probe and close them.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    with Database.open() as db:
        typer.echo(f"domain={db.domain}: main and replica reachable.")


@app.command()
def rewrite(
    query: str = typer.Argument(..., help="Query text with :name placeholders."),
    param: List[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Parameter as name=value; repeat for each placeholder name.",
    ),
    style: BindStyle = typer.Option(BindStyle.FORMAT, "--style", "-s", help="Target placeholder style."),
) -> None:
    """
    Print the positional form of a named query and its ordered arguments.
    """
    params = {}
    for item in param:
        name, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected name=value, got {item!r}", param_hint="--param")
        params[name] = value

    try:
        sql, args = prepare(query, params, style)
    except RewriteError as err:
        typer.echo(f"Rewrite failed: {err}", err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps({"query": sql, "args": args}, indent=2))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
    except StartupUnreachable as err:
        typer.echo(f"Startup failed: {err}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
