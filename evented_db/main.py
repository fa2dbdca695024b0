from __future__ import annotations

import json
import sys
from typing import Any, Dict, List, Optional

import typer

from evented_db.client import EventedClient
from evented_db.config import get_settings
from evented_db.domain.models import ShapeMode
from evented_db.errors import EventedDBError
from evented_db.infrastructure.drivers import available_schemes
from evented_db.utils.logging import configure_logging

app = typer.Typer(help="evented-db: run read queries in parallel batches.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    timeout = settings.batch_timeout_seconds
    typer.echo(
        f"DSN={settings.dsn()} user={settings.db_user} | "
        f"connect_attempts={settings.db_connect_attempts} "
        f"batch_timeout={'none' if timeout is None else timeout} | "
        f"schemes={', '.join(available_schemes())}"
    )


@app.command()
def query(
    sql: List[str] = typer.Option(
        ...,
        "--query",
        "-q",
        help="SQL to run; repeat to batch several queries.",
    ),
    mode: ShapeMode = typer.Option(
        ShapeMode.ROWS_AS_LIST_OF_LISTS,
        "--mode",
        "-m",
        help="How each result is shaped.",
    ),
    key: Optional[str] = typer.Option(
        None,
        "--key",
        "-k",
        help="Key field for rows_as_list_of_mappings.",
    ),
    dsn: Optional[str] = typer.Option(
        None,
        "--dsn",
        help="Connection string (default from settings).",
    ),
) -> None:
    """
    Run every --query in one parallel batch and print the results as JSON.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    results: Dict[str, Any] = {}

    def collect(statement: str):
        return lambda result: results.__setitem__(statement, result)

    if dsn:
        client = EventedClient(dsn, settings.db_user, settings.db_password)
    else:
        client = EventedClient.from_settings(settings)

    with client:
        for statement in sql:
            options = {"response": collect(statement)}
            if mode is ShapeMode.ROW_AS_MAPPING:
                client.enqueue_row_as_mapping(statement, options)
            elif mode is ShapeMode.COLUMN_AS_LIST:
                client.enqueue_column_as_list(statement, options)
            elif mode is ShapeMode.ROWS_AS_LIST_OF_MAPPINGS:
                client.enqueue_rows_as_list_of_mappings(statement, key, options)
            else:
                client.enqueue_rows_as_list_of_lists(statement, options)
        try:
            summary = client.execute_batch()
        except EventedDBError as exc:
            typer.echo(f"Batch failed: {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(json.dumps({"summary": summary, "results": results}, indent=2, default=str))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
