"""
Command-line interface for pgconverge.
"""

import asyncio
import logging
import sys
from functools import wraps
from pathlib import Path
from typing import Dict, List

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import PgConvergeConfig
from .database.connection import ConnectionConfig
from .definitions import FieldKind, FieldSpec, IndexKind, IndexSpec, TableSpec
from .exceptions import ConfigurationError, PgConvergeError
from .facade import Database
from .schema.reconciler import ReconciliationResult, ReconciliationStatus


console = Console()

STATUS_STYLES = {
    ReconciliationStatus.SUCCESS: "green",
    ReconciliationStatus.PARTIAL: "yellow",
    ReconciliationStatus.FAILED: "red",
    ReconciliationStatus.SKIPPED: "dim",
}


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PgConvergeError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(130)
    return wrapper


def setup_logging(config: PgConvergeConfig, debug: bool = False) -> None:
    """Configure the root logger from the logging section."""
    level = "DEBUG" if debug or config.debug else config.logging.level
    handlers = [logging.StreamHandler(sys.stderr)]
    if config.logging.file:
        handlers.append(logging.FileHandler(config.logging.file))
    logging.basicConfig(
        level=getattr(logging, level),
        format=config.logging.format,
        handlers=handlers,
        force=True,
    )


def _load_config(ctx: click.Context, path: str) -> PgConvergeConfig:
    config = PgConvergeConfig.from_yaml(path)
    config.validate_config()
    setup_logging(config, ctx.obj.get("debug", False))
    return config


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug logging"
)
@click.pass_context
def main(ctx, debug):
    """pgconverge: declarative PostgreSQL schema reconciliation."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="pgconverge.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Write a starter configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    _create_default_config().to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the connection section and declare your tables")
    console.print(f"2. Run: pgconverge validate-config -c {output}")
    console.print(f"3. Run: pgconverge plan -c {output}")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        pgconverge_config = PgConvergeConfig.from_yaml(config)
        pgconverge_config.validate_config()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(pgconverge_config)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option("--table", "-t", multiple=True, help="Only plan these tables")
@click.pass_context
@handle_errors
def plan(ctx, config: str, table: tuple):
    """Show the statements a reconciliation would run, without running them."""
    pgconverge_config = _load_config(ctx, config)
    pgconverge_config.schema_management.mode = "dry_run"
    console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    results = asyncio.run(_reconcile(pgconverge_config, list(table)))
    for name, result in results.items():
        console.print(f"\n[bold cyan]{name}[/bold cyan]")
        if not result.statements:
            console.print("  [green]up to date[/green]")
        for sql in result.statements:
            console.print(f"  {sql};", markup=False, highlight=False)
        for warning in result.warnings:
            console.print(f"  [yellow]warning:[/yellow] {warning}")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option("--table", "-t", multiple=True, help="Only reconcile these tables")
@click.pass_context
@handle_errors
def apply(ctx, config: str, table: tuple):
    """Reconcile the declared tables with the database."""
    pgconverge_config = _load_config(ctx, config)
    console.print("[blue]Schema reconciliation[/blue]")

    results = asyncio.run(_reconcile(pgconverge_config, list(table)))
    _display_results(results)

    if any(r.status in (ReconciliationStatus.FAILED, ReconciliationStatus.PARTIAL) for r in results.values()):
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def status(ctx, config: str):
    """Show drift between declared and live tables."""
    pgconverge_config = _load_config(ctx, config)
    pgconverge_config.schema_management.mode = "dry_run"

    results = asyncio.run(_reconcile(pgconverge_config, []))

    status_table = Table(title="Schema Status")
    status_table.add_column("Table", style="cyan")
    status_table.add_column("State", style="magenta")
    status_table.add_column("Pending Changes", style="yellow")
    status_table.add_column("Warnings", style="red")

    for name, result in results.items():
        if result.status == ReconciliationStatus.FAILED:
            state = "[red]error[/red]"
        elif result.has_changes:
            state = "[yellow]drifted[/yellow]"
        else:
            state = "[green]in sync[/green]"
        kinds = sorted({c.change_type.value for c in result.changes_applied})
        status_table.add_row(name, state, ", ".join(kinds) or "-", str(len(result.warnings)))

    console.print(status_table)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def test_connection(ctx, config: str):
    """Test the database connection."""
    pgconverge_config = _load_config(ctx, config)
    connection = pgconverge_config.require_connection()
    console.print(
        f"[blue]Testing connection to {connection.host}:{connection.port}/{connection.database}...[/blue]"
    )

    async def run_connection_test():
        async with Database(pgconverge_config) as database:
            return await database.server_version(), await database.database_list()

    version, databases = asyncio.run(run_connection_test())
    console.print(f"[green]✓[/green] Connected, PostgreSQL {version}")
    console.print(f"Databases: {', '.join(databases)}")


async def _reconcile(config: PgConvergeConfig, tables: List[str]) -> Dict[str, ReconciliationResult]:
    specs = [config.get_table(name) for name in tables] if tables else config.tables
    async with Database(config) as database:
        if config.schema_management.schema_as_database:
            await database.select_database(config.schema_management.default_schema, create=not config.dry_run)
        return await database.run(specs)


def _create_default_config() -> PgConvergeConfig:
    """Create a starter configuration with one example table."""
    articles = TableSpec(
        name="Articles",
        fields={
            "Title": FieldSpec(kind=FieldKind.VARCHAR, precision=200, default=""),
            "Body": FieldSpec(kind=FieldKind.TEXT),
            "State": FieldSpec(kind=FieldKind.ENUM, values=["draft", "published"], default="draft"),
            "Published": FieldSpec(kind=FieldKind.DATETIME),
        },
        indexes={
            "state": IndexSpec(kind=IndexKind.INDEX, columns=["State"]),
            "search": IndexSpec(kind=IndexKind.FULLTEXT, columns=["Title", "Body"]),
        },
    )
    return PgConvergeConfig(
        connection=ConnectionConfig(
            host="localhost",
            port=5432,
            database="app",
            user="postgres",
            password="${POSTGRES_PASSWORD}",
        ),
        tables=[articles],
    )


def _display_config_summary(config: PgConvergeConfig):
    """Display configuration summary."""
    if config.connection:
        conn = config.connection
        console.print(f"\nConnection: [cyan]{conn.user}@{conn.host}:{conn.port}/{conn.database}[/cyan]")

    management = config.schema_management
    console.print(
        f"Mode: [magenta]{management.mode}[/magenta], schema: [magenta]{management.default_schema}[/magenta], "
        f"fulltext: [magenta]{config.search.language}/{config.search.index_method}[/magenta]"
    )

    table_table = Table(title="Declared Tables")
    table_table.add_column("Table", style="cyan")
    table_table.add_column("Fields", style="magenta")
    table_table.add_column("Indexes", style="green")
    table_table.add_column("Fulltext", style="yellow")
    table_table.add_column("Partitions", style="blue")

    for spec in config.tables:
        table_table.add_row(
            spec.name,
            str(len(spec.fields)),
            str(len(spec.regular_indexes)),
            ", ".join(spec.fulltext_indexes) or "-",
            str(len(spec.options.partitions)),
        )
    console.print(table_table)


def _display_results(results: Dict[str, ReconciliationResult]):
    results_table = Table(title="Reconciliation Results")
    results_table.add_column("Table", style="cyan")
    results_table.add_column("Status")
    results_table.add_column("Statements", style="magenta")
    results_table.add_column("Time (ms)", style="green")
    results_table.add_column("Messages", style="yellow")

    for name, result in results.items():
        style = STATUS_STYLES[result.status]
        results_table.add_row(
            name,
            f"[{style}]{result.status.value}[/{style}]",
            str(len(result.changes_applied)),
            f"{result.execution_time_ms:.1f}",
            "; ".join(result.errors + result.warnings) or "-",
        )
    console.print(results_table)


if __name__ == "__main__":
    main()
