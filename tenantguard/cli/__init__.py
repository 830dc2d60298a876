"""
tenantguard - Command Line Interface

Developer tooling for inspecting tenant scoping in an application. Built
with Typer for the command line and Rich for output.

Usage:
    $ tenantguard --help
    $ tenantguard registrations myapp.models
    $ tenantguard audit myapp.models --database-url postgresql://...

Commands:
    registrations - List entity classes registered for tenant scoping
    audit         - Count rows without a tenant in each scoped table
"""

from __future__ import annotations

import importlib
import logging
from typing import Optional

import typer
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantguard import __version__
from tenantguard.cli.output import (
    AuditResult,
    console,
    print_audit,
    print_error,
    print_registrations,
    print_success,
    print_warning,
)
from tenantguard.config.settings import settings
from tenantguard.multitenancy import registrations, unscoped

logger = logging.getLogger(__name__)

# Create main application
app = typer.Typer(
    name="tenantguard",
    help="tenantguard - tenant isolation for SQLAlchemy applications",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"tenantguard version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    tenantguard - tenant isolation for SQLAlchemy applications

    Commands take the dotted path of the module that defines and
    registers your models; importing it performs the registrations.
    """
    pass


def _load_models(module: str) -> None:
    try:
        importlib.import_module(module)
    except ImportError as e:
        print_error(
            f"Cannot import module {module!r}",
            details=str(e),
            hint="Pass the dotted path of the module that registers your models.",
        )
        raise typer.Exit(code=2)


@app.command("registrations")
def list_registrations(
    module: str = typer.Argument(..., help="Module registering the models."),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    List entity classes registered for tenant scoping.
    """
    _load_models(module)
    entries = registrations()

    if not entries:
        print_warning("No tenant-scoped entities registered")
        return

    rows = [
        [
            r.entity.__name__,
            getattr(r.entity, "__tablename__", ""),
            r.tenant_attribute,
            r.tenant_entity or "-",
            ", ".join(f.name for f in r.scopes.filters_for(r.entity)),
        ]
        for r in entries
    ]

    print_registrations(rows, as_json=format == "json")


@app.command()
def audit(
    module: str = typer.Argument(..., help="Module registering the models."),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Database to audit. Defaults to TENANTGUARD_DATABASE_URL.",
    ),
) -> None:
    """
    Count rows without a tenant in each tenant-scoped table.

    Rows written while scoping was suspended may carry a null tenant
    until their next scoped save. Exits with status 1 if any are found.
    """
    _load_models(module)
    engine = create_engine(database_url or settings.DATABASE_URL)

    results: list[AuditResult] = []
    with Session(engine) as session:
        for r in registrations():
            result = AuditResult(entity=r.entity.__name__, attribute=r.tenant_attribute)
            count = select(func.count()).select_from(r.entity)
            try:
                result.total = session.scalar(unscoped(count))
                result.missing = session.scalar(
                    unscoped(count.where(r.tenant_column().is_(None)))
                )
            except SQLAlchemyError as e:
                logger.debug(f"Audit query for {result.entity} failed: {e}")
                result.error = e.__class__.__name__
            results.append(result)
    engine.dispose()

    if not results:
        print_warning("No tenant-scoped entities registered")
        return

    print_audit(results)
    if all(result.passed for result in results):
        print_success("Every scoped row has a tenant")
    else:
        raise typer.Exit(code=1)


__all__ = [
    "app",
    "console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
