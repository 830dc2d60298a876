"""
Rich rendering for the tenantguard CLI.

Commands build plain data (rows, audit results) and hand it to the
functions here, so every command prints with the same look.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Optional

from rich.console import Console
from rich.json import JSON
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

REGISTRATION_COLUMNS = ["Entity", "Table", "Tenant attribute", "Tenant entity", "Filters"]


@dataclass
class AuditResult:
    """Null-tenant count for one scoped table.

    ``error`` is set instead of the counts when the table could not be
    queried.
    """

    entity: str
    attribute: str
    total: int = 0
    missing: int = 0
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and self.missing == 0

    def describe(self) -> str:
        if self.error is not None:
            return f"query failed: {self.error}"
        return f"{self.missing} of {self.total} rows without {self.attribute}"


def print_registrations(rows: list[list[str]], as_json: bool = False) -> None:
    """Print registration rows laid out as ``REGISTRATION_COLUMNS``."""
    if as_json:
        keys = ["entity", "table", "tenant_attribute", "tenant_entity", "filters"]
        data = [dict(zip(keys, row)) for row in rows]
        console.print(JSON(json.dumps(data, indent=2)))
        return

    table = Table(title="Tenant-scoped entities")
    for name, style in zip(REGISTRATION_COLUMNS, ["cyan", None, "green", None, "dim"]):
        table.add_column(name, style=style)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def print_audit(results: Iterable[AuditResult]) -> None:
    console.print("[bold]Tenant audit[/bold]")
    console.print()
    for result in results:
        icon = "[green]✓[/green]" if result.passed else "[red]✗[/red]"
        color = "green" if result.passed else "red"
        console.print(
            f"  {icon} [cyan]{result.entity}[/cyan]: "
            f"[{color}]{result.describe()}[/{color}]"
        )


def print_error(message: str, details: Optional[str] = None, hint: Optional[str] = None) -> None:
    """Print an error to stderr, with optional details and a hint."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if details:
        err_console.print(f"[dim]{details}[/dim]")
    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_success(message: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
