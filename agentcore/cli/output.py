"""Rich-based output utilities for the agentcore CLI."""

from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.table import Table

# Shared console instance
console = Console()


def print_error(message: str, out: Console | None = None) -> None:
    """Print an error message in red."""
    (out or console).print(f"[bold red]Error:[/bold red] {message}")


def print_info(message: str, out: Console | None = None) -> None:
    """Print an informational message."""
    (out or console).print(f"[dim]{message}[/dim]")


def print_success(message: str, out: Console | None = None) -> None:
    (out or console).print(f"[green]{message}[/green]", highlight=False)


def print_table(
    title: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    out: Console | None = None,
) -> None:
    """Print rows as a table; ``None`` cells render as ``-``."""
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("-" if cell is None else str(cell) for cell in row))
    (out or console).print(table)
