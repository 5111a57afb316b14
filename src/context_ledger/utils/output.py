"""Console output helpers shared by CLI commands."""

import json
from typing import Any

from rich.console import Console

console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_info(message: str) -> None:
    console.print(f"[cyan]ℹ[/cyan] {message}")


def print_warning(message: str) -> None:
    err_console.print(f"[yellow]![/yellow] {message}")


def print_error(message: str) -> None:
    err_console.print(f"[red]✗[/red] {message}")


def print_json(data: Any) -> None:
    """Print machine-readable JSON without rich markup processing."""
    console.print_json(json.dumps(data, default=str))
