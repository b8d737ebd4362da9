"""Console output helpers shared by all commands."""

from rich.console import Console
from rich.markup import escape

# Relayed remote output is written to the raw streams, never through these.
console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print a one-line diagnostic to stderr."""
    err_console.print(
        f"[bold red]Error:[/bold red] {escape(message)}",
        highlight=False,
        soft_wrap=True,
    )


def print_warning(message: str) -> None:
    """Print a warning to stderr."""
    err_console.print(f"[yellow]{escape(message)}[/yellow]", highlight=False, soft_wrap=True)


def print_success(message: str) -> None:
    """Print a success message to stdout."""
    console.print(f"[green]{escape(message)}[/green]", highlight=False, soft_wrap=True)
