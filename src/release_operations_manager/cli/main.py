"""Main CLI entry point using Typer."""

from __future__ import annotations

import typer
from rich.console import Console

from release_operations_manager import __version__
from release_operations_manager.cli.commands import release, repo, status
from release_operations_manager.logging.config import configure_logging

app = typer.Typer(
    name="rops",
    help="Release operations: install, upgrade and roll back charts on a cluster.",
    add_completion=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rops version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
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
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Write console logs as JSON.",
    ),
) -> None:
    """Release operations CLI."""
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs)


app.add_typer(release.app, name="release")
app.add_typer(repo.app, name="repo")
app.command()(status.status)


if __name__ == "__main__":
    app()
