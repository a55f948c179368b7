"""Status command: tool version, configuration and external binaries."""

from __future__ import annotations

import platform
import shutil

import structlog
import typer
from rich.markup import escape

from release_operations_manager import __version__
from release_operations_manager.cli.commands.base import console, load_settings, open_repositories
from release_operations_manager.cli.output import Table
from release_operations_manager.core.config.models import DEFAULT_CONFIG_PATH
from release_operations_manager.integrations.kubernetes.helm_client import (
    HelmError,
    HelmTemplateRenderer,
)
from release_operations_manager.services.release import ReleaseError

logger = structlog.get_logger()


def status(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show detailed status information.",
    ),
) -> None:
    """Show configuration, repositories and the helm renderer in use."""
    logger.info("checking_status", verbose=verbose)
    config = load_settings()

    table = Table(title="Release Operations Manager Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="green")
    table.add_column("Details", style="dim")

    table.add_row("CLI Version", __version__, "rops")
    table.add_row("Python", platform.python_version(), platform.python_implementation())
    table.add_row("Namespace", config.namespace, "default release namespace")
    table.add_row("Linting", "strict" if config.strict_lint else ("on" if config.linting else "off"), "")

    try:
        renderer = HelmTemplateRenderer(config.helm_binary)
        table.add_row("Helm", renderer.get_version(), renderer.binary_path)
    except HelmError as e:
        table.add_row("Helm", "[red]unavailable[/red]", escape(e.message))

    with open_repositories(config) as repositories:
        try:
            entries = repositories.list_repositories()
            table.add_row("Repositories", str(len(entries)), str(config.repository_config))
        except ReleaseError as e:
            table.add_row("Repositories", "[red]unreadable[/red]", escape(e.message))

    if verbose:
        table.add_row("Repository cache", str(config.repository_cache), "")
        table.add_row("Keyring", str(config.keyring) if config.keyring else "none", "chart verification")
        table.add_row("GnuPG", shutil.which("gpg") or "[yellow]not found[/yellow]", "")

    console.print(table)

    if DEFAULT_CONFIG_PATH.exists():
        console.print(f"\n[green]Configuration found:[/green] {DEFAULT_CONFIG_PATH}")
    else:
        console.print("\n[yellow]No configuration file found;[/yellow] using defaults and ROPS_* variables.")
