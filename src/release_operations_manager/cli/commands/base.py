"""Shared utilities for the release and repository CLI commands.

Provides common Typer options, collaborator wiring and error handling.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from release_operations_manager.cli.output import OutputFormat
from release_operations_manager.core.config import ConfigError, ReleaseManagerConfig, load_config
from release_operations_manager.integrations.kubernetes.client import KubernetesClient
from release_operations_manager.integrations.kubernetes.crd_client import CRDClient
from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesTimeoutError,
)
from release_operations_manager.integrations.kubernetes.helm_client import (
    HelmBinaryNotFoundError,
    HelmError,
    HelmTemplateRenderer,
)
from release_operations_manager.integrations.kubernetes.manifest_applier import (
    KubernetesManifestApplier,
)
from release_operations_manager.services.release import (
    ChartLint,
    ChartLoader,
    DependencyError,
    LintError,
    ReleaseError,
    ReleaseNotFoundError,
    ReleaseOrchestrator,
    RepositoryIndexStore,
    RollbackError,
    SecretReleaseStore,
)

console = Console()

_DURATION_RE = re.compile(r"(\d+)(h|m|s)")
_DURATION_UNITS = {"h": "hours", "m": "minutes", "s": "seconds"}


# =============================================================================
# Common Typer Option Annotations
# =============================================================================

OutputOption = Annotated[
    OutputFormat,
    typer.Option(
        "--output",
        "-o",
        help="Output format: table, json, or yaml",
        case_sensitive=False,
    ),
]

NamespaceOption = Annotated[
    str | None,
    typer.Option(
        "--namespace",
        "-n",
        help="Release namespace (defaults to config or 'default')",
    ),
]

DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Render and report without recording or applying anything",
    ),
]


# =============================================================================
# Wiring
# =============================================================================


def load_settings() -> ReleaseManagerConfig:
    """Load configuration, exiting with a readable message when it is invalid."""
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def open_repositories(config: ReleaseManagerConfig) -> RepositoryIndexStore:
    return RepositoryIndexStore(
        config.repository_config,
        config.repository_cache,
        timeout=config.request_timeout,
        retries=config.retry_attempts,
    )


def build_orchestrator(
    config: ReleaseManagerConfig,
    repositories: RepositoryIndexStore,
) -> ReleaseOrchestrator:
    """Wire the cluster-backed collaborators into an orchestrator."""
    client = KubernetesClient(config.kubernetes)
    renderer = HelmTemplateRenderer(config.helm_binary)
    return ReleaseOrchestrator(
        loader=ChartLoader(repositories),
        renderer=renderer,
        store=SecretReleaseStore(client),
        applier=KubernetesManifestApplier(client),
        crd_client=CRDClient(client),
        repositories=repositories,
        linter=ChartLint(renderer),
        config=config,
    )


@contextmanager
def orchestrator_session() -> Iterator[tuple[ReleaseOrchestrator, ReleaseManagerConfig]]:
    """Yield a wired orchestrator and the config it was built from."""
    config = load_settings()
    with open_repositories(config) as repositories:
        try:
            orchestrator = build_orchestrator(config, repositories)
        except KubernetesError as e:
            handle_release_error(e)
        yield orchestrator, config


def parse_duration(value: str | None) -> timedelta | None:
    """Parse ``1h5m30s``-style durations (a bare number means seconds)."""
    if value is None:
        return None
    if value.isdigit():
        return timedelta(seconds=int(value))
    matches = _DURATION_RE.findall(value)
    if not matches or "".join(n + u for n, u in matches) != value:
        raise typer.BadParameter(f"invalid duration '{value}', expected e.g. 5m0s")
    return timedelta(**{_DURATION_UNITS[unit]: int(number) for number, unit in matches})


# =============================================================================
# Error Handling
# =============================================================================


def handle_release_error(error: ReleaseError | KubernetesError) -> NoReturn:
    """Print an error with whatever detail its type carries.

    Raises:
        typer.Exit: Always exits with code 1.
    """
    if isinstance(error, HelmBinaryNotFoundError):
        console.print(f"[red]Error:[/red] {error.message}")
        console.print("\n[dim]Hint: set helm_binary in the config or ROPS_HELM_BINARY.[/dim]")

    elif isinstance(error, HelmError):
        console.print(f"[red]Helm error:[/red] {error.message}")
        if error.stderr:
            console.print(f"\n[dim]{escape(error.stderr)}[/dim]")

    elif isinstance(error, KubernetesConnectionError):
        console.print("[red]Error:[/red] Cannot connect to Kubernetes cluster")
        console.print(f"  {error.message}")
        if error.original_error:
            console.print(f"  Cause: {error.original_error}")
        console.print(
            "\n[dim]Hint: Check that your kubeconfig is valid and the cluster is reachable.[/dim]"
        )

    elif isinstance(error, KubernetesAuthError):
        console.print("[red]Error:[/red] Authentication/authorization failed")
        console.print(f"  {error.message}")

    elif isinstance(error, KubernetesTimeoutError):
        console.print("[red]Error:[/red] Operation timed out")
        console.print(f"  {error.message}")
        console.print("\n[dim]Hint: Try increasing ROPS_REQUEST_TIMEOUT.[/dim]")

    elif isinstance(error, RollbackError):
        console.print("[red]Error:[/red] Release failed and rollback failed")
        console.print(f"  Release error: {escape(str(error.release_error))}")
        console.print(f"  Rollback error: {escape(str(error.rollback_error))}")

    elif isinstance(error, LintError):
        console.print(f"[red]Error:[/red] Chart '{error.chart_name}' failed linting")
        for message in error.messages:
            console.print(f"  - {message}", markup=False)

    elif isinstance(error, DependencyError):
        console.print(f"[red]Error:[/red] {escape(error.message)}")
        for dependency in error.unmet:
            console.print(f"  - {dependency.name} {dependency.version}".rstrip())
        console.print("\n[dim]Hint: pass --dependency-update to fetch missing dependencies.[/dim]")

    elif isinstance(error, ReleaseNotFoundError):
        console.print("[red]Error:[/red] Release not found")
        console.print(f"  {escape(str(error))}")

    else:
        console.print(f"[red]Error:[/red] {escape(str(error))}")

    raise typer.Exit(1)
