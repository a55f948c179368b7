"""Collaborator contracts for the release orchestration core.

The orchestrator only talks to these protocols. Concrete adapters live in
``integrations/kubernetes`` and in this package (chart loader, stores,
repository index store).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.models.chart import Chart
    from release_operations_manager.integrations.kubernetes.models.crd import SchemaEncoding
    from release_operations_manager.integrations.kubernetes.models.release import (
        HookManifest,
        Release,
        ReleaseSpec,
        ReleaseStateMask,
    )
    from release_operations_manager.integrations.kubernetes.models.repository import ChartVersion
    from release_operations_manager.services.release.context import OperationContext


@dataclass
class RenderedChart:
    """Renderer output: the main manifest plus hook manifests."""

    manifest: str
    hooks: list[HookManifest] = field(default_factory=list)
    notes: str = ""

    def as_text(self) -> str:
        """Manifest followed by every hook, each under a ``# Source:`` header."""
        parts = [self.manifest.rstrip("\n")] if self.manifest.strip() else []
        for hook in self.hooks:
            parts.append(f"---\n# Source: {hook.path}\n{hook.manifest.strip()}")
        return "\n".join(parts) + ("\n" if parts else "")


class LintSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class LintMessage:
    """A single lint finding."""

    severity: LintSeverity
    path: str
    message: str

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.path}: {self.message}"


class ChartLoaderProtocol(Protocol):
    def load(self, reference: str, version: str = "", ctx: OperationContext | None = None) -> Chart:
        """Resolve a directory, archive, ``repo/chart`` or URL reference."""
        ...


class TemplateRenderer(Protocol):
    def render(
        self,
        chart: Chart,
        values: dict[str, Any],
        *,
        release_name: str,
        namespace: str,
        include_crds: bool = False,
        is_upgrade: bool = False,
        disable_hooks: bool = False,
        kube_version: str = "",
        api_versions: tuple[str, ...] = (),
        post_renderer: str = "",
        post_renderer_args: tuple[str, ...] = (),
    ) -> RenderedChart:
        """Render *chart* with *values*.

        *post_renderer* names an executable that receives the rendered
        manifests on stdin and prints the replacement on stdout.

        Raises:
            RenderError: With any partial output attached.
        """
        ...


class SchemaDefinitionClient(Protocol):
    def get(self, name: str, encoding: SchemaEncoding) -> dict[str, Any] | None:
        """Return the stored CRD body (with ``metadata.resourceVersion``) or None."""
        ...

    def create(self, body: dict[str, Any], encoding: SchemaEncoding) -> dict[str, Any]: ...

    def update(
        self,
        body: dict[str, Any],
        encoding: SchemaEncoding,
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Replace the CRD. ``metadata.resourceVersion`` in *body* is the precondition."""
        ...


class ReleaseStore(Protocol):
    def list_releases(
        self,
        namespace: str | None = None,
        states: ReleaseStateMask | None = None,
    ) -> list[Release]:
        """Latest revision of every release matching the filters."""
        ...

    def history(self, name: str, namespace: str) -> list[Release]:
        """Every stored revision, oldest first."""
        ...

    def get(self, name: str, namespace: str, revision: int | None = None) -> Release:
        """Return one revision (latest when None). Raises ReleaseNotFoundError."""
        ...

    def create(self, release: Release) -> None:
        """Store a new revision. Its number must exceed every stored revision."""
        ...

    def update(self, release: Release) -> None: ...

    def delete(self, name: str, namespace: str, revision: int) -> None: ...


class ManifestApplier(Protocol):
    def apply(
        self,
        manifest: str,
        namespace: str,
        *,
        force: bool = False,
        create_namespace: bool = False,
        wait: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Create or update every resource of *manifest*. Raises on the first failure.

        With *wait*, block until the resources are ready. *timeout* is in seconds.
        """
        ...

    def delete(self, manifest: str, namespace: str) -> None: ...


@runtime_checkable
class RollbackPolicy(Protocol):
    def rollback_release(self, spec: ReleaseSpec) -> None:
        """Restore an earlier state of the release. Raises on failure."""
        ...


class ChartLinter(Protocol):
    def lint(
        self,
        chart: Chart,
        values: dict[str, Any],
        *,
        namespace: str,
    ) -> list[LintMessage]:
        """Return every finding; the caller decides which severities abort."""
        ...


class ChartRepository(Protocol):
    def find_chart(
        self,
        repository: str,
        name: str,
        constraint: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ChartVersion:
        """Highest version of *name* in *repository* satisfying *constraint*."""
        ...

    def download_chart(
        self,
        chart_version: ChartVersion,
        destination: Path,
        ctx: OperationContext | None = None,
    ) -> Path: ...

    def download_provenance(
        self,
        chart_version: ChartVersion,
        destination: Path,
        ctx: OperationContext | None = None,
    ) -> Path: ...
