"""Data models for releases and release specifications.

``ReleaseSpec`` is the caller-facing, versioned request structure. ``Release``
is the recorded deployment history entry produced by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Flag, StrEnum, auto
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from release_operations_manager.integrations.kubernetes.models.chart import ChartMetadata


class ReleaseStatus(StrEnum):
    """Lifecycle status of a release revision."""

    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"
    DEPLOYED = "deployed"
    FAILED = "failed"
    SUPERSEDED = "superseded"
    UNINSTALLED = "uninstalled"

    @property
    def is_pending(self) -> bool:
        return self in (
            ReleaseStatus.PENDING_INSTALL,
            ReleaseStatus.PENDING_UPGRADE,
            ReleaseStatus.PENDING_ROLLBACK,
        )


class ReleaseStateMask(Flag):
    """Bit mask used to filter release listings by status."""

    DEPLOYED = auto()
    UNINSTALLED = auto()
    SUPERSEDED = auto()
    FAILED = auto()
    PENDING_INSTALL = auto()
    PENDING_UPGRADE = auto()
    PENDING_ROLLBACK = auto()

    PENDING = PENDING_INSTALL | PENDING_UPGRADE | PENDING_ROLLBACK
    ACTIVE = DEPLOYED | SUPERSEDED | FAILED | PENDING
    ALL = ACTIVE | UNINSTALLED

    @classmethod
    def for_status(cls, status: ReleaseStatus) -> ReleaseStateMask:
        """Return the mask bit matching a single status."""
        return cls[status.name]

    def matches(self, status: ReleaseStatus) -> bool:
        return bool(self & ReleaseStateMask.for_status(status))


@dataclass
class HookManifest:
    """A rendered lifecycle hook resource."""

    path: str
    manifest: str
    kind: str = ""
    name: str = ""
    events: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "manifest": self.manifest,
            "kind": self.kind,
            "name": self.name,
            "events": list(self.events),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HookManifest:
        return cls(
            path=str(data.get("path", "")),
            manifest=str(data.get("manifest", "")),
            kind=str(data.get("kind", "")),
            name=str(data.get("name", "")),
            events=[str(e) for e in data.get("events") or []],
        )


@dataclass
class Release:
    """A single revision of a named, namespaced deployment of a chart."""

    name: str
    namespace: str
    revision: int
    status: ReleaseStatus
    chart: ChartMetadata
    config: dict[str, Any] = field(default_factory=dict)
    chart_values: dict[str, Any] = field(default_factory=dict)
    manifest: str = ""
    hooks: list[HookManifest] = field(default_factory=list)
    description: str = ""
    updated: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.namespace)

    @property
    def chart_label(self) -> str:
        return f"{self.chart.name}-{self.chart.version}"

    def touch(self, status: ReleaseStatus, description: str | None = None) -> None:
        """Move to *status* and refresh the update timestamp."""
        self.status = status
        if description is not None:
            self.description = description
        self.updated = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping."""
        return {
            "name": self.name,
            "namespace": self.namespace,
            "revision": self.revision,
            "status": self.status.value,
            "chart": self.chart.to_dict(),
            "config": self.config,
            "chart_values": self.chart_values,
            "manifest": self.manifest,
            "hooks": [h.to_dict() for h in self.hooks],
            "description": self.description,
            "updated": self.updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Release:
        """Create a Release from :meth:`to_dict` output."""
        return cls(
            name=str(data.get("name", "")),
            namespace=str(data.get("namespace", "")),
            revision=int(data.get("revision", 0)),
            status=ReleaseStatus(data.get("status", ReleaseStatus.FAILED.value)),
            chart=ChartMetadata.from_dict(data.get("chart") or {}),
            config=dict(data.get("config") or {}),
            chart_values=dict(data.get("chart_values") or {}),
            manifest=str(data.get("manifest", "")),
            hooks=[HookManifest.from_dict(h) for h in data.get("hooks") or []],
            description=str(data.get("description", "")),
            updated=str(data.get("updated", "")),
        )


class ReleaseSpec(BaseModel):
    """Caller-supplied description of a release operation.

    The model is frozen for the duration of a call. ``api_version`` versions
    the structure itself so new fields can be added without ambiguity.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    api_version: Literal["v1"] = "v1"

    release_name: str = ""
    chart: str
    namespace: str = "default"
    version: str = ""

    values_yaml: str = ""
    value_overrides: tuple[dict[str, Any], ...] = ()
    values_files: tuple[str, ...] = ()
    set_values: tuple[str, ...] = ()
    set_string_values: tuple[str, ...] = ()
    metadata: dict[str, Any] | None = None

    wait: bool = False
    atomic: bool = False
    dependency_update: bool = False
    skip_crds: bool = False
    upgrade_crds: bool = False
    create_namespace: bool = False
    force: bool = False
    reset_values: bool = False
    reuse_values: bool = False
    disable_hooks: bool = False
    generate_name: bool = False
    name_template: str = ""
    replace: bool = False
    cleanup_on_fail: bool = False
    keep_history: bool = False
    dry_run: bool = False
    description: str = ""
    max_history: int | None = Field(default=None, ge=0)
    timeout: timedelta = timedelta(minutes=5)
    post_renderer: str = ""
    post_renderer_args: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def atomic_implies_wait(cls, data: Any) -> Any:
        """``atomic`` always waits for resources."""
        if isinstance(data, dict) and data.get("atomic"):
            data = {**data, "wait": True}
        return data


@dataclass
class ListOptions:
    """Filters for listing releases."""

    namespace: str | None = None
    states: ReleaseStateMask = ReleaseStateMask.DEPLOYED
    selector: str = ""
