"""Data models for charts and their declared dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from release_operations_manager.integrations.kubernetes.models.crd import CRDDocument, parse_crd_documents

APPLICATION_CHART_TYPE = "application"
LIBRARY_CHART_TYPE = "library"


@dataclass
class ChartDependency:
    """A dependency declared in a chart's metadata."""

    name: str
    version: str = ""
    repository: str = ""
    alias: str = ""
    condition: str = ""
    enabled: bool = True

    @property
    def effective_name(self) -> str:
        """Name the dependency is vendored under (alias wins)."""
        return self.alias or self.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChartDependency:
        """Create from a ``dependencies`` entry of Chart.yaml."""
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", "") or ""),
            repository=str(data.get("repository", "") or ""),
            alias=str(data.get("alias", "") or ""),
            condition=str(data.get("condition", "") or ""),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a Chart.yaml/Chart.lock entry."""
        data: dict[str, Any] = {"name": self.name, "version": self.version}
        if self.repository:
            data["repository"] = self.repository
        if self.alias:
            data["alias"] = self.alias
        return data


@dataclass
class ChartMetadata:
    """Contents of a chart's Chart.yaml."""

    name: str
    version: str
    api_version: str = "v2"
    app_version: str = ""
    description: str = ""
    type: str = ""
    deprecated: bool = False
    kube_version: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    keywords: list[str] = field(default_factory=list)
    dependencies: list[ChartDependency] = field(default_factory=list)

    @property
    def is_installable(self) -> bool:
        """Whether the chart type allows installation."""
        return self.type in ("", APPLICATION_CHART_TYPE)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChartMetadata:
        """Create from parsed Chart.yaml content."""
        return cls(
            name=str(data.get("name", "") or ""),
            version=str(data.get("version", "") or ""),
            api_version=str(data.get("apiVersion", "") or ""),
            app_version=str(data.get("appVersion", "") or ""),
            description=str(data.get("description", "") or ""),
            type=str(data.get("type", "") or ""),
            deprecated=bool(data.get("deprecated", False)),
            kube_version=str(data.get("kubeVersion", "") or ""),
            annotations={str(k): str(v) for k, v in (data.get("annotations") or {}).items()},
            keywords=[str(k) for k in data.get("keywords") or []],
            dependencies=[ChartDependency.from_dict(d) for d in data.get("dependencies") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to Chart.yaml keys."""
        data: dict[str, Any] = {
            "apiVersion": self.api_version,
            "name": self.name,
            "version": self.version,
        }
        if self.app_version:
            data["appVersion"] = self.app_version
        if self.description:
            data["description"] = self.description
        if self.type:
            data["type"] = self.type
        if self.deprecated:
            data["deprecated"] = True
        if self.kube_version:
            data["kubeVersion"] = self.kube_version
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.keywords:
            data["keywords"] = list(self.keywords)
        if self.dependencies:
            data["dependencies"] = [d.to_dict() for d in self.dependencies]
        return data


@dataclass
class ChartFile:
    """A file inside a chart, addressed by its path relative to the chart root."""

    name: str
    data: bytes


@dataclass
class ChartLock:
    """Contents of Chart.lock."""

    dependencies: list[ChartDependency]
    digest: str
    generated: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChartLock:
        return cls(
            dependencies=[ChartDependency.from_dict(d) for d in data.get("dependencies") or []],
            digest=str(data.get("digest", "")),
            generated=str(data.get("generated", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependencies": [d.to_dict() for d in self.dependencies],
            "digest": self.digest,
            "generated": self.generated,
        }


@dataclass
class Chart:
    """An in-memory chart loaded from a directory or archive."""

    metadata: ChartMetadata
    values_text: str = ""
    templates: list[ChartFile] = field(default_factory=list)
    crd_files: list[ChartFile] = field(default_factory=list)
    dependencies: list[Chart] = field(default_factory=list)
    lock: ChartLock | None = None
    path: Path | None = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def version(self) -> str:
        return self.metadata.version

    def default_values(self) -> dict[str, Any]:
        """Parse the chart's values.yaml into a mapping."""
        if not self.values_text.strip():
            return {}
        loaded = yaml.safe_load(self.values_text)
        return loaded if isinstance(loaded, dict) else {}

    def crd_objects(self) -> list[CRDDocument]:
        """All CRD documents of this chart and its bundled subcharts.

        Subchart CRDs come first, matching install order of dependencies.
        """
        documents: list[CRDDocument] = []
        for dependency in self.dependencies:
            documents.extend(dependency.crd_objects())
        for crd_file in self.crd_files:
            documents.extend(
                parse_crd_documents(crd_file.data.decode("utf-8"), source=f"{self.name}/{crd_file.name}")
            )
        return documents
