"""Data models for chart repositories and their indexes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

OCI_SCHEME = "oci://"


class RepositoryEntry(BaseModel):
    """A configured chart repository (one entry of repositories.yaml)."""

    model_config = ConfigDict(extra="ignore")

    name: str
    url: str
    username: str | None = None
    password: str | None = None
    cert_file: str | None = None
    key_file: str | None = None
    ca_file: str | None = None
    insecure_skip_tls_verify: bool = False
    pass_credentials_all: bool = False

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the repository URL."""
        return v.rstrip("/")

    @property
    def is_oci(self) -> bool:
        return self.url.startswith(OCI_SCHEME)


@dataclass
class ChartVersion:
    """One chart version listed in a repository index."""

    name: str
    version: str
    urls: list[str]
    digest: str = ""
    app_version: str = ""
    description: str = ""
    deprecated: bool = False
    chart_type: str = ""
    repository: str = ""

    @classmethod
    def from_index_entry(cls, data: dict[str, Any], repository: str = "") -> ChartVersion:
        """Create from an ``entries.<chart>[]`` item of index.yaml."""
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
            urls=[str(u) for u in data.get("urls") or []],
            digest=str(data.get("digest", "") or ""),
            app_version=str(data.get("appVersion", "") or ""),
            description=str(data.get("description", "") or ""),
            deprecated=bool(data.get("deprecated", False)),
            chart_type=str(data.get("type", "") or ""),
            repository=repository,
        )


@dataclass
class RepositoryIndex:
    """Parsed index.yaml of a chart repository."""

    entries: dict[str, list[ChartVersion]] = field(default_factory=dict)
    generated: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], repository: str = "") -> RepositoryIndex:
        entries = {
            str(name): [ChartVersion.from_index_entry(v, repository) for v in versions or []]
            for name, versions in (data.get("entries") or {}).items()
        }
        return cls(entries=entries, generated=str(data.get("generated", "") or ""))

    def versions_of(self, chart_name: str) -> list[ChartVersion]:
        return list(self.entries.get(chart_name, []))
