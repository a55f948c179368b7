"""Data models for CustomResourceDefinitions and migration results.

A CRD body is decoded exactly once into a :class:`SchemaDefinition`. The
wire encoding is carried as a tag on that object, so callers never branch on
the raw ``apiVersion`` string again.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

CRD_KIND = "CustomResourceDefinition"


class SchemaEncoding(StrEnum):
    """Supported CRD API encodings."""

    V1 = "apiextensions.k8s.io/v1"
    V1BETA1 = "apiextensions.k8s.io/v1beta1"

    @classmethod
    def from_api_version(cls, api_version: str) -> SchemaEncoding | None:
        """Return the encoding for an ``apiVersion`` string, or None if unsupported."""
        try:
            return cls(api_version)
        except ValueError:
            return None


@dataclass(frozen=True)
class SchemaVersion:
    """One declared version of a CRD."""

    name: str
    storage: bool
    served: bool
    raw: dict[str, Any] = field(compare=False, hash=False)


@dataclass
class SchemaDefinition:
    """A decoded CRD with its ordered version set."""

    name: str
    encoding: SchemaEncoding
    versions: list[SchemaVersion]
    body: dict[str, Any]
    resource_version: str | None = None

    @property
    def storage_versions(self) -> list[str]:
        """Names of all versions flagged as storage version."""
        return [v.name for v in self.versions if v.storage]

    def same_versions_as(self, other: SchemaDefinition) -> bool:
        """Whether both version sets are semantically identical (order included)."""
        return [v.raw for v in self.versions] == [v.raw for v in other.versions]

    def with_resource_version(self, resource_version: str | None) -> dict[str, Any]:
        """Return a copy of the body carrying ``metadata.resourceVersion``."""
        body = copy.deepcopy(self.body)
        metadata = body.setdefault("metadata", {})
        if resource_version:
            metadata["resourceVersion"] = resource_version
        else:
            metadata.pop("resourceVersion", None)
        return body

    @classmethod
    def decode(cls, body: dict[str, Any], encoding: SchemaEncoding) -> SchemaDefinition:
        """Decode a CRD body using the decoder registered for *encoding*."""
        return _DECODERS[encoding](body)


def _version_from_dict(raw: dict[str, Any]) -> SchemaVersion:
    return SchemaVersion(
        name=str(raw.get("name", "")),
        storage=bool(raw.get("storage", False)),
        served=bool(raw.get("served", False)),
        raw=dict(raw),
    )


def _metadata(body: dict[str, Any]) -> dict[str, Any]:
    metadata = body.get("metadata") or {}
    return metadata if isinstance(metadata, dict) else {}


def _decode_v1(body: dict[str, Any]) -> SchemaDefinition:
    spec = body.get("spec") or {}
    metadata = _metadata(body)
    return SchemaDefinition(
        name=str(metadata.get("name", "")),
        encoding=SchemaEncoding.V1,
        versions=[_version_from_dict(v) for v in spec.get("versions") or []],
        body=body,
        resource_version=metadata.get("resourceVersion"),
    )


def _decode_v1beta1(body: dict[str, Any]) -> SchemaDefinition:
    # v1beta1 still accepts the single ``spec.version`` field; it is both
    # served and the storage version.
    spec = body.get("spec") or {}
    metadata = _metadata(body)
    raw_versions = spec.get("versions") or []
    if not raw_versions and spec.get("version"):
        raw_versions = [{"name": spec["version"], "served": True, "storage": True}]
    return SchemaDefinition(
        name=str(metadata.get("name", "")),
        encoding=SchemaEncoding.V1BETA1,
        versions=[_version_from_dict(v) for v in raw_versions],
        body=body,
        resource_version=metadata.get("resourceVersion"),
    )


_DECODERS: dict[SchemaEncoding, Callable[[dict[str, Any]], SchemaDefinition]] = {
    SchemaEncoding.V1: _decode_v1,
    SchemaEncoding.V1BETA1: _decode_v1beta1,
}


@dataclass
class CRDDocument:
    """A single CRD manifest bundled in a chart."""

    source: str
    body: dict[str, Any]

    @property
    def name(self) -> str:
        return str(_metadata(self.body).get("name", ""))

    @property
    def api_version(self) -> str:
        return str(self.body.get("apiVersion", ""))


def parse_crd_documents(text: str, source: str = "") -> list[CRDDocument]:
    """Parse a (multi-document) YAML file into CRD documents.

    Empty documents are skipped.

    Raises:
        ValueError: If the YAML cannot be parsed or a document is not a mapping.
    """
    loader = YAML(typ="safe")
    try:
        documents = list(loader.load_all(text))
    except YAMLError as e:
        raise ValueError(f"Failed to parse CRD file {source}: {e}") from e

    result: list[CRDDocument] = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ValueError(f"CRD file {source} contains a non-mapping document")
        result.append(CRDDocument(source=source, body=doc))
    return result


class MigrationAction(StrEnum):
    """What the migration engine did with one CRD."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class SkipReason(StrEnum):
    """Why a CRD was skipped."""

    UNCHANGED = "unchanged"
    VERSION_REMOVAL = "version-removal"


@dataclass
class MigrationResult:
    """Outcome of migrating a single CRD."""

    name: str
    encoding: SchemaEncoding
    action: MigrationAction
    reason: SkipReason | None = None
    storage_version: str | None = None

    @property
    def skipped(self) -> bool:
        return self.action is MigrationAction.SKIPPED
