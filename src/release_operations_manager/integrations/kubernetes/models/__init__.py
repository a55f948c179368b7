"""Data models for charts, releases, CRDs and repositories."""

from release_operations_manager.integrations.kubernetes.models.chart import (
    Chart,
    ChartDependency,
    ChartFile,
    ChartLock,
    ChartMetadata,
)
from release_operations_manager.integrations.kubernetes.models.crd import (
    CRDDocument,
    MigrationAction,
    MigrationResult,
    SchemaDefinition,
    SchemaEncoding,
    SchemaVersion,
    SkipReason,
)
from release_operations_manager.integrations.kubernetes.models.release import (
    HookManifest,
    ListOptions,
    Release,
    ReleaseSpec,
    ReleaseStateMask,
    ReleaseStatus,
)
from release_operations_manager.integrations.kubernetes.models.repository import (
    ChartVersion,
    RepositoryEntry,
    RepositoryIndex,
)

__all__ = [
    "CRDDocument",
    "Chart",
    "ChartDependency",
    "ChartFile",
    "ChartLock",
    "ChartMetadata",
    "ChartVersion",
    "HookManifest",
    "ListOptions",
    "MigrationAction",
    "MigrationResult",
    "Release",
    "ReleaseSpec",
    "ReleaseStateMask",
    "ReleaseStatus",
    "RepositoryEntry",
    "RepositoryIndex",
    "SchemaDefinition",
    "SchemaEncoding",
    "SchemaVersion",
    "SkipReason",
]
