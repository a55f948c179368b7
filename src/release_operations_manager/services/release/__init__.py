"""Release orchestration service module.

Install-or-upgrade decisions, chart dependency resolution, values
composition, the lint gate, rollback coordination and CRD migration.
"""

from release_operations_manager.services.release.chart_loader import ChartLoader
from release_operations_manager.services.release.context import OperationContext
from release_operations_manager.services.release.crd_migration import CRDMigrationEngine
from release_operations_manager.services.release.dependencies import (
    DependencyResolution,
    DependencyResolver,
)
from release_operations_manager.services.release.exceptions import (
    ChartNotFoundError,
    DependencyError,
    LintError,
    MigrationError,
    OperationCancelledError,
    ReleaseError,
    ReleaseFailedError,
    ReleaseNotFoundError,
    ReleaseValidationError,
    RenderError,
    RepositoryError,
    RollbackError,
    SignatureVerificationError,
    StorageVersionChangedError,
    TooManyStorageVersionsError,
    UnsupportedSchemaVersionError,
)
from release_operations_manager.services.release.lint import ChartLint
from release_operations_manager.services.release.orchestrator import (
    ReleaseOrchestrator,
    TemplateOptions,
)
from release_operations_manager.services.release.repository import RepositoryIndexStore
from release_operations_manager.services.release.rollback import (
    DefaultRollbackPolicy,
    RevisionRollbackPolicy,
)
from release_operations_manager.services.release.store import (
    InMemoryReleaseStore,
    SecretReleaseStore,
)
from release_operations_manager.services.release.values import ValuesComposer

__all__ = [
    "CRDMigrationEngine",
    "ChartLint",
    "ChartLoader",
    "ChartNotFoundError",
    "DefaultRollbackPolicy",
    "DependencyError",
    "DependencyResolution",
    "DependencyResolver",
    "InMemoryReleaseStore",
    "LintError",
    "MigrationError",
    "OperationCancelledError",
    "ReleaseError",
    "ReleaseFailedError",
    "ReleaseNotFoundError",
    "ReleaseOrchestrator",
    "ReleaseValidationError",
    "RenderError",
    "RepositoryError",
    "RepositoryIndexStore",
    "RevisionRollbackPolicy",
    "RollbackError",
    "SecretReleaseStore",
    "SignatureVerificationError",
    "StorageVersionChangedError",
    "TemplateOptions",
    "TooManyStorageVersionsError",
    "UnsupportedSchemaVersionError",
    "ValuesComposer",
]
