"""Release management exceptions.

Every error raised by the orchestration core derives from :class:`ReleaseError`.
Errors from collaborators are wrapped with ``raise ... from ...`` so the
original cause stays attached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.models.chart import ChartDependency
    from release_operations_manager.integrations.kubernetes.models.release import Release
    from release_operations_manager.services.release.interfaces import RenderedChart


class ReleaseError(Exception):
    """Base exception for release operations.

    Attributes:
        message: Human-readable error message.
        release: Name of the release involved (if known).
        namespace: Namespace of the release (if known).
    """

    def __init__(
        self,
        message: str,
        release: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.release = release
        self.namespace = namespace

    def __str__(self) -> str:
        if self.release:
            target = self.release if not self.namespace else f"{self.namespace}/{self.release}"
            return f"{self.message} [release {target}]"
        return self.message


class ReleaseValidationError(ReleaseError):
    """Raised for invalid input: bad names, unsupported chart types, malformed values."""


class ReleaseNotFoundError(ReleaseError):
    """Raised when a release (or revision) does not exist."""

    def __init__(
        self,
        release: str,
        namespace: str | None = None,
        revision: int | None = None,
    ) -> None:
        message = f"release '{release}' not found"
        if revision is not None:
            message = f"revision {revision} of release '{release}' not found"
        super().__init__(message=message, release=release, namespace=namespace)
        self.revision = revision


class ChartNotFoundError(ReleaseError):
    """Raised when a chart reference cannot be resolved."""

    def __init__(self, reference: str, version: str | None = None, reason: str | None = None) -> None:
        message = f"chart '{reference}' not found"
        if version:
            message = f"chart '{reference}' matching version '{version}' not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message)
        self.reference = reference
        self.version = version


class RepositoryError(ReleaseError):
    """Raised when a chart repository cannot be read or written."""

    def __init__(self, message: str, repository: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message=message)
        self.repository = repository
        self.status_code = status_code


class RepositoryConnectionError(RepositoryError):
    """Raised on transient network failures. Retried with backoff."""


class DependencyError(ReleaseError):
    """Raised when chart dependencies cannot be satisfied."""

    def __init__(self, message: str, unmet: list[ChartDependency] | None = None) -> None:
        super().__init__(message=message)
        self.unmet = unmet or []

    @classmethod
    def for_unmet(cls, chart_name: str, unmet: list[ChartDependency]) -> DependencyError:
        """Build an error naming every unmet dependency."""
        listing = ", ".join(f"{d.effective_name} ({d.version or '*'})" for d in unmet)
        return cls(
            message=f"chart '{chart_name}' has unmet dependencies: {listing}",
            unmet=unmet,
        )


class SignatureVerificationError(DependencyError):
    """Raised when a downloaded chart fails provenance verification."""

    def __init__(self, archive: str, reason: str) -> None:
        super().__init__(message=f"signature verification failed for {archive}: {reason}")
        self.archive = archive
        self.reason = reason


class LintError(ReleaseError):
    """Raised when the lint gate finds violations. Carries every message."""

    def __init__(self, chart_name: str, messages: list[str]) -> None:
        joined = "; ".join(messages)
        super().__init__(message=f"chart '{chart_name}' failed linting: {joined}")
        self.chart_name = chart_name
        self.messages = list(messages)


class RenderError(ReleaseError):
    """Raised by a template renderer. ``partial`` holds any partial output."""

    def __init__(self, message: str, partial: RenderedChart | None = None) -> None:
        super().__init__(message=message)
        self.partial = partial


class MigrationError(ReleaseError):
    """Base exception for CRD migration failures. Aborts the migration run."""

    def __init__(self, message: str, crd: str | None = None) -> None:
        super().__init__(message=message)
        self.crd = crd


class UnsupportedSchemaVersionError(MigrationError):
    """Raised when a CRD uses an apiVersion with no registered decoder."""

    def __init__(self, crd: str, api_version: str) -> None:
        super().__init__(
            message=f"CRD '{crd}' uses unsupported apiVersion '{api_version}'",
            crd=crd,
        )
        self.api_version = api_version


class StorageVersionChangedError(MigrationError):
    """Raised when an update would change the storage version name."""

    def __init__(self, crd: str, existing: str | None, desired: str | None) -> None:
        super().__init__(
            message=(
                f"CRD '{crd}' would change its storage version from "
                f"'{existing}' to '{desired}'"
            ),
            crd=crd,
        )
        self.existing = existing
        self.desired = desired


class TooManyStorageVersionsError(MigrationError):
    """Raised when a version set flags more than one storage version."""

    def __init__(self, crd: str, versions: list[str], source: str) -> None:
        super().__init__(
            message=(
                f"{source} CRD '{crd}' declares more than one storage version: "
                f"{', '.join(versions)}"
            ),
            crd=crd,
        )
        self.versions = versions
        self.source = source


class ReleaseFailedError(ReleaseError):
    """Raised when an install or upgrade fails.

    ``partial_release`` is the recorded (failed) release when one was
    produced, or None when the operation failed before recording.
    """

    def __init__(
        self,
        message: str,
        release: str | None = None,
        namespace: str | None = None,
        partial_release: Release | None = None,
    ) -> None:
        super().__init__(message=message, release=release, namespace=namespace)
        self.partial_release = partial_release


class RollbackError(ReleaseError):
    """Raised when an upgrade failed and the rollback policy failed too.

    Both causes are preserved.
    """

    def __init__(
        self,
        release_error: BaseException,
        rollback_error: BaseException,
        release: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(
            message=(
                "release failed, rollback failed: "
                f"release error: {release_error}, rollback error: {rollback_error}"
            ),
            release=release,
            namespace=namespace,
        )
        self.release_error = release_error
        self.rollback_error = rollback_error


class OperationCancelledError(ReleaseError):
    """Raised at a network boundary after the operation context was cancelled."""

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message=message)
