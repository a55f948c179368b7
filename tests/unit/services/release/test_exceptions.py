"""Unit tests for release exceptions."""

from __future__ import annotations

import pytest

from release_operations_manager.integrations.kubernetes.models.chart import ChartDependency
from release_operations_manager.services.release.exceptions import (
    ChartNotFoundError,
    DependencyError,
    LintError,
    MigrationError,
    ReleaseError,
    ReleaseFailedError,
    ReleaseNotFoundError,
    RollbackError,
    SignatureVerificationError,
    StorageVersionChangedError,
)


@pytest.mark.unit
class TestReleaseError:
    """Test ReleaseError and its subclasses."""

    def test_str_without_release(self) -> None:
        assert str(ReleaseError("boom")) == "boom"

    def test_str_with_release(self) -> None:
        assert str(ReleaseError("boom", release="web", namespace="apps")) == "boom [release apps/web]"
        assert str(ReleaseError("boom", release="web")) == "boom [release web]"

    def test_not_found_messages(self) -> None:
        assert ReleaseNotFoundError("web").message == "release 'web' not found"
        assert ReleaseNotFoundError("web", revision=3).message == "revision 3 of release 'web' not found"

    def test_chart_not_found_messages(self) -> None:
        assert ChartNotFoundError("stable/web").message == "chart 'stable/web' not found"
        error = ChartNotFoundError("web", "^2.0.0", reason="no match")
        assert error.message == "chart 'web' matching version '^2.0.0' not found: no match"

    def test_unmet_dependencies_listed(self) -> None:
        unmet = [
            ChartDependency(name="redis", version="^17.0.0"),
            ChartDependency(name="postgresql", alias="db"),
        ]

        error = DependencyError.for_unmet("web", unmet)

        assert error.message == "chart 'web' has unmet dependencies: redis (^17.0.0), db (*)"
        assert error.unmet == unmet

    def test_signature_error_is_dependency_error(self) -> None:
        error = SignatureVerificationError("web-1.0.0.tgz", "BAD signature")

        assert isinstance(error, DependencyError)
        assert error.message == "signature verification failed for web-1.0.0.tgz: BAD signature"

    def test_lint_error_joins_messages(self) -> None:
        error = LintError("web", ["[ERROR] a: x", "[ERROR] b: y"])

        assert error.message == "chart 'web' failed linting: [ERROR] a: x; [ERROR] b: y"

    def test_storage_version_change(self) -> None:
        error = StorageVersionChangedError("widgets.example.com", "v1", "v2")

        assert isinstance(error, MigrationError)
        assert error.crd == "widgets.example.com"
        assert "from 'v1' to 'v2'" in error.message

    def test_rollback_error_keeps_both_causes(self) -> None:
        release_error = ReleaseFailedError("apply failed")
        rollback_error = RuntimeError("cluster unreachable")

        error = RollbackError(release_error, rollback_error, release="web", namespace="default")

        assert error.release_error is release_error
        assert error.rollback_error is rollback_error
        assert str(error) == (
            "release failed, rollback failed: release error: apply failed, "
            "rollback error: cluster unreachable [release default/web]"
        )
