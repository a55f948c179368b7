"""Unit tests for Kubernetes exceptions."""

from __future__ import annotations

import pytest

from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesError:
    """Test KubernetesError base exception."""

    def test_init_minimal(self) -> None:
        """Test initialization with minimal arguments."""
        error = KubernetesError("Something went wrong")
        assert error.message == "Something went wrong"
        assert error.status_code is None
        assert error.resource_type is None
        assert error.resource_name is None
        assert error.namespace is None

    @pytest.mark.parametrize(
        ("kwargs", "expected"),
        [
            ({}, "Test error"),
            ({"status_code": 404}, "Test error (status: 404)"),
            ({"resource_type": "Secret", "resource_name": "rops.release.v1.web.v1"}, "Test error [Secret/rops.release.v1.web.v1]"),
            (
                {"status_code": 500, "resource_type": "Pod", "resource_name": "web", "namespace": "apps"},
                "Test error (status: 500) [Pod/web in apps]",
            ),
        ],
    )
    def test_str(self, kwargs: dict, expected: str) -> None:
        assert str(KubernetesError("Test error", **kwargs)) == expected


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSubclasses:
    """Test the status-specific exceptions."""

    def test_connection_error_keeps_cause(self) -> None:
        cause = OSError("connection refused")
        error = KubernetesConnectionError(original_error=cause)

        assert error.message == "Failed to connect to Kubernetes cluster"
        assert error.original_error is cause

    def test_auth_error(self) -> None:
        error = KubernetesAuthError(status_code=403, reason="Forbidden")

        assert error.status_code == 403
        assert error.reason == "Forbidden"
        assert str(error) == "Kubernetes authentication/authorization failed (status: 403)"

    def test_not_found_message(self) -> None:
        error = KubernetesNotFoundError(
            resource_type="CustomResourceDefinition", resource_name="widgets.example.com"
        )

        assert error.status_code == 404
        assert error.message == "CustomResourceDefinition 'widgets.example.com' not found"

    def test_not_found_with_namespace(self) -> None:
        error = KubernetesNotFoundError(resource_type="Secret", resource_name="s", namespace="apps")

        assert error.message == "Secret 's' not found in namespace 'apps'"

    def test_validation_error(self) -> None:
        error = KubernetesValidationError(validation_errors={"spec": "required"})

        assert error.status_code == 422
        assert error.validation_errors == {"spec": "required"}
        assert KubernetesValidationError().validation_errors == {}

    def test_conflict_message(self) -> None:
        error = KubernetesConflictError(resource_type="CustomResourceDefinition", resource_name="widgets.example.com")

        assert error.status_code == 409
        assert error.message == "CustomResourceDefinition 'widgets.example.com' conflicts with the stored object"

    def test_timeout_message(self) -> None:
        assert KubernetesTimeoutError(timeout_seconds=30).message == "Kubernetes operation timed out (after 30s)"

    @pytest.mark.parametrize(
        "error_class",
        [
            KubernetesConnectionError,
            KubernetesAuthError,
            KubernetesNotFoundError,
            KubernetesValidationError,
            KubernetesConflictError,
            KubernetesTimeoutError,
        ],
    )
    def test_inheritance(self, error_class: type[KubernetesError]) -> None:
        assert isinstance(error_class(), KubernetesError)
