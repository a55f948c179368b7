"""Unit tests for release models."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from release_operations_manager.integrations.kubernetes.models.chart import ChartMetadata
from release_operations_manager.integrations.kubernetes.models.release import (
    HookManifest,
    Release,
    ReleaseSpec,
    ReleaseStateMask,
    ReleaseStatus,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestReleaseStateMask:
    """Tests for ReleaseStateMask."""

    @pytest.mark.parametrize("status", list(ReleaseStatus))
    def test_every_status_has_a_bit(self, status: ReleaseStatus) -> None:
        assert ReleaseStateMask.ALL.matches(status)

    def test_active_excludes_uninstalled(self) -> None:
        assert not ReleaseStateMask.ACTIVE.matches(ReleaseStatus.UNINSTALLED)
        assert ReleaseStateMask.ACTIVE.matches(ReleaseStatus.PENDING_ROLLBACK)

    def test_pending_group(self) -> None:
        assert ReleaseStateMask.PENDING.matches(ReleaseStatus.PENDING_INSTALL)
        assert not ReleaseStateMask.PENDING.matches(ReleaseStatus.DEPLOYED)
        assert ReleaseStatus.PENDING_UPGRADE.is_pending
        assert not ReleaseStatus.FAILED.is_pending


@pytest.mark.unit
@pytest.mark.kubernetes
class TestRelease:
    """Tests for the Release record."""

    def test_serialization_keeps_hooks(self) -> None:
        release = Release(
            name="web",
            namespace="apps",
            revision=4,
            status=ReleaseStatus.SUPERSEDED,
            chart=ChartMetadata(name="web", version="1.2.0", app_version="2.4"),
            config={"replicas": 3},
            hooks=[HookManifest(path="web/templates/test.yaml", manifest="kind: Pod", kind="Pod", events=["test"])],
            description="Upgrade complete",
        )

        restored = Release.from_dict(release.to_dict())

        assert restored == release
        assert restored.key == ("web", "apps")
        assert restored.chart_label == "web-1.2.0"

    def test_touch_updates_status(self) -> None:
        release = Release(
            name="web",
            namespace="apps",
            revision=1,
            status=ReleaseStatus.PENDING_INSTALL,
            chart=ChartMetadata(name="web", version="1.0.0"),
            description="Initial install underway",
            updated="2024-01-01T00:00:00+00:00",
        )

        release.touch(ReleaseStatus.DEPLOYED)

        assert release.status is ReleaseStatus.DEPLOYED
        assert release.description == "Initial install underway"
        assert release.updated != "2024-01-01T00:00:00+00:00"

    def test_from_dict_defaults_to_failed(self) -> None:
        assert Release.from_dict({"name": "web"}).status is ReleaseStatus.FAILED


@pytest.mark.unit
@pytest.mark.kubernetes
class TestReleaseSpec:
    """Tests for ReleaseSpec."""

    def test_defaults(self) -> None:
        spec = ReleaseSpec(chart="./charts/web")

        assert spec.api_version == "v1"
        assert spec.namespace == "default"
        assert spec.timeout == timedelta(minutes=5)
        assert spec.wait is False
        assert spec.max_history is None
        assert spec.post_renderer == ""

    def test_atomic_implies_wait(self) -> None:
        assert ReleaseSpec(chart="web", atomic=True).wait is True

    def test_frozen(self) -> None:
        spec = ReleaseSpec(chart="web")

        with pytest.raises(ValidationError):
            spec.chart = "other"  # type: ignore[misc]

    def test_unknown_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ReleaseSpec(chart="web", recreate_pods=True)  # type: ignore[call-arg]

    def test_negative_history_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ReleaseSpec(chart="web", max_history=-1)
