"""Unit tests for release history stores."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest

from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesNotFoundError,
)
from release_operations_manager.integrations.kubernetes.models.release import (
    ReleaseStateMask,
    ReleaseStatus,
)
from release_operations_manager.services.release.exceptions import (
    ReleaseNotFoundError,
    ReleaseValidationError,
)
from release_operations_manager.services.release.store import (
    PAYLOAD_KEY,
    InMemoryReleaseStore,
    SecretReleaseStore,
    decode_release,
    encode_release,
)

from tests.unit.services.release.conftest import make_release


@pytest.mark.unit
class TestInMemoryReleaseStore:
    """Tests for InMemoryReleaseStore."""

    def test_history_is_ordered(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(1, ReleaseStatus.SUPERSEDED))
        store.create(make_release(2, ReleaseStatus.DEPLOYED))

        assert [r.revision for r in store.history("web", "default")] == [1, 2]

    def test_create_rejects_non_increasing_revision(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(2, ReleaseStatus.DEPLOYED))

        with pytest.raises(ReleaseValidationError, match="not newer"):
            store.create(make_release(2, ReleaseStatus.DEPLOYED))
        with pytest.raises(ReleaseValidationError):
            store.create(make_release(1, ReleaseStatus.DEPLOYED))

    def test_get_latest_and_specific(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(1, ReleaseStatus.SUPERSEDED))
        store.create(make_release(2, ReleaseStatus.DEPLOYED))

        assert store.get("web", "default").revision == 2
        assert store.get("web", "default", 1).status is ReleaseStatus.SUPERSEDED

    def test_get_missing(self, store: InMemoryReleaseStore) -> None:
        with pytest.raises(ReleaseNotFoundError):
            store.get("web", "default")

        store.create(make_release(1, ReleaseStatus.DEPLOYED))
        with pytest.raises(ReleaseNotFoundError) as exc_info:
            store.get("web", "default", 7)
        assert exc_info.value.revision == 7

    def test_returned_releases_are_copies(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(1, ReleaseStatus.DEPLOYED))

        fetched = store.get("web", "default")
        fetched.status = ReleaseStatus.FAILED

        assert store.get("web", "default").status is ReleaseStatus.DEPLOYED

    def test_list_latest_with_mask(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(1, ReleaseStatus.SUPERSEDED))
        store.create(make_release(2, ReleaseStatus.DEPLOYED))
        store.create(make_release(1, ReleaseStatus.FAILED, name="api"))
        store.create(make_release(1, ReleaseStatus.DEPLOYED, name="db", namespace="data"))

        deployed = store.list_releases(states=ReleaseStateMask.DEPLOYED)
        in_default = store.list_releases(namespace="default")

        assert [(r.name, r.revision) for r in deployed] == [("db", 1), ("web", 2)]
        assert [r.name for r in in_default] == ["api", "web"]

    def test_update_missing_revision(self, store: InMemoryReleaseStore) -> None:
        with pytest.raises(ReleaseNotFoundError):
            store.update(make_release(1, ReleaseStatus.DEPLOYED))

    def test_delete(self, store: InMemoryReleaseStore) -> None:
        store.create(make_release(1, ReleaseStatus.SUPERSEDED))
        store.create(make_release(2, ReleaseStatus.DEPLOYED))

        store.delete("web", "default", 1)
        store.delete("web", "default", 2)

        assert store.history("web", "default") == []


@pytest.mark.unit
class TestReleaseEncoding:
    """Tests for the release payload encoding."""

    def test_round_trip_preserves_fields(self) -> None:
        release = make_release(3, ReleaseStatus.DEPLOYED, config={"image": {"tag": "2.0"}})

        decoded = decode_release(encode_release(release))

        assert decoded.to_dict() == release.to_dict()


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Kubernetes client whose ``call`` invokes the API method directly."""
    client = MagicMock()
    client.call.side_effect = lambda fn, *args, resource_type=None, resource_name=None, **kwargs: fn(
        *args, **kwargs
    )
    return client


def secret_for(release_revision: int, status: ReleaseStatus) -> MagicMock:
    release = make_release(release_revision, status)
    secret = MagicMock()
    secret.data = {PAYLOAD_KEY: base64.b64encode(encode_release(release).encode("ascii")).decode("ascii")}
    return secret


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSecretReleaseStore:
    """Tests for SecretReleaseStore against a mocked CoreV1Api."""

    def test_secret_name(self) -> None:
        assert SecretReleaseStore.secret_name("web", 4) == "rops.release.v1.web.v4"

    def test_history_uses_label_selector(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(
            items=[secret_for(2, ReleaseStatus.DEPLOYED), secret_for(1, ReleaseStatus.SUPERSEDED)]
        )
        store = SecretReleaseStore(mock_k8s_client)

        history = store.history("web", "default")

        assert [r.revision for r in history] == [1, 2]
        kwargs = mock_k8s_client.core_v1.list_namespaced_secret.call_args.kwargs
        assert kwargs["label_selector"] == "owner=rops,name=web"
        assert kwargs["namespace"] == "default"

    def test_create_writes_labelled_secret(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(items=[])
        store = SecretReleaseStore(mock_k8s_client)
        release = make_release(1, ReleaseStatus.PENDING_INSTALL)

        store.create(release)

        body = mock_k8s_client.core_v1.create_namespaced_secret.call_args.kwargs["body"]
        assert body.metadata.name == "rops.release.v1.web.v1"
        assert body.metadata.labels == {
            "owner": "rops",
            "name": "web",
            "status": "pending-install",
            "version": "1",
        }
        payload = base64.b64decode(body.data[PAYLOAD_KEY]).decode("ascii")
        assert decode_release(payload).to_dict() == release.to_dict()

    def test_create_rejects_older_revision(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(
            items=[secret_for(3, ReleaseStatus.DEPLOYED)]
        )
        store = SecretReleaseStore(mock_k8s_client)

        with pytest.raises(ReleaseValidationError):
            store.create(make_release(2, ReleaseStatus.PENDING_UPGRADE))
        mock_k8s_client.core_v1.create_namespaced_secret.assert_not_called()

    def test_create_conflict_is_validation_error(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.list_namespaced_secret.return_value = MagicMock(items=[])
        mock_k8s_client.core_v1.create_namespaced_secret.side_effect = KubernetesConflictError(
            resource_type="Secret", resource_name="rops.release.v1.web.v1"
        )
        store = SecretReleaseStore(mock_k8s_client)

        with pytest.raises(ReleaseValidationError, match="already exists"):
            store.create(make_release(1, ReleaseStatus.PENDING_INSTALL))

    def test_get_missing_revision(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.read_namespaced_secret.side_effect = KubernetesNotFoundError(
            resource_type="Secret", resource_name="rops.release.v1.web.v9"
        )
        store = SecretReleaseStore(mock_k8s_client)

        with pytest.raises(ReleaseNotFoundError):
            store.get("web", "default", 9)

    def test_delete_ignores_missing(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.delete_namespaced_secret.side_effect = KubernetesNotFoundError()
        store = SecretReleaseStore(mock_k8s_client)

        store.delete("web", "default", 1)

    def test_list_all_namespaces(self, mock_k8s_client: MagicMock) -> None:
        mock_k8s_client.core_v1.list_secret_for_all_namespaces.return_value = MagicMock(
            items=[secret_for(1, ReleaseStatus.SUPERSEDED), secret_for(2, ReleaseStatus.DEPLOYED)]
        )
        store = SecretReleaseStore(mock_k8s_client)

        releases = store.list_releases(states=ReleaseStateMask.DEPLOYED)

        assert [r.revision for r in releases] == [2]
