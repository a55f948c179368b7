"""Release history stores.

``SecretReleaseStore`` keeps one Secret per revision in the release namespace:
the release is serialized to JSON, gzip-compressed and base64-encoded under
the ``release`` key. Labels carry name, status and revision so listings never
need to decode every payload. ``InMemoryReleaseStore`` has the same semantics
without a cluster.
"""

from __future__ import annotations

import base64
import copy
import gzip
import json
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import structlog

from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesNotFoundError,
)
from release_operations_manager.integrations.kubernetes.models.release import (
    Release,
    ReleaseStateMask,
)
from release_operations_manager.services.release.exceptions import (
    ReleaseNotFoundError,
    ReleaseValidationError,
)

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

OWNER_LABEL_VALUE = "rops"
SECRET_TYPE = "rops.io/release.v1"
SECRET_NAME_PREFIX = "rops.release.v1"
PAYLOAD_KEY = "release"


def latest_per_release(releases: list[Release]) -> list[Release]:
    """Keep the highest revision of every (name, namespace)."""
    latest: dict[tuple[str, str], Release] = {}
    for release in releases:
        current = latest.get(release.key)
        if current is None or release.revision > current.revision:
            latest[release.key] = release
    return sorted(latest.values(), key=lambda r: (r.namespace, r.name))


def filter_by_mask(releases: list[Release], states: ReleaseStateMask | None) -> list[Release]:
    if states is None:
        return releases
    return [r for r in releases if states.matches(r.status)]


def encode_release(release: Release) -> str:
    """Serialize a release to base64(gzip(json))."""
    raw = json.dumps(release.to_dict(), sort_keys=True).encode("utf-8")
    return base64.b64encode(gzip.compress(raw)).decode("ascii")


def decode_release(payload: str) -> Release:
    """Inverse of :func:`encode_release`."""
    raw = gzip.decompress(base64.b64decode(payload))
    return Release.from_dict(json.loads(raw.decode("utf-8")))


class InMemoryReleaseStore:
    """Process-local release history, guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._revisions: dict[tuple[str, str], dict[int, Release]] = defaultdict(dict)

    def list_releases(
        self,
        namespace: str | None = None,
        states: ReleaseStateMask | None = None,
    ) -> list[Release]:
        with self._lock:
            everything = [
                copy.deepcopy(r)
                for (_, ns), revisions in self._revisions.items()
                if namespace is None or ns == namespace
                for r in revisions.values()
            ]
        return filter_by_mask(latest_per_release(everything), states)

    def history(self, name: str, namespace: str) -> list[Release]:
        with self._lock:
            revisions = self._revisions.get((name, namespace), {})
            return [copy.deepcopy(revisions[n]) for n in sorted(revisions)]

    def get(self, name: str, namespace: str, revision: int | None = None) -> Release:
        with self._lock:
            revisions = self._revisions.get((name, namespace), {})
            if not revisions:
                raise ReleaseNotFoundError(name, namespace)
            number = revision if revision is not None else max(revisions)
            if number not in revisions:
                raise ReleaseNotFoundError(name, namespace, revision)
            return copy.deepcopy(revisions[number])

    def create(self, release: Release) -> None:
        with self._lock:
            revisions = self._revisions[release.key]
            if revisions and release.revision <= max(revisions):
                raise ReleaseValidationError(
                    f"revision {release.revision} is not newer than stored revision {max(revisions)}",
                    release=release.name,
                    namespace=release.namespace,
                )
            revisions[release.revision] = copy.deepcopy(release)

    def update(self, release: Release) -> None:
        with self._lock:
            revisions = self._revisions.get(release.key, {})
            if release.revision not in revisions:
                raise ReleaseNotFoundError(release.name, release.namespace, release.revision)
            revisions[release.revision] = copy.deepcopy(release)

    def delete(self, name: str, namespace: str, revision: int) -> None:
        with self._lock:
            revisions = self._revisions.get((name, namespace), {})
            revisions.pop(revision, None)
            if not revisions:
                self._revisions.pop((name, namespace), None)


class SecretReleaseStore:
    """Release history persisted as labelled Secrets."""

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity="release_store")

    @staticmethod
    def secret_name(name: str, revision: int) -> str:
        return f"{SECRET_NAME_PREFIX}.{name}.v{revision}"

    @staticmethod
    def _labels(release: Release) -> dict[str, str]:
        return {
            "owner": OWNER_LABEL_VALUE,
            "name": release.name,
            "status": release.status.value,
            "version": str(release.revision),
        }

    def _body(self, release: Release) -> Any:
        from kubernetes.client import V1ObjectMeta, V1Secret

        return V1Secret(
            metadata=V1ObjectMeta(
                name=self.secret_name(release.name, release.revision),
                namespace=release.namespace,
                labels=self._labels(release),
            ),
            type=SECRET_TYPE,
            data={PAYLOAD_KEY: base64.b64encode(encode_release(release).encode("ascii")).decode("ascii")},
        )

    @staticmethod
    def _decode_secret(secret: Any) -> Release:
        data = secret.data or {}
        payload = base64.b64decode(data[PAYLOAD_KEY]).decode("ascii")
        return decode_release(payload)

    def _list_secrets(self, namespace: str | None, selector: str) -> list[Release]:
        core = self._client.core_v1
        if namespace is None:
            result = self._client.call(
                core.list_secret_for_all_namespaces,
                label_selector=selector,
                resource_type="Secret",
            )
        else:
            result = self._client.call(
                core.list_namespaced_secret,
                namespace=namespace,
                label_selector=selector,
                resource_type="Secret",
            )
        return [self._decode_secret(item) for item in result.items or []]

    def list_releases(
        self,
        namespace: str | None = None,
        states: ReleaseStateMask | None = None,
    ) -> list[Release]:
        releases = self._list_secrets(namespace, f"owner={OWNER_LABEL_VALUE}")
        return filter_by_mask(latest_per_release(releases), states)

    def history(self, name: str, namespace: str) -> list[Release]:
        releases = self._list_secrets(namespace, f"owner={OWNER_LABEL_VALUE},name={name}")
        return sorted(releases, key=lambda r: r.revision)

    def get(self, name: str, namespace: str, revision: int | None = None) -> Release:
        if revision is None:
            history = self.history(name, namespace)
            if not history:
                raise ReleaseNotFoundError(name, namespace)
            return history[-1]

        secret_name = self.secret_name(name, revision)
        try:
            secret = self._client.call(
                self._client.core_v1.read_namespaced_secret,
                name=secret_name,
                namespace=namespace,
                resource_type="Secret",
                resource_name=secret_name,
            )
        except KubernetesNotFoundError as e:
            raise ReleaseNotFoundError(name, namespace, revision) from e
        return self._decode_secret(secret)

    def create(self, release: Release) -> None:
        history = self.history(release.name, release.namespace)
        if history and release.revision <= history[-1].revision:
            raise ReleaseValidationError(
                f"revision {release.revision} is not newer than stored revision {history[-1].revision}",
                release=release.name,
                namespace=release.namespace,
            )
        try:
            self._client.call(
                self._client.core_v1.create_namespaced_secret,
                namespace=release.namespace,
                body=self._body(release),
                resource_type="Secret",
                resource_name=self.secret_name(release.name, release.revision),
            )
        except KubernetesConflictError as e:
            raise ReleaseValidationError(
                f"revision {release.revision} already exists",
                release=release.name,
                namespace=release.namespace,
            ) from e
        self._log.debug("release_recorded", name=release.name, revision=release.revision)

    def update(self, release: Release) -> None:
        secret_name = self.secret_name(release.name, release.revision)
        try:
            self._client.call(
                self._client.core_v1.replace_namespaced_secret,
                name=secret_name,
                namespace=release.namespace,
                body=self._body(release),
                resource_type="Secret",
                resource_name=secret_name,
            )
        except KubernetesNotFoundError as e:
            raise ReleaseNotFoundError(release.name, release.namespace, release.revision) from e
        self._log.debug(
            "release_updated",
            name=release.name,
            revision=release.revision,
            status=release.status.value,
        )

    def delete(self, name: str, namespace: str, revision: int) -> None:
        secret_name = self.secret_name(name, revision)
        try:
            self._client.call(
                self._client.core_v1.delete_namespaced_secret,
                name=secret_name,
                namespace=namespace,
                resource_type="Secret",
                resource_name=secret_name,
            )
        except KubernetesNotFoundError:
            self._log.debug("release_revision_absent", name=name, revision=revision)
