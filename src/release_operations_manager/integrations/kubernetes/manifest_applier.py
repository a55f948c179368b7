"""Apply and delete rendered release manifests.

Resources are created first; resources that already exist (409) are updated
with server-side apply through the dynamic client. With ``wait`` the applier
then polls workloads until they report ready or the timeout elapses.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

FIELD_MANAGER = "rops"
DEFAULT_WAIT_TIMEOUT = 300.0
WAITABLE_KINDS = frozenset(
    {"Deployment", "StatefulSet", "ReplicaSet", "DaemonSet", "Job", "Pod", "PersistentVolumeClaim"}
)


def load_manifest_documents(manifest: str) -> list[dict[str, Any]]:
    """Parse multi-document manifest text, dropping empty documents.

    Raises:
        KubernetesValidationError: If the text is not valid YAML or a
            document is not a mapping.
    """
    yaml = YAML(typ="safe")
    try:
        documents = list(yaml.load_all(manifest))
    except YAMLError as e:
        raise KubernetesValidationError(message=f"Failed to parse manifest: {e}") from e

    result: list[dict[str, Any]] = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise KubernetesValidationError(message="Manifest contains a non-mapping document")
        result.append(doc)
    return result


def resource_identifier(manifest: dict[str, Any]) -> str:
    """Human-readable ``Kind/name`` identifier."""
    kind = manifest.get("kind", "Unknown")
    name = manifest.get("metadata", {}).get("name", "unnamed")
    return f"{kind}/{name}"


def needs_wait(manifest: dict[str, Any]) -> bool:
    """Whether *manifest* describes a resource with a readiness notion."""
    if manifest.get("kind") == "Service":
        return bool((manifest.get("spec") or {}).get("type") == "LoadBalancer")
    return manifest.get("kind") in WAITABLE_KINDS


def _condition(status: dict[str, Any], condition_type: str) -> str | None:
    for condition in status.get("conditions") or []:
        if condition.get("type") == condition_type:
            status_value: str | None = condition.get("status")
            return status_value
    return None


def resource_ready(obj: dict[str, Any]) -> bool:
    """Whether a live object has reached its ready state.

    Kinds without a readiness notion are always ready.

    Raises:
        KubernetesError: If a Job has failed.
    """
    kind = obj.get("kind")
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    generation = (obj.get("metadata") or {}).get("generation")

    if kind in ("Deployment", "StatefulSet", "ReplicaSet"):
        if generation is not None and status.get("observedGeneration", 0) < generation:
            return False
        replicas = spec.get("replicas", 1)
        ready_field = "availableReplicas" if kind == "Deployment" else "readyReplicas"
        if kind == "Deployment" and status.get("updatedReplicas", 0) < replicas:
            return False
        return bool(status.get(ready_field, 0) >= replicas)
    if kind == "DaemonSet":
        if generation is not None and status.get("observedGeneration", 0) < generation:
            return False
        return bool(status.get("numberReady", 0) >= status.get("desiredNumberScheduled", 0))
    if kind == "Job":
        if _condition(status, "Failed") == "True":
            raise KubernetesError(message=f"{resource_identifier(obj)} failed")
        return bool(status.get("succeeded", 0) >= spec.get("completions", 1))
    if kind == "Pod":
        return status.get("phase") == "Succeeded" or _condition(status, "Ready") == "True"
    if kind == "PersistentVolumeClaim":
        return status.get("phase") == "Bound"
    if kind == "Service" and spec.get("type") == "LoadBalancer":
        return bool((status.get("loadBalancer") or {}).get("ingress"))
    return True


class KubernetesManifestApplier:
    """Create-or-apply and delete the resources of a release manifest."""

    def __init__(self, client: KubernetesClient, *, poll_interval: float = 2.0) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._log = logger.bind(entity="manifest")

    def apply(
        self,
        manifest: str,
        namespace: str,
        *,
        force: bool = False,
        create_namespace: bool = False,
        wait: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Apply every resource in *manifest*, stopping at the first failure.

        Args:
            manifest: Multi-document manifest text.
            namespace: Namespace for resources that do not name one.
            force: Server-side apply with conflicts forced, skipping create.
            create_namespace: Create *namespace* first when missing.
            wait: Block until every applied workload is ready.
            timeout: Seconds bounding each API request and the readiness wait.

        Raises:
            KubernetesError: On the first resource that cannot be applied.
            KubernetesTimeoutError: If resources are not ready within *timeout*.
        """
        if create_namespace:
            self.ensure_namespace(namespace, timeout=timeout)

        documents = load_manifest_documents(manifest)
        for document in documents:
            self._apply_single(document, namespace, force=force, timeout=timeout)
        self._log.info("manifest_applied", namespace=namespace, resources=len(documents))

        if wait:
            self.wait_until_ready(documents, namespace, timeout=timeout)

    def wait_until_ready(
        self,
        documents: list[dict[str, Any]],
        namespace: str,
        *,
        timeout: float | None = None,
    ) -> None:
        """Poll the live objects of *documents* until all are ready.

        Raises:
            KubernetesTimeoutError: If some resource is still not ready when
                *timeout* (default five minutes) elapses.
        """
        limit = DEFAULT_WAIT_TIMEOUT if timeout is None else timeout
        deadline = time.monotonic() + limit
        pending = [d for d in documents if needs_wait(d)]

        while True:
            pending = [d for d in pending if not self._is_ready(d, namespace, timeout)]
            if not pending:
                self._log.info("resources_ready", namespace=namespace)
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                names = ", ".join(resource_identifier(d) for d in pending)
                raise KubernetesTimeoutError(
                    message=f"Timed out waiting for {names} to become ready",
                    timeout_seconds=limit,
                )
            self._log.debug("waiting_for_resources", pending=[resource_identifier(d) for d in pending])
            time.sleep(min(self._poll_interval, remaining))

    def _is_ready(self, manifest: dict[str, Any], namespace: str, timeout: float | None) -> bool:
        name = manifest.get("metadata", {}).get("name")
        resource_api = self._dynamic_resource(manifest)
        kwargs: dict[str, Any] = {"name": name}
        if resource_api.namespaced:
            kwargs["namespace"] = manifest.get("metadata", {}).get("namespace") or namespace
        obj = self._client.call(
            resource_api.get,
            resource_type=manifest.get("kind"),
            resource_name=name,
            request_timeout=timeout,
            **kwargs,
        )
        live: dict[str, Any] = obj.to_dict()
        return resource_ready(live)

    def delete(self, manifest: str, namespace: str) -> None:
        """Delete every resource in *manifest*, in reverse order. Missing ones are ignored."""
        documents = load_manifest_documents(manifest)
        for document in reversed(documents):
            self._delete_single(document, namespace)
        self._log.info("manifest_deleted", namespace=namespace, resources=len(documents))

    def ensure_namespace(self, namespace: str, *, timeout: float | None = None) -> None:
        """Create *namespace* unless it already exists."""
        from kubernetes.client import V1Namespace, V1ObjectMeta

        body = V1Namespace(metadata=V1ObjectMeta(name=namespace))
        try:
            self._client.call(
                self._client.core_v1.create_namespace,
                body=body,
                resource_type="Namespace",
                resource_name=namespace,
                request_timeout=timeout,
            )
            self._log.info("namespace_created", namespace=namespace)
        except KubernetesConflictError:
            self._log.debug("namespace_exists", namespace=namespace)

    def _apply_single(
        self, manifest: dict[str, Any], namespace: str, *, force: bool, timeout: float | None
    ) -> None:
        from kubernetes import utils

        resource_id = resource_identifier(manifest)
        target_ns = manifest.get("metadata", {}).get("namespace") or namespace

        if force:
            self._server_side_apply(manifest, target_ns, resource_id, force=True, timeout=timeout)
            return

        try:
            create_kwargs: dict[str, Any] = {}
            if timeout is not None:
                create_kwargs["_request_timeout"] = timeout
            utils.create_from_dict(
                self._client.api_client, manifest, verbose=False, namespace=target_ns, **create_kwargs
            )
            self._log.debug("resource_created", resource=resource_id, namespace=target_ns)
        except utils.FailToCreateError as e:
            if any(getattr(ex, "status", None) == 409 for ex in e.api_exceptions):
                self._server_side_apply(manifest, target_ns, resource_id, force=False, timeout=timeout)
                return
            error = e.api_exceptions[0] if e.api_exceptions else e
            raise self._client.translate_api_exception(
                error,
                resource_type=manifest.get("kind"),
                resource_name=manifest.get("metadata", {}).get("name"),
                namespace=target_ns,
            ) from e
        except KubernetesError:
            raise
        except Exception as e:
            raise self._client.translate_api_exception(
                e,
                resource_type=manifest.get("kind"),
                resource_name=manifest.get("metadata", {}).get("name"),
                namespace=target_ns,
            ) from e

    def _dynamic_resource(self, manifest: dict[str, Any]) -> Any:
        try:
            return self._client.dynamic.resources.get(
                api_version=manifest.get("apiVersion", ""),
                kind=manifest.get("kind", ""),
            )
        except Exception as e:
            raise self._client.translate_api_exception(e, resource_type=manifest.get("kind")) from e

    def _server_side_apply(
        self,
        manifest: dict[str, Any],
        namespace: str,
        resource_id: str,
        *,
        force: bool,
        timeout: float | None = None,
    ) -> None:
        resource_api = self._dynamic_resource(manifest)
        kwargs: dict[str, Any] = {"body": manifest, "field_manager": FIELD_MANAGER}
        if resource_api.namespaced:
            kwargs["namespace"] = namespace
        if force:
            kwargs["force_conflicts"] = True

        self._client.call(
            resource_api.server_side_apply,
            resource_type=manifest.get("kind"),
            resource_name=manifest.get("metadata", {}).get("name"),
            request_timeout=timeout,
            **kwargs,
        )
        self._log.debug("resource_configured", resource=resource_id, namespace=namespace, force=force)

    def _delete_single(self, manifest: dict[str, Any], namespace: str) -> None:
        resource_id = resource_identifier(manifest)
        name = manifest.get("metadata", {}).get("name")
        target_ns = manifest.get("metadata", {}).get("namespace") or namespace

        resource_api = self._dynamic_resource(manifest)
        kwargs: dict[str, Any] = {"name": name}
        if resource_api.namespaced:
            kwargs["namespace"] = target_ns
        try:
            self._client.call(
                resource_api.delete,
                resource_type=manifest.get("kind"),
                resource_name=name,
                **kwargs,
            )
            self._log.debug("resource_deleted", resource=resource_id, namespace=target_ns)
        except KubernetesNotFoundError:
            self._log.debug("resource_already_absent", resource=resource_id, namespace=target_ns)
