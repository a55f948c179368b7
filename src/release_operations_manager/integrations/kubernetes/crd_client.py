"""CustomResourceDefinition access through the dynamic client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from release_operations_manager.integrations.kubernetes.exceptions import KubernetesNotFoundError
from release_operations_manager.integrations.kubernetes.models.crd import CRD_KIND, SchemaEncoding

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

SERVER_SIDE_DRY_RUN = "All"


class CRDClient:
    """Get, create and replace CRDs in a specific API encoding."""

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity="crd")

    def _resource(self, encoding: SchemaEncoding) -> Any:
        try:
            return self._client.dynamic.resources.get(api_version=encoding.value, kind=CRD_KIND)
        except Exception as e:
            raise self._client.translate_api_exception(e, resource_type=CRD_KIND) from e

    def get(self, name: str, encoding: SchemaEncoding) -> dict[str, Any] | None:
        """Return the stored CRD as a dict, or None when it does not exist."""
        resource = self._resource(encoding)
        try:
            obj = self._client.call(
                resource.get,
                name=name,
                resource_type=CRD_KIND,
                resource_name=name,
            )
        except KubernetesNotFoundError:
            self._log.debug("crd_not_found", name=name)
            return None
        result: dict[str, Any] = obj.to_dict()
        return result

    def create(self, body: dict[str, Any], encoding: SchemaEncoding) -> dict[str, Any]:
        name = body.get("metadata", {}).get("name")
        resource = self._resource(encoding)
        obj = self._client.call(
            resource.create,
            body=body,
            resource_type=CRD_KIND,
            resource_name=name,
        )
        self._log.info("crd_created", name=name, encoding=encoding.value)
        result: dict[str, Any] = obj.to_dict()
        return result

    def update(
        self,
        body: dict[str, Any],
        encoding: SchemaEncoding,
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Replace a CRD. ``metadata.resourceVersion`` acts as the precondition."""
        name = body.get("metadata", {}).get("name")
        resource = self._resource(encoding)
        kwargs: dict[str, Any] = {"body": body}
        if dry_run:
            kwargs["dry_run"] = SERVER_SIDE_DRY_RUN
        obj = self._client.call(
            resource.replace,
            resource_type=CRD_KIND,
            resource_name=name,
            **kwargs,
        )
        self._log.debug("crd_replaced", name=name, dry_run=dry_run)
        result: dict[str, Any] = obj.to_dict()
        return result
