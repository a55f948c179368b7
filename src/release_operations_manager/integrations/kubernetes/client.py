"""Kubernetes API client wrapper.

Wraps the official kubernetes Python client with context selection, lazy API
initialization, retry logic for transient failures, and consistent error
translation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from release_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, CoreV1Api
    from kubernetes.dynamic import DynamicClient

    from release_operations_manager.integrations.kubernetes.config import (
        KubernetesPluginConfig,
    )

logger = structlog.get_logger()

T = TypeVar("T")


class KubernetesClient:
    """Kubernetes API client used by the release stores, CRD client and applier.

    Example:
        ```python
        config = KubernetesPluginConfig.from_env()
        with KubernetesClient(config) as client:
            secrets = client.call(
                client.core_v1.list_namespaced_secret, namespace="default"
            )
        ```
    """

    def __init__(self, plugin_config: KubernetesPluginConfig) -> None:
        """Initialize the client and load kubeconfig or in-cluster config.

        Args:
            plugin_config: Cluster selection and call defaults.
        """
        self._config = plugin_config
        self._retries = plugin_config.defaults.retry_attempts
        self._current_context: str | None = None

        self._api_client: ApiClient | None = None
        self._core_v1: CoreV1Api | None = None
        self._dynamic: DynamicClient | None = None

        self._load_config()

        logger.info(
            "kubernetes_client_initialized",
            context=self._current_context,
            default_namespace=plugin_config.get_active_namespace(),
        )

    def _load_config(self) -> None:
        """Load Kubernetes configuration from kubeconfig or in-cluster."""
        from kubernetes import config
        from kubernetes.config import ConfigException

        active_context = self._config.get_active_context()

        try:
            kubeconfig_path = None
            if self._config.active_cluster and self._config.active_cluster in self._config.clusters:
                kubeconfig_path = self._config.clusters[self._config.active_cluster].kubeconfig

            config.load_kube_config(
                config_file=kubeconfig_path,
                context=active_context,
            )
            self._current_context = active_context
            logger.debug("loaded_kubeconfig", context=active_context, kubeconfig=kubeconfig_path)
        except ConfigException:
            try:
                config.load_incluster_config()
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config")
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

        self._invalidate_api_cache()

    def _invalidate_api_cache(self) -> None:
        """Clear cached API instances."""
        self._api_client = None
        self._core_v1 = None
        self._dynamic = None

    # =========================================================================
    # Lazy API Accessors
    # =========================================================================

    @property
    def api_client(self) -> ApiClient:
        """Shared ApiClient instance."""
        if self._api_client is None:
            from kubernetes.client import ApiClient

            self._api_client = ApiClient()
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        """CoreV1Api instance (secrets, namespaces)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self.api_client)
        return self._core_v1

    @property
    def dynamic(self) -> DynamicClient:
        """DynamicClient for arbitrary group/version/kind access."""
        if self._dynamic is None:
            from kubernetes.dynamic import DynamicClient

            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    def get_current_context(self) -> str:
        """Get the current active context name."""
        return self._current_context or "unknown"

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate an ApiException or DynamicApiError to a KubernetesError.

        Args:
            e: The original exception.
            resource_type: Kind of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from urllib3.exceptions import MaxRetryError, ProtocolError, TimeoutError

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, TimeoutError):
            return KubernetesTimeoutError(message=f"Request timed out: {e}")

        if isinstance(e, (MaxRetryError, ProtocolError)):
            return KubernetesConnectionError(
                message=f"Failed to reach Kubernetes API: {e}",
                original_error=e,
            )

        status = getattr(e, "status", None)
        reason = getattr(e, "reason", None)
        if not isinstance(status, int):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (401, 403):
            return KubernetesAuthError(
                message=reason or "Authentication/authorization failed",
                status_code=status,
                reason=reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            return KubernetesValidationError(
                message=reason or "Validation failed",
                status_code=status,
            )

        return KubernetesError(
            message=reason or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    # =========================================================================
    # Calls
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Create a retry decorator for transient connection errors."""
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        resource_type: str | None = None,
        resource_name: str | None = None,
        request_timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Invoke an API method with retries, request timeout and error translation.

        Connection errors are retried; every other failure is translated once
        and raised. A ``namespace`` keyword is forwarded to *fn* and also used
        as error context. *request_timeout* overrides the configured timeout
        for this call.
        """
        if request_timeout is None:
            request_timeout = self._config.defaults.request_timeout
        kwargs.setdefault("_request_timeout", request_timeout)

        def _invoke() -> T:
            try:
                return fn(*args, **kwargs)
            except KubernetesError:
                raise
            except Exception as e:
                raise self.translate_api_exception(
                    e,
                    resource_type=resource_type,
                    resource_name=resource_name,
                    namespace=kwargs.get("namespace"),
                ) from e

        result: T = self.make_retry_decorator()(_invoke)()
        return result

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def default_namespace(self) -> str:
        """Default namespace from config."""
        return self._config.get_active_namespace()

    @property
    def timeout(self) -> int:
        """Configured operation timeout in seconds."""
        return self._config.get_active_timeout()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release resources."""
        if self._api_client is not None:
            self._api_client.close()
        self._invalidate_api_cache()
        logger.debug("kubernetes_client_closed")

    def __enter__(self) -> KubernetesClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
