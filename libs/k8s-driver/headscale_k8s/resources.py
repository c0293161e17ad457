"""Typed child-resource operations (create, apply, delete) for namespaced objects."""

import logging
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .cluster import ClusterConnection

logger = logging.getLogger(__name__)

# kind -> (API group accessor on ClusterConnection, method suffix)
_KINDS: dict[str, tuple[str, str]] = {
    "ConfigMap": ("core_v1", "namespaced_config_map"),
    "Secret": ("core_v1", "namespaced_secret"),
    "Service": ("core_v1", "namespaced_service"),
    "ServiceAccount": ("core_v1", "namespaced_service_account"),
    "StatefulSet": ("apps_v1", "namespaced_stateful_set"),
    "Role": ("rbac_v1", "namespaced_role"),
    "RoleBinding": ("rbac_v1", "namespaced_role_binding"),
}


def is_transient(error: BaseException) -> bool:
    """
    Check whether an API error is worth retrying.

    Args:
        error: Raised exception

    Returns:
        True for throttling, server-side and transport errors
    """
    if isinstance(error, ApiException):
        return error.status in (429, 500, 502, 503, 504) or error.status == 0
    return isinstance(error, (ConnectionError, TimeoutError))


api_retry = retry(
    retry=retry_if_exception(is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class ResourceManager:
    """Manages the namespaced child objects rendered by the operator."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize resource manager.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster

    def _method(self, verb: str, kind: str):
        try:
            group, suffix = _KINDS[kind]
        except KeyError:
            raise ValueError(f"Unsupported resource kind: {kind}") from None
        return getattr(getattr(self.cluster, group), f"{verb}_{suffix}")

    @staticmethod
    def _identity(body: Any) -> tuple[str, str, str]:
        metadata = body.metadata
        return body.kind, metadata.name, metadata.namespace or "default"

    @api_retry
    def get(self, kind: str, name: str, namespace: str = "default") -> Optional[Any]:
        """
        Get an object.

        Args:
            kind: Resource kind (e.g. "Secret")
            name: Object name
            namespace: Kubernetes namespace

        Returns:
            The object or None if not found
        """
        try:
            return self._method("read", kind)(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def exists(self, kind: str, name: str, namespace: str = "default") -> bool:
        """
        Check whether an object exists.

        Args:
            kind: Resource kind
            name: Object name
            namespace: Kubernetes namespace

        Returns:
            True if the object exists
        """
        return self.get(kind, name, namespace) is not None

    @api_retry
    def apply(self, body: Any) -> Any:
        """
        Create an object, or patch it to the rendered state if it already exists.

        Args:
            body: Rendered object (kubernetes.client model with kind and metadata)

        Returns:
            The created or patched object

        Raises:
            ApiException: If the API call fails
        """
        kind, name, namespace = self._identity(body)
        try:
            self._method("read", kind)(name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            logger.info(f"Creating {kind} {namespace}/{name}")
            return self._method("create", kind)(namespace=namespace, body=body)

        logger.debug(f"Patching {kind} {namespace}/{name}")
        return self._method("patch", kind)(name=name, namespace=namespace, body=body)

    @api_retry
    def create_if_absent(self, body: Any) -> bool:
        """
        Create an object only if no object of that name exists yet.

        Args:
            body: Rendered object

        Returns:
            True if created, False if it already existed

        Raises:
            ApiException: If the API call fails
        """
        kind, name, namespace = self._identity(body)
        try:
            self._method("create", kind)(namespace=namespace, body=body)
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"{kind} {namespace}/{name} already exists, leaving it untouched")
                return False
            raise

        logger.info(f"Created {kind} {namespace}/{name}")
        return True

    @api_retry
    def delete(self, kind: str, name: str, namespace: str = "default") -> bool:
        """
        Delete an object.

        Args:
            kind: Resource kind
            name: Object name
            namespace: Kubernetes namespace

        Returns:
            True if deleted, False if not found

        Raises:
            ApiException: If deletion fails
        """
        try:
            self._method("delete", kind)(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise

        logger.info(f"Deleted {kind} {namespace}/{name}")
        return True
