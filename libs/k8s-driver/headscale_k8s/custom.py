"""Access to namespaced custom objects (CRD instances)."""

import logging
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .models import ResourceKind
from .resources import api_retry

logger = logging.getLogger(__name__)


class CustomObjectClient:
    """Reads and patches custom objects through the custom objects API."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize custom object client.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.custom_objects = cluster.custom_objects

    @api_retry
    def get(self, resource: ResourceKind, name: str, namespace: str) -> Optional[dict[str, Any]]:
        """
        Get a custom object.

        Args:
            resource: Custom resource type
            name: Object name
            namespace: Kubernetes namespace

        Returns:
            Object as a dict, or None if not found
        """
        try:
            return self.custom_objects.get_namespaced_custom_object(
                resource.group,
                resource.version,
                namespace,
                resource.plural,
                name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    @api_retry
    def patch_status(
        self,
        resource: ResourceKind,
        name: str,
        namespace: str,
        status: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Merge-patch the status subresource of a custom object.

        Args:
            resource: Custom resource type
            name: Object name
            namespace: Kubernetes namespace
            status: Status fields to merge

        Returns:
            Patched object
        """
        logger.debug(f"Patching status of {resource.kind} {namespace}/{name}")
        return self.custom_objects.patch_namespaced_custom_object_status(
            resource.group,
            resource.version,
            namespace,
            resource.plural,
            name,
            {"status": status},
        )

    def set_finalizers(
        self,
        resource: ResourceKind,
        obj: dict[str, Any],
        finalizers: list[str],
    ) -> dict[str, Any]:
        """
        Replace the finalizer list of a custom object.

        The patch carries the object's resourceVersion so a concurrent
        modification fails with a conflict instead of being overwritten.

        Args:
            resource: Custom resource type
            obj: Object as last read
            finalizers: New finalizer list

        Returns:
            Patched object
        """
        metadata = obj["metadata"]
        patch: dict[str, Any] = {"metadata": {"finalizers": finalizers}}
        if metadata.get("resourceVersion"):
            patch["metadata"]["resourceVersion"] = metadata["resourceVersion"]

        return self.custom_objects.patch_namespaced_custom_object(
            resource.group,
            resource.version,
            metadata.get("namespace") or "default",
            resource.plural,
            metadata["name"],
            patch,
        )
