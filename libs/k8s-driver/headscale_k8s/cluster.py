"""Kubernetes client connection management."""

from typing import Optional

from kubernetes import config
from kubernetes.client import (
    ApiClient,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    RbacAuthorizationV1Api,
)
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException


class ClusterConnection:
    """Represents a connection to the Kubernetes cluster the operator runs against."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file (None for in-cluster config)
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If no usable configuration is found
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._rbac_v1: Optional[RbacAuthorizationV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            else:
                try:
                    # Running inside the cluster
                    config.load_incluster_config()
                except ConfigException:
                    config.load_kube_config(context=self.context)

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)
            self._rbac_v1 = RbacAuthorizationV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    @property
    def rbac_v1(self) -> RbacAuthorizationV1Api:
        """Get RbacAuthorizationV1Api instance."""
        if not self._rbac_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._rbac_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    def is_healthy(self) -> bool:
        """
        Check if cluster connection is healthy.

        Returns:
            True if cluster is reachable
        """
        try:
            self.core_v1.get_api_resources()
            return True
        except ApiException:
            return False

    def close(self):
        """Close the cluster connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._core_v1 = None
        self._apps_v1 = None
        self._rbac_v1 = None
        self._custom_objects = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
