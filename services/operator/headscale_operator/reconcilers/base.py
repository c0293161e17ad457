"""Shared plumbing for custom resource reconcilers."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Generic, Optional, TypeVar

from headscale_k8s import (
    ClusterConnection,
    CustomObjectClient,
    EventKind,
    Handler,
    Registration,
    ResourceManager,
)

from ..admin import AdminClient
from ..config import Settings
from ..crds import CustomResource, Headscale, HeadscaleRef, User, UserRef
from ..exceptions import ResolutionError

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=CustomResource)

AdminFactory = Callable[[Headscale], AdminClient]


class Reconciler(ABC, Generic[R]):
    """
    Base class of the per-kind reconcilers.

    Subclasses implement ``apply`` and ``delete`` on the parsed resource;
    the finalizer protocol itself is run by the reconciliation driver.
    """

    MODEL: ClassVar[type[CustomResource]]

    def __init__(
        self,
        cluster: ClusterConnection,
        settings: Settings,
        admin_factory: Optional[AdminFactory] = None,
    ):
        """
        Initialize reconciler.

        Args:
            cluster: Cluster connection
            settings: Operator settings
            admin_factory: Builds the admin client for an instance
        """
        self.cluster = cluster
        self.settings = settings
        self.custom = CustomObjectClient(cluster)
        self.resources = ResourceManager(cluster)
        self.admin_factory = admin_factory or (lambda headscale: AdminClient(cluster, headscale))

    @property
    def kind(self) -> str:
        return self.MODEL.RESOURCE.kind

    def registration(self) -> Registration:
        return Registration(resource=self.MODEL.RESOURCE, finalizer=self.MODEL.FINALIZER)

    def handlers(self) -> dict[tuple[str, EventKind], Handler]:
        """Dispatch table entries of this reconciler."""
        return {
            (self.kind, EventKind.APPLY): self.on_apply,
            (self.kind, EventKind.DELETE): self.on_delete,
        }

    def parse(self, obj: dict[str, Any]) -> R:
        return self.MODEL.model_validate(obj)

    def on_apply(self, obj: dict[str, Any]) -> None:
        self.apply(self.parse(obj))

    def on_delete(self, obj: dict[str, Any]) -> None:
        self.delete(self.parse(obj))

    @abstractmethod
    def apply(self, resource: R) -> None:
        """
        Bring the cluster and the Headscale instance in line with a resource.

        Args:
            resource: Parsed resource
        """
        pass

    @abstractmethod
    def delete(self, resource: R) -> None:
        """
        Undo the effects of a resource before its finalizer is removed.

        Args:
            resource: Parsed resource
        """
        pass

    def resolve_headscale(self, ref: HeadscaleRef, namespace: str) -> Headscale:
        """
        Look up a referenced Headscale instance.

        Args:
            ref: Instance reference
            namespace: Namespace of the referring object

        Returns:
            The instance

        Raises:
            ResolutionError: If the instance does not exist
        """
        namespace = ref.namespace_or(namespace)
        obj = self.custom.get(Headscale.RESOURCE, ref.name, namespace)
        if obj is None:
            raise ResolutionError(Headscale.RESOURCE.kind, namespace, ref.name)
        return Headscale.model_validate(obj)

    def resolve_user(self, ref: UserRef, namespace: str) -> User:
        """
        Look up a referenced user.

        Args:
            ref: User reference
            namespace: Namespace of the referring object

        Returns:
            The user

        Raises:
            ResolutionError: If the user does not exist
        """
        namespace = ref.namespace_or(namespace)
        obj = self.custom.get(User.RESOURCE, ref.name, namespace)
        if obj is None:
            raise ResolutionError(User.RESOURCE.kind, namespace, ref.name)
        return User.model_validate(obj)

    def patch_status(self, resource: R, status: dict[str, Any]) -> None:
        self.custom.patch_status(resource.RESOURCE, resource.name, resource.namespace, status)
