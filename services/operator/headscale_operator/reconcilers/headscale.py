"""Headscale instance reconciler."""

import logging
from datetime import datetime, timezone

from ..crds import Headscale, HeadscaleStatus
from ..manifests import HeadscaleManifests
from .base import Reconciler

logger = logging.getLogger(__name__)


class HeadscaleReconciler(Reconciler[Headscale]):
    """Deploys and tears down the workload of a Headscale instance."""

    MODEL = Headscale

    def render(self, headscale: Headscale) -> HeadscaleManifests:
        return HeadscaleManifests(
            headscale,
            config_manager_image=self.settings.config_manager_image,
            headscale_image=self.settings.headscale_image,
        )

    def apply(self, headscale: Headscale) -> None:
        """
        Render and apply all child objects, then mark the instance ready.

        The keys secret and the ACL ConfigMap are only created when absent:
        the first holds generated private keys, the second is rewritten by
        a Policy once one exists. The keys secret is created before the
        StatefulSet that mounts it.

        Args:
            headscale: Headscale instance
        """
        manifests = self.render(headscale)
        logger.info(f"Deploying headscale {headscale.namespace}/{headscale.name}")

        self.resources.create_if_absent(manifests.keys_secret())
        self.resources.apply(manifests.config_map())
        self.resources.create_if_absent(manifests.acl_config_map())
        for obj in manifests.rbac():
            self.resources.apply(obj)
        self.resources.apply(manifests.stateful_set())
        self.resources.apply(manifests.service())

        status = HeadscaleStatus(
            ready=True,
            message="Headscale has been deployed",
            last_updated=datetime.now(timezone.utc).isoformat(),
        )
        self.patch_status(headscale, status.to_wire())
        logger.info(f"✓ Headscale {headscale.namespace}/{headscale.name} deployed")

    def delete(self, headscale: Headscale) -> None:
        """
        Remove all child objects, workload first.

        Args:
            headscale: Headscale instance
        """
        namespace = headscale.namespace
        name = headscale.stateful_set_name
        rbac_name = headscale.config_manager_service_account_name
        logger.info(f"Deleting headscale {namespace}/{headscale.name}")

        self.resources.delete("StatefulSet", name, namespace)
        self.resources.delete("Service", f"{name}-service", namespace)
        self.resources.delete("ConfigMap", f"{name}-config", namespace)
        self.resources.delete("ConfigMap", headscale.acl_configmap_name, namespace)
        self.resources.delete("Secret", f"{name}-keys", namespace)
        self.resources.delete("RoleBinding", rbac_name, namespace)
        self.resources.delete("Role", rbac_name, namespace)
        self.resources.delete("ServiceAccount", rbac_name, namespace)
