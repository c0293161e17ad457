"""Policy reconciler."""

import logging

from ..crds import Policy
from ..exceptions import ResolutionError
from ..manifests import policy_config_map
from .base import Reconciler

logger = logging.getLogger(__name__)


class PolicyReconciler(Reconciler[Policy]):
    """Renders a Policy into its instance's ACL ConfigMap."""

    MODEL = Policy

    def apply(self, policy: Policy) -> None:
        headscale = self.resolve_headscale(policy.spec.headscale_ref, policy.namespace)
        self.resources.apply(policy_config_map(policy, headscale))
        logger.info(
            f"Applied policy {policy.namespace}/{policy.name} to {headscale.acl_configmap_name}"
        )

    def delete(self, policy: Policy) -> None:
        """
        Delete the instance's ACL ConfigMap.

        An instance that no longer exists has nothing left to clean up.

        Args:
            policy: Policy resource
        """
        try:
            headscale = self.resolve_headscale(policy.spec.headscale_ref, policy.namespace)
        except ResolutionError:
            logger.info(f"Instance of policy {policy.namespace}/{policy.name} is gone, nothing to delete")
            return

        self.resources.delete("ConfigMap", headscale.acl_configmap_name, headscale.namespace)
