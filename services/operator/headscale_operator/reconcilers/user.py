"""User reconciler."""

import logging

from ..crds import User, UserStatus
from ..exceptions import AdminCommandError
from .base import Reconciler

logger = logging.getLogger(__name__)


class UserReconciler(Reconciler[User]):
    """Creates and destroys users in the referenced Headscale instance."""

    MODEL = User

    def apply(self, user: User) -> None:
        """
        Create the user unless it has been created before.

        A populated status means the user exists remotely, so no remote
        call is made in that case.

        Args:
            user: User resource

        Raises:
            ResolutionError: If the referenced instance does not exist
            AdminError: If the user could not be created
        """
        if user.status is not None:
            logger.debug(f"User {user.namespace}/{user.name} already exists with id {user.status.id}")
            return

        headscale = self.resolve_headscale(user.spec.headscale_ref, user.namespace)
        logger.info(f"Creating user {user.namespace}/{user.name} on {headscale.name}")

        data = self.admin_factory(headscale).create_user(user.name, user.spec)
        self.patch_status(user, UserStatus.from_data(data).to_wire())

    def delete(self, user: User) -> None:
        """
        Destroy the user if it was ever created.

        A user that is already gone remotely counts as destroyed.

        Args:
            user: User resource

        Raises:
            ResolutionError: If the referenced instance does not exist
            AdminError: If the user could not be destroyed
        """
        if user.status is None:
            logger.debug(f"User {user.namespace}/{user.name} was never created, nothing to destroy")
            return

        headscale = self.resolve_headscale(user.spec.headscale_ref, user.namespace)
        try:
            self.admin_factory(headscale).destroy_user(user.status.id)
        except AdminCommandError as e:
            if not e.is_not_found:
                raise
            logger.info(f"User {user.status.id} already absent from {headscale.name}")
