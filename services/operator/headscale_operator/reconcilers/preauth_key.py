"""PreauthKey reconciler."""

import base64
import logging

from ..crds import PreauthKey, PreauthKeyStatus, User
from ..exceptions import AdminCommandError, MissingIdentifierError
from ..manifests import preauth_key_secret
from .base import Reconciler

logger = logging.getLogger(__name__)


class PreauthKeyReconciler(Reconciler[PreauthKey]):
    """
    Issues pre-auth keys and stores them in secrets.

    The secret's existence marks the key as issued: it is checked before
    any remote call and removed only after the key has been revoked.
    """

    MODEL = PreauthKey

    def _owner(self, preauth_key: PreauthKey) -> tuple[User, int]:
        user = self.resolve_user(preauth_key.spec.user, preauth_key.namespace)
        if user.user_id is None:
            raise MissingIdentifierError(user.namespace, user.name)
        return user, user.user_id

    def apply(self, preauth_key: PreauthKey) -> None:
        """
        Create the key and its secret unless the secret already exists.

        Args:
            preauth_key: PreauthKey resource

        Raises:
            ResolutionError: If the user or its instance does not exist
            MissingIdentifierError: If the user has not been created yet
            AdminError: If the key could not be created
        """
        namespace = preauth_key.namespace
        secret_name = preauth_key.secret_name
        if self.resources.exists("Secret", secret_name, namespace):
            logger.debug(f"Secret {namespace}/{secret_name} exists, key already issued")
            return

        user, user_id = self._owner(preauth_key)
        headscale = self.resolve_headscale(user.spec.headscale_ref, user.namespace)
        admin = self.admin_factory(headscale)

        spec = preauth_key.spec
        data = admin.create_key(
            user_id,
            spec.expiration,
            ephemeral=spec.ephemeral,
            reusable=spec.reusable,
        )

        if not self.resources.create_if_absent(preauth_key_secret(preauth_key, data.key)):
            logger.warning(
                f"Secret {namespace}/{secret_name} appeared concurrently, revoking surplus key {data.id}"
            )
            admin.revoke_key(user_id, data.key)
            return

        self.patch_status(preauth_key, PreauthKeyStatus.from_data(data, user.status).to_wire())
        logger.info(f"✓ Pre-auth key {namespace}/{preauth_key.name} stored in {secret_name}")

    def delete(self, preauth_key: PreauthKey) -> None:
        """
        Revoke the key, then delete its secret.

        Args:
            preauth_key: PreauthKey resource

        Raises:
            ResolutionError: If the user or its instance does not exist
            MissingIdentifierError: If the user has no identifier
            AdminError: If the key could not be revoked
        """
        namespace = preauth_key.namespace
        secret_name = preauth_key.secret_name
        secret = self.resources.get("Secret", secret_name, namespace)
        if secret is None:
            logger.debug(f"Secret {namespace}/{secret_name} already gone, nothing to revoke")
            return

        encoded = (secret.data or {}).get(PreauthKey.SECRET_KEY)
        if encoded:
            key = base64.b64decode(encoded).decode()
            user, user_id = self._owner(preauth_key)
            headscale = self.resolve_headscale(user.spec.headscale_ref, user.namespace)
            try:
                self.admin_factory(headscale).revoke_key(user_id, key)
            except AdminCommandError as e:
                if not e.is_not_found:
                    raise
                logger.info(f"Pre-auth key of {namespace}/{preauth_key.name} already absent")
        else:
            logger.warning(f"Secret {namespace}/{secret_name} holds no key, deleting it without revoking")

        self.resources.delete("Secret", secret_name, namespace)
