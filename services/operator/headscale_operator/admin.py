"""Administrative operations against a running Headscale instance."""

import json
import logging
from typing import Any, Optional

from headscale_k8s import ClusterConnection, ExecSuccess, PodExecutor
from kubernetes.client import V1Pod
from pydantic import BaseModel, ValidationError

from .commands import headscale_command
from .crds import Headscale, PreauthKeyData, UserData, UserSpec
from .exceptions import AdminCommandError, AdminResponseError, NoTargetPodError

logger = logging.getLogger(__name__)

HEADSCALE_CONTAINER = "headscale"


def is_pod_ready(pod: V1Pod) -> bool:
    """
    Check whether a pod reports the Ready condition.

    Args:
        pod: Pod object

    Returns:
        True if the pod is running and ready
    """
    status = pod.status
    if status is None or pod.metadata.deletion_timestamp:
        return False
    for condition in status.conditions or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


class AdminClient:
    """
    Runs headscale CLI commands inside an instance's pod.

    Every operation picks the first ready pod of the instance, runs one
    command in its ``headscale`` container and decodes the JSON-line output.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        headscale: Headscale,
        executor: Optional[PodExecutor] = None,
    ):
        """
        Initialize admin client.

        Args:
            cluster: Cluster connection
            headscale: Target Headscale instance
            executor: Exec channel (created from the cluster if omitted)
        """
        self.cluster = cluster
        self.headscale = headscale
        self.executor = executor or PodExecutor(cluster)

    def target_pod(self) -> str:
        """
        Find the pod commands are run in.

        Returns:
            Name of the first ready pod of the instance

        Raises:
            NoTargetPodError: If no pod is ready
        """
        selector = f"app.kubernetes.io/name={self.headscale.stateful_set_name}"
        pods = self.cluster.core_v1.list_namespaced_pod(
            self.headscale.namespace,
            label_selector=selector,
        )
        for pod in pods.items:
            if is_pod_ready(pod):
                return pod.metadata.name
        raise NoTargetPodError(self.headscale.name, self.headscale.namespace)

    def _run(self, command: list[str]) -> str:
        pod = self.target_pod()
        logger.debug(f"Running {' '.join(command)} in {self.headscale.namespace}/{pod}")

        outcome = self.executor.run(
            pod,
            self.headscale.namespace,
            command,
            container=HEADSCALE_CONTAINER,
        )
        if not isinstance(outcome, ExecSuccess):
            raise AdminCommandError(command, outcome)
        return outcome.stdout

    @staticmethod
    def _decode(command: list[str], output: str) -> Any:
        lines = [line for line in output.splitlines() if line.strip()]
        if not lines:
            raise AdminResponseError(command, output, "no output")
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError as e:
            raise AdminResponseError(command, output, str(e)) from e

    def _decode_model(self, command: list[str], output: str, model: type[BaseModel]) -> Any:
        value = self._decode(command, output)
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise AdminResponseError(command, output, str(e)) from e

    def create_user(self, name: str, spec: UserSpec) -> UserData:
        """
        Create a user.

        Args:
            name: User name
            spec: Optional display name, picture URL and email

        Returns:
            The created user record

        Raises:
            AdminError: If the command fails or prints unexpected output
        """
        command = (
            headscale_command()
            .arg("users")
            .arg("create")
            .arg(name)
            .option("--display-name", spec.display_name)
            .option("--picture-url", spec.picture_url)
            .option("--email", spec.email)
            .build()
        )
        user = self._decode_model(command, self._run(command), UserData)
        logger.info(f"Created user {name} with id {user.id} on {self.headscale.name}")
        return user

    def destroy_user(self, user_id: int) -> None:
        """
        Destroy a user.

        Args:
            user_id: Headscale user identifier

        Raises:
            AdminCommandError: If the command fails
        """
        command = (
            headscale_command()
            .arg("users")
            .arg("destroy")
            .option("--identifier", user_id)
            .arg("--force")
            .build()
        )
        self._run(command)
        logger.info(f"Destroyed user {user_id} on {self.headscale.name}")

    def create_key(
        self,
        user_id: int,
        expiration: str,
        ephemeral: bool = False,
        reusable: bool = False,
    ) -> PreauthKeyData:
        """
        Create a pre-auth key for a user.

        Args:
            user_id: Headscale user identifier
            expiration: Key lifetime (e.g. "1h")
            ephemeral: Nodes registered with the key are ephemeral
            reusable: Key may be used more than once

        Returns:
            The created key record, including the key value

        Raises:
            AdminError: If the command fails or prints unexpected output
        """
        command = (
            headscale_command()
            .arg("preauthkeys")
            .arg("create")
            .option("--user", user_id)
            .option("--expiration", expiration)
            .flag("--ephemeral", ephemeral)
            .flag("--reusable", reusable)
            .build()
        )
        key = self._decode_model(command, self._run(command), PreauthKeyData)
        if not key.key:
            raise AdminResponseError(command, "", "empty key")
        logger.info(f"Created pre-auth key {key.id} for user {user_id} on {self.headscale.name}")
        return key

    def revoke_key(self, user_id: int, key: str) -> None:
        """
        Revoke a pre-auth key.

        Args:
            user_id: Headscale user identifier
            key: Key value

        Raises:
            AdminCommandError: If the command fails
        """
        command = (
            headscale_command()
            .arg("preauthkeys")
            .arg("revoke")
            .option("--user", user_id)
            .arg(key)
            .build()
        )
        self._run(command)
        logger.info(f"Revoked pre-auth key of user {user_id} on {self.headscale.name}")

    def list_users(self) -> list[UserData]:
        """
        List all users of the instance.

        Returns:
            User records

        Raises:
            AdminError: If the command fails or prints unexpected output
        """
        command = headscale_command().arg("users").arg("list").build()
        output = self._run(command)
        if not output.strip():
            return []

        value = self._decode(command, output)
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        try:
            return [UserData.model_validate(item) for item in value]
        except ValidationError as e:
            raise AdminResponseError(command, output, str(e)) from e
