"""Rendering of the cluster objects that make up a Headscale deployment."""

import copy
import json
import secrets
from typing import Any, Optional

import yaml
from kubernetes.client import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1EnvVarSource,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PodSpec,
    V1PodTemplateSpec,
    V1PolicyRule,
    V1ResourceRequirements,
    V1Role,
    V1RoleBinding,
    V1RoleRef,
    V1Secret,
    V1SecretVolumeSource,
    V1Service,
    V1ServiceAccount,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1Volume,
    V1VolumeMount,
    RbacV1Subject,
)

from . import __version__
from .crds import (
    DEFAULT_HEADSCALE_IMAGE,
    CustomResource,
    Headscale,
    Policy,
    PolicyDocument,
    PreauthKey,
)
from .exceptions import RenderError

MANAGER_NAME = "headscale-operator"

ACL_MOUNT_PATH = "/etc/headscale/acls"
ACL_FILE_NAME = "acl.json"
CONFIG_FILE_NAME = "config.yaml"

DERP_PORT = 3478
DEFAULT_LISTEN_ADDR = "0.0.0.0:8080"
DEFAULT_METRICS_LISTEN_ADDR = "0.0.0.0:9090"
DEFAULT_GRPC_LISTEN_ADDR = "0.0.0.0:50443"


def common_labels(name: str) -> dict[str, str]:
    """Labels carried by every object the operator renders."""
    return {
        "app.kubernetes.io/name": name,
        "app.kubernetes.io/managed-by": MANAGER_NAME,
        "app.kubernetes.io/instance": f"headscale-{name}",
        "app.kubernetes.io/version": __version__,
        "app.kubernetes.io/part-of": "headscale",
    }


def owner_reference(owner: CustomResource) -> V1OwnerReference:
    ref = owner.owner_reference()
    return V1OwnerReference(
        api_version=ref["apiVersion"],
        kind=ref["kind"],
        name=ref["name"],
        uid=ref["uid"],
        controller=ref["controller"],
        block_owner_deletion=ref["blockOwnerDeletion"],
    )


def object_meta(name: str, owner: CustomResource) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=name,
        namespace=owner.namespace,
        labels=common_labels(name),
        owner_references=[owner_reference(owner)],
    )


def generate_private_key() -> str:
    """Generate a Headscale private key (32 random bytes, hex encoded)."""
    return f"privkey:{secrets.token_hex(32)}"


def parse_port(address: Any, field: str) -> int:
    """
    Extract the port of a ``host:port`` listen address.

    Args:
        address: Listen address from the Headscale config
        field: Config field name (for error messages)

    Returns:
        Port number

    Raises:
        RenderError: If the address has no valid port
    """
    _, sep, port = str(address).rpartition(":")
    if not sep or not port.isdigit() or not 0 < int(port) < 65536:
        raise RenderError(f"invalid {field} {address!r}: expected host:port")
    return int(port)


class HeadscalePorts:
    """Ports exposed by a Headscale instance."""

    def __init__(self, http: int, metrics: int, grpc: int, derp: int = DERP_PORT):
        self.http = http
        self.metrics = metrics
        self.grpc = grpc
        self.derp = derp

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "HeadscalePorts":
        return cls(
            http=parse_port(config.get("listen_addr") or DEFAULT_LISTEN_ADDR, "listen_addr"),
            metrics=parse_port(
                config.get("metrics_listen_addr") or DEFAULT_METRICS_LISTEN_ADDR,
                "metrics_listen_addr",
            ),
            grpc=parse_port(config.get("grpc_listen_addr") or DEFAULT_GRPC_LISTEN_ADDR, "grpc_listen_addr"),
        )


class HeadscaleManifests:
    """
    Renders the child objects of one Headscale instance.

    Rendering is pure: the same instance always renders the same objects,
    except for the generated private keys of the keys secret.
    """

    def __init__(
        self,
        headscale: Headscale,
        config_manager_image: str,
        headscale_image: str = DEFAULT_HEADSCALE_IMAGE,
    ):
        """
        Initialize renderer.

        Args:
            headscale: Headscale instance
            config_manager_image: Image of the config-manager sidecar (used when
                the instance does not set one)
            headscale_image: Headscale image (used when the instance does not set one)
        """
        self.headscale = headscale
        self.config_manager_image = headscale.spec.config_manager.image or config_manager_image
        self.headscale_image = headscale.spec.deployment.image or headscale_image
        self.ports = HeadscalePorts.from_config(headscale.spec.config)

    @property
    def name(self) -> str:
        return self.headscale.stateful_set_name

    @property
    def keys_secret_name(self) -> str:
        return f"{self.name}-keys"

    @property
    def config_map_name(self) -> str:
        return f"{self.name}-config"

    @property
    def service_name(self) -> str:
        return f"{self.name}-service"

    def runtime_config(self) -> dict[str, Any]:
        """Headscale config with the policy file pointed at the synced ACL."""
        config = copy.deepcopy(self.headscale.spec.config)
        if config.get("policy") is None:
            config["policy"] = {"mode": "file", "path": f"{ACL_MOUNT_PATH}/{ACL_FILE_NAME}"}
        return config

    def keys_secret(self) -> V1Secret:
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=object_meta(self.keys_secret_name, self.headscale),
            string_data={
                "derp_server_private.key": generate_private_key(),
                "noise_private.key": generate_private_key(),
            },
        )

    def config_map(self) -> V1ConfigMap:
        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=object_meta(self.config_map_name, self.headscale),
            data={CONFIG_FILE_NAME: yaml.safe_dump(self.runtime_config(), sort_keys=False)},
        )

    def acl_config_map(self) -> V1ConfigMap:
        """Placeholder ACL ConfigMap, later filled in by a Policy."""
        return V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=object_meta(self.headscale.acl_configmap_name, self.headscale),
            data={ACL_FILE_NAME: "{}"},
        )

    def rbac(self) -> list[Any]:
        """
        Render the config-manager service account, role and role binding.

        The role only grants read access to the instance's ACL ConfigMap.

        Returns:
            [ServiceAccount, Role, RoleBinding]
        """
        name = self.headscale.config_manager_service_account_name
        namespace = self.headscale.namespace

        service_account = V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=object_meta(name, self.headscale),
        )
        role = V1Role(
            api_version="rbac.authorization.k8s.io/v1",
            kind="Role",
            metadata=object_meta(name, self.headscale),
            rules=[
                V1PolicyRule(
                    api_groups=[""],
                    resources=["configmaps"],
                    resource_names=[self.headscale.acl_configmap_name],
                    verbs=["get", "list", "watch"],
                )
            ],
        )
        role_binding = V1RoleBinding(
            api_version="rbac.authorization.k8s.io/v1",
            kind="RoleBinding",
            metadata=object_meta(name, self.headscale),
            role_ref=V1RoleRef(api_group="rbac.authorization.k8s.io", kind="Role", name=name),
            subjects=[RbacV1Subject(kind="ServiceAccount", name=name, namespace=namespace)],
        )
        return [service_account, role, role_binding]

    def _config_manager_env(self) -> list[V1EnvVar]:
        return [
            V1EnvVar(name="CONFIGMAP_NAME", value=self.headscale.acl_configmap_name),
            V1EnvVar(name="MOUNT_PATH", value=ACL_MOUNT_PATH),
            V1EnvVar(name="LOG_LEVEL", value="INFO"),
            V1EnvVar(
                name="NAMESPACE",
                value_from=V1EnvVarSource(
                    field_ref=V1ObjectFieldSelector(field_path="metadata.namespace")
                ),
            ),
        ]

    def _volumes(self) -> list[V1Volume]:
        volumes = []
        tls_secret = self.headscale.spec.tls.existing_secret
        if tls_secret:
            volumes.append(V1Volume(name="tls", secret=V1SecretVolumeSource(secret_name=tls_secret)))
        volumes.extend(
            [
                V1Volume(name="keys", secret=V1SecretVolumeSource(secret_name=self.keys_secret_name)),
                V1Volume(name="config", config_map=V1ConfigMapVolumeSource(name=self.config_map_name)),
                V1Volume(name="acls", empty_dir=V1EmptyDirVolumeSource()),
            ]
        )
        return volumes

    def _headscale_container(self) -> V1Container:
        mounts = []
        if self.headscale.spec.tls.existing_secret:
            mounts.append(V1VolumeMount(name="tls", mount_path="/etc/headscale/tls", read_only=True))
        mounts.extend(
            [
                V1VolumeMount(name="keys", mount_path="/var/lib/headscale", read_only=True),
                V1VolumeMount(
                    name="config",
                    mount_path=f"/etc/headscale/{CONFIG_FILE_NAME}",
                    sub_path=CONFIG_FILE_NAME,
                    read_only=True,
                ),
                V1VolumeMount(name="acls", mount_path=ACL_MOUNT_PATH, read_only=True),
            ]
        )

        return V1Container(
            name="headscale",
            image=self.headscale_image,
            command=["headscale", "serve"],
            ports=[
                V1ContainerPort(name="http", container_port=self.ports.http, protocol="TCP"),
                V1ContainerPort(name="metrics", container_port=self.ports.metrics, protocol="TCP"),
                V1ContainerPort(name="derp", container_port=self.ports.derp, protocol="UDP"),
                V1ContainerPort(name="grpc", container_port=self.ports.grpc, protocol="TCP"),
            ],
            env=self.headscale.spec.deployment.env or None,
            volume_mounts=mounts,
        )

    def stateful_set(self) -> V1StatefulSet:
        acls_mount = [V1VolumeMount(name="acls", mount_path=ACL_MOUNT_PATH)]

        config_manager = V1Container(
            name="config-manager",
            image=self.config_manager_image,
            command=["/bin/config-manager"],
            env=self._config_manager_env(),
            volume_mounts=acls_mount,
            resources=V1ResourceRequirements(
                requests={"cpu": "10m", "memory": "24Mi"},
                limits={"cpu": "100m", "memory": "48Mi"},
            ),
        )
        init_config = V1Container(
            name="init-config",
            image=self.config_manager_image,
            command=["/bin/config-manager", "init"],
            env=self._config_manager_env(),
            volume_mounts=acls_mount,
        )

        pod_spec = V1PodSpec(
            containers=[self._headscale_container(), config_manager],
            init_containers=[init_config],
            volumes=self._volumes(),
            service_account_name=self.headscale.config_manager_service_account_name,
            share_process_namespace=True,
        )

        labels = common_labels(self.name)
        return V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=object_meta(self.name, self.headscale),
            spec=V1StatefulSetSpec(
                replicas=1,
                service_name=self.service_name,
                selector=V1LabelSelector(match_labels={"app.kubernetes.io/name": self.name}),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels),
                    spec=pod_spec,
                ),
            ),
        )

    def service(self) -> V1Service:
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=object_meta(self.service_name, self.headscale),
            spec=V1ServiceSpec(
                type="ClusterIP",
                selector={"app.kubernetes.io/name": self.name},
                ports=[
                    V1ServicePort(name="https", port=self.ports.http, target_port=self.ports.http, protocol="TCP"),
                    V1ServicePort(
                        name="metrics", port=self.ports.metrics, target_port=self.ports.metrics, protocol="TCP"
                    ),
                    V1ServicePort(name="derp", port=self.ports.derp, target_port=self.ports.derp, protocol="UDP"),
                    V1ServicePort(name="grpc", port=self.ports.grpc, target_port=self.ports.grpc, protocol="TCP"),
                ],
            ),
        )


def policy_config_map(policy: Policy, headscale: Headscale) -> V1ConfigMap:
    """
    Render the ACL ConfigMap of an instance from a Policy.

    The ConfigMap stays owned by the instance, which may live in another
    namespace than the policy.

    Args:
        policy: Policy resource
        headscale: Instance the policy applies to

    Returns:
        ConfigMap holding the JSON policy document
    """
    document = PolicyDocument.from_spec(policy.spec).to_wire()
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=object_meta(headscale.acl_configmap_name, headscale),
        data={ACL_FILE_NAME: json.dumps(document)},
    )


def preauth_key_secret(preauth_key: PreauthKey, key: str, name: Optional[str] = None) -> V1Secret:
    """
    Render the secret holding a pre-auth key value.

    Args:
        preauth_key: PreauthKey resource
        key: Key value
        name: Secret name (defaults to the resource's secret name)

    Returns:
        Secret with the key under ``authkey``
    """
    name = name or preauth_key.secret_name
    return V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=object_meta(name, preauth_key),
        string_data={PreauthKey.SECRET_KEY: key},
    )
