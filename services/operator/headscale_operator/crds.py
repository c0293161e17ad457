"""Custom resource models for the Headscale operator."""

from enum import Enum
from typing import Any, ClassVar, Optional

from headscale_k8s import ResourceKind
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GROUP = "headscale.juliamertz.dev"
VERSION = "v1alpha1"

DEFAULT_HEADSCALE_IMAGE = "ghcr.io/headscale/headscale:v0.28.0"


class CamelModel(BaseModel):
    """Base model using camelCase field names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored in the cluster."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Timestamp(BaseModel):
    """Serialized timestamp format used by Headscale."""

    seconds: int = 0
    nanos: int = 0


class ObjectMeta(CamelModel):
    """Subset of object metadata the operator relies on."""

    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class CustomResource(CamelModel):
    """Common envelope of all operator-managed custom resources."""

    RESOURCE: ClassVar[ResourceKind]
    FINALIZER: ClassVar[str]

    api_version: str = f"{GROUP}/{VERSION}"
    kind: str = ""
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """Namespace of the object, falling back to "default"."""
        return self.metadata.namespace or "default"

    def owner_reference(self) -> dict[str, Any]:
        """
        Build an owner reference pointing at this object.

        Returns:
            OwnerReference as a dict
        """
        return {
            "apiVersion": self.RESOURCE.api_version,
            "kind": self.RESOURCE.kind,
            "name": self.name,
            "uid": self.metadata.uid or "",
            "controller": True,
            "blockOwnerDeletion": True,
        }


class ObjectRef(CamelModel):
    """Reference to another object by name, optionally in another namespace."""

    name: str
    namespace: Optional[str] = None

    def namespace_or(self, default: str) -> str:
        return self.namespace or default


class HeadscaleRef(ObjectRef):
    """Reference to a Headscale instance."""


class UserRef(ObjectRef):
    """Reference to a Headscale user."""


# Headscale


class HeadscaleDeploymentOptions(CamelModel):
    image: Optional[str] = None
    env: list[dict[str, Any]] = Field(default_factory=list)


class ConfigManagerOptions(CamelModel):
    image: str = ""


class TLSOptions(CamelModel):
    existing_secret: Optional[str] = None


class HeadscaleSpec(CamelModel):
    config: dict[str, Any] = Field(default_factory=dict)
    deployment: HeadscaleDeploymentOptions = Field(default_factory=HeadscaleDeploymentOptions)
    config_manager: ConfigManagerOptions = Field(default_factory=ConfigManagerOptions)
    tls: TLSOptions = Field(default_factory=TLSOptions)


class HeadscaleStatus(CamelModel):
    ready: bool = False
    message: Optional[str] = None
    last_updated: Optional[str] = None


class Headscale(CustomResource):
    """A single Headscale control-plane deployment."""

    RESOURCE: ClassVar[ResourceKind] = ResourceKind(GROUP, VERSION, "headscales", "Headscale")
    FINALIZER: ClassVar[str] = f"{GROUP}/headscale-finalizer"

    kind: str = "Headscale"
    spec: HeadscaleSpec
    status: Optional[HeadscaleStatus] = None

    @property
    def stateful_set_name(self) -> str:
        return f"headscale-{self.name}"

    @property
    def acl_configmap_name(self) -> str:
        return f"headscale-{self.name}-acl"

    @property
    def config_manager_service_account_name(self) -> str:
        return f"headscale-{self.name}-config-manager"


# User


class UserData(BaseModel):
    """User record as printed by the headscale CLI."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    created_at: Optional[Timestamp] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    profile_pic_url: Optional[str] = None


class UserSpec(CamelModel):
    display_name: Optional[str] = None
    email: Optional[str] = None
    picture_url: Optional[str] = None
    headscale_ref: HeadscaleRef


class UserStatus(CamelModel):
    id: int
    name: str
    created_at: Optional[Timestamp] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    picture_url: Optional[str] = None

    @classmethod
    def from_data(cls, data: UserData) -> "UserStatus":
        """Build a status snapshot from a CLI record."""
        return cls(
            id=data.id,
            name=data.name,
            created_at=data.created_at,
            email=data.email or None,
            display_name=data.display_name or None,
            picture_url=data.profile_pic_url or None,
        )


class User(CustomResource):
    """A Headscale user scoped to one instance."""

    RESOURCE: ClassVar[ResourceKind] = ResourceKind(GROUP, VERSION, "users", "User")
    FINALIZER: ClassVar[str] = f"{GROUP}/user-finalizer"

    kind: str = "User"
    spec: UserSpec
    status: Optional[UserStatus] = None

    @property
    def user_id(self) -> Optional[int]:
        """Headscale identifier, once the user has been created."""
        return self.status.id if self.status else None


# PreauthKey


class PreauthKeyData(BaseModel):
    """Pre-auth key record as printed by the headscale CLI."""

    model_config = ConfigDict(extra="ignore")

    id: int
    key: str
    user: Optional[UserData] = None
    reusable: bool = False
    ephemeral: bool = False
    expiration: Timestamp = Field(default_factory=Timestamp)
    created_at: Timestamp = Field(default_factory=Timestamp)


class PreauthKeySpec(CamelModel):
    ephemeral: bool = False
    reusable: bool = False
    expiration: str = "1h"
    target_secret: Optional[str] = None
    user: UserRef


class PreauthKeyStatus(CamelModel):
    id: int
    user: Optional[UserStatus] = None
    reusable: bool = False
    ephemeral: bool = False
    expiration: Timestamp = Field(default_factory=Timestamp)
    created_at: Timestamp = Field(default_factory=Timestamp)

    @classmethod
    def from_data(cls, data: PreauthKeyData, owner: Optional[UserStatus] = None) -> "PreauthKeyStatus":
        """Build a status snapshot from a CLI record, without the key itself."""
        return cls(
            id=data.id,
            user=UserStatus.from_data(data.user) if data.user else owner,
            reusable=data.reusable,
            ephemeral=data.ephemeral,
            expiration=data.expiration,
            created_at=data.created_at,
        )


class PreauthKey(CustomResource):
    """A pre-authentication key for one user."""

    RESOURCE: ClassVar[ResourceKind] = ResourceKind(GROUP, VERSION, "preauthkeys", "PreauthKey")
    FINALIZER: ClassVar[str] = f"{GROUP}/preauth-key-finalizer"
    SECRET_KEY: ClassVar[str] = "authkey"

    kind: str = "PreauthKey"
    spec: PreauthKeySpec
    status: Optional[PreauthKeyStatus] = None

    @property
    def secret_name(self) -> str:
        """Name of the secret holding the key value."""
        return self.spec.target_secret or f"headscale-preauth-{self.name}"


# Policy


class AclAction(str, Enum):
    ACCEPT = "accept"
    DENY = "deny"


class Acl(CamelModel):
    action: AclAction
    src: list[str]
    dst: list[str]


class PolicySpec(CamelModel):
    headscale_ref: HeadscaleRef
    groups: Optional[dict[str, list[str]]] = None
    hosts: Optional[dict[str, str]] = None
    tag_owners: Optional[dict[str, list[str]]] = None
    acls: list[Acl] = Field(default_factory=list)


class PolicyDocument(CamelModel):
    """The ACL document Headscale reads from its policy file."""

    groups: Optional[dict[str, list[str]]] = None
    hosts: Optional[dict[str, str]] = None
    tag_owners: Optional[dict[str, list[str]]] = None
    acls: list[Acl] = Field(default_factory=list)

    @classmethod
    def from_spec(cls, spec: PolicySpec) -> "PolicyDocument":
        return cls(
            groups=spec.groups,
            hosts=spec.hosts,
            tag_owners=spec.tag_owners,
            acls=spec.acls,
        )


class Policy(CustomResource):
    """Access-control rules for one Headscale instance."""

    RESOURCE: ClassVar[ResourceKind] = ResourceKind(GROUP, VERSION, "policies", "Policy")
    FINALIZER: ClassVar[str] = f"{GROUP}/acl-policy-finalizer"

    kind: str = "Policy"
    spec: PolicySpec


ALL_RESOURCES: tuple[type[CustomResource], ...] = (Headscale, User, PreauthKey, Policy)
