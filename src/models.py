"""
Resource models - desired state, observed status and control plane records.

Objects are exchanged and stored as Kubernetes-style documents
(``{kind, metadata, spec, status}``) with camelCase keys. Request bodies
for the control plane are produced with ``to_wire()`` so that unset
optional fields are left out entirely.
"""

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Remote lifecycle state that means a cluster or template is usable
ACTIVE_STATE = "active"


class CamelModel(BaseModel):
    """Base model using camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using wire aliases, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PassthroughModel(CamelModel):
    """Model that keeps fields it does not declare and sends them on."""

    model_config = ConfigDict(extra="allow")


# ==================== Metadata & Conditions ====================


class ObjectMeta(CamelModel):
    name: str
    namespace: str = ""


class ProviderConfigReference(CamelModel):
    name: str = "default"


class ConditionType(str, Enum):
    """Condition types reported on managed resources."""

    READY = "Ready"
    SYNCED = "Synced"


class ConditionReason(str, Enum):
    """Reasons used for the Ready and Synced conditions."""

    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    CREATING = "Creating"
    DELETING = "Deleting"
    RECONCILE_SUCCESS = "ReconcileSuccess"
    RECONCILE_ERROR = "ReconcileError"


class LifecycleStatus(Enum):
    """Availability of a managed resource as reported upward."""

    UNKNOWN = "Unknown"
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"


def lifecycle_from_state(state: str) -> LifecycleStatus:
    """Map a remote lifecycle state string of a present object."""
    if state == ACTIVE_STATE:
        return LifecycleStatus.AVAILABLE
    return LifecycleStatus.UNAVAILABLE


class Condition(CamelModel):
    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: Optional[datetime] = None

    def equal(self, other: "Condition") -> bool:
        """Compare ignoring the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


def available() -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status="True",
        reason=ConditionReason.AVAILABLE.value,
    )


def unavailable() -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status="False",
        reason=ConditionReason.UNAVAILABLE.value,
    )


def creating() -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status="False",
        reason=ConditionReason.CREATING.value,
    )


def deleting() -> Condition:
    return Condition(
        type=ConditionType.READY.value,
        status="False",
        reason=ConditionReason.DELETING.value,
    )


def reconcile_success() -> Condition:
    return Condition(
        type=ConditionType.SYNCED.value,
        status="True",
        reason=ConditionReason.RECONCILE_SUCCESS.value,
    )


def reconcile_error(error: Exception) -> Condition:
    return Condition(
        type=ConditionType.SYNCED.value,
        status="False",
        reason=ConditionReason.RECONCILE_ERROR.value,
        message=str(error),
    )


class AtProvider(CamelModel):
    id: Optional[str] = None


class ManagedStatus(CamelModel):
    """Observed status of a managed resource."""

    conditions: List[Condition] = Field(default_factory=list)
    at_provider: AtProvider = Field(default_factory=AtProvider)

    def get_condition(self, condition_type: ConditionType) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type.value:
                return condition
        return None

    def set_conditions(self, *conditions: Condition) -> None:
        """
        Set conditions, replacing any existing condition of the same type.

        An unchanged condition keeps its original transition time.
        """
        for condition in conditions:
            existing = self.get_condition(ConditionType(condition.type))
            if existing is not None and existing.equal(condition):
                continue

            stamped = condition.model_copy(
                update={"last_transition_time": datetime.now(timezone.utc)}
            )
            self.conditions = [
                c for c in self.conditions if c.type != condition.type
            ] + [stamped]

    @property
    def lifecycle(self) -> LifecycleStatus:
        ready = self.get_condition(ConditionType.READY)
        if ready is None:
            return LifecycleStatus.UNKNOWN
        if ready.reason == ConditionReason.AVAILABLE.value:
            return LifecycleStatus.AVAILABLE
        if ready.reason == ConditionReason.UNAVAILABLE.value:
            return LifecycleStatus.UNAVAILABLE
        return LifecycleStatus.UNKNOWN


class ManagedResource(CamelModel):
    """Common shape of every resource reconciled against the control plane."""

    kind: str
    metadata: ObjectMeta
    status: ManagedStatus = Field(default_factory=ManagedStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def external_id(self) -> Optional[str]:
        return self.status.at_provider.id

    @property
    def provider_config_name(self) -> str:
        return self.spec.provider_config_ref.name


# ==================== RKE1Cluster ====================


class LocalClusterAuthEndpoint(CamelModel):
    enabled: Optional[bool] = None
    fqdn: Optional[str] = None


class RKEClusterConfig(PassthroughModel):
    """Cluster creation document sent to POST /v3/clusters."""

    rancher_kubernetes_engine_config: Optional[Dict[str, Any]] = None
    docker_root_dir: Optional[str] = None
    enable_cluster_alerting: Optional[bool] = None
    enable_cluster_monitoring: Optional[bool] = None
    enable_network_policy: Optional[bool] = None
    labels: Optional[Dict[str, str]] = None
    local_cluster_auth_endpoint: Optional[LocalClusterAuthEndpoint] = None
    name: Optional[str] = None


class NodePool(PassthroughModel):
    annotations: Optional[Dict[str, str]] = None
    base_type: Optional[str] = None
    cluster_id: Optional[str] = None
    control_plane: Optional[bool] = None
    delete_not_ready_after_secs: Optional[int] = None
    drain_before_delete: Optional[bool] = None
    driver: Optional[str] = None
    etcd: Optional[bool] = None
    hostname_prefix: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    name: Optional[str] = None
    node_template_id: Optional[str] = None
    # Name of a node template; resolved to node_template_id before creation
    node_template_id_ref: Optional[str] = None
    quantity: Optional[int] = None
    worker: Optional[bool] = None

    def to_request(self, node_template_id: Optional[str] = None) -> Dict[str, Any]:
        """Build the POST /v3/nodepool body, using a resolved template id if given."""
        body = self.model_dump(
            by_alias=True,
            exclude_none=True,
            mode="json",
            exclude={"node_template_id_ref"},
        )
        if node_template_id:
            body["nodeTemplateId"] = node_template_id
        return body


class ClusterParameters(CamelModel):
    kubeconfig_secret_namespace: Optional[str] = None
    region: Optional[str] = None
    rke: RKEClusterConfig = Field(default_factory=RKEClusterConfig)
    node_pools: List[NodePool] = Field(default_factory=list)


class ClusterSpec(CamelModel):
    provider_config_ref: ProviderConfigReference = Field(
        default_factory=ProviderConfigReference
    )
    for_provider: ClusterParameters


class RKE1Cluster(ManagedResource):
    kind: Literal["RKE1Cluster"] = "RKE1Cluster"
    spec: ClusterSpec

    @property
    def remote_name(self) -> str:
        """Name the cluster carries on the Rancher server."""
        return self.spec.for_provider.rke.name or self.name

    def cluster_request(self) -> Dict[str, Any]:
        """Build the POST /v3/clusters body."""
        body = self.spec.for_provider.rke.to_wire()
        body["name"] = self.remote_name
        return body


# ==================== RKE1NodeTemplate ====================


class Amazonec2Config(PassthroughModel):
    ami: Optional[str] = None
    block_duration_minutes: Optional[int] = None
    device_name: Optional[str] = None
    encrypt_ebs_volume: Optional[bool] = None
    endpoint: Optional[str] = None
    http_endpoint: Optional[str] = None
    http_tokens: Optional[str] = None
    iam_instance_profile: Optional[str] = None
    insecure_transport: Optional[bool] = None
    instance_type: Optional[str] = None
    keypair_name: Optional[str] = None
    kms_key: Optional[str] = None
    monitoring: Optional[bool] = None
    private_address_only: Optional[bool] = None
    region: Optional[str] = None
    request_spot_instance: Optional[bool] = None
    retries: Optional[int] = None
    root_size: Optional[int] = None
    security_group: Optional[List[str]] = None
    security_group_readonly: Optional[bool] = None
    session_token: Optional[str] = None
    spot_price: Optional[str] = None
    ssh_key_contents: Optional[str] = None
    ssh_user: Optional[str] = None
    subnet_id: Optional[str] = None
    # Name tag of a subnet; resolved to subnet_id before creation
    subnet_id_ref: Optional[str] = None
    tags: Optional[str] = None
    use_ebs_optimized_instance: Optional[bool] = None
    use_private_address: Optional[bool] = None
    user_data: Optional[str] = Field(default=None, alias="userdata")
    volume_type: Optional[str] = None
    vpc_id: Optional[str] = None
    # Name tag of a VPC; resolved to vpc_id before creation
    vpc_id_ref: Optional[str] = None
    zone: Optional[str] = None


class NodeTemplateParameters(PassthroughModel):
    name: Optional[str] = None
    cloud_credential_id: Optional[str] = None
    display_name: Optional[str] = None
    driver: Optional[str] = None
    engine_install_url: Optional[str] = Field(default=None, alias="engineInstallURL")
    use_internal_ip_address: Optional[bool] = Field(
        default=None, alias="useInternalIPAddress"
    )
    amazonec2_config: Amazonec2Config = Field(default_factory=Amazonec2Config)
    labels: Optional[Dict[str, str]] = None


class NodeTemplateSpec(CamelModel):
    provider_config_ref: ProviderConfigReference = Field(
        default_factory=ProviderConfigReference
    )
    for_provider: NodeTemplateParameters


class RKE1NodeTemplate(ManagedResource):
    kind: Literal["RKE1NodeTemplate"] = "RKE1NodeTemplate"
    spec: NodeTemplateSpec

    @property
    def remote_name(self) -> str:
        return self.spec.for_provider.name or self.name

    def node_template_request(self) -> Dict[str, Any]:
        """Build the POST /v3/nodetemplate body without symbolic references."""
        body = self.spec.for_provider.model_dump(
            by_alias=True,
            exclude_none=True,
            mode="json",
            exclude={"amazonec2_config": {"vpc_id_ref", "subnet_id_ref"}},
        )
        body["name"] = self.remote_name
        return body


# ==================== ProviderConfig & Secret ====================


class CredentialsSource(str, Enum):
    SECRET = "Secret"
    ENVIRONMENT = "Environment"
    FILESYSTEM = "Filesystem"
    NONE = "None"


class SecretKeySelector(CamelModel):
    name: str
    namespace: str = ""
    key: str


class EnvSelector(CamelModel):
    name: str


class FsSelector(CamelModel):
    path: str


class CredentialSelectors(CamelModel):
    source: CredentialsSource = CredentialsSource.NONE
    secret_ref: Optional[SecretKeySelector] = None
    env: Optional[EnvSelector] = None
    fs: Optional[FsSelector] = None


class AWSCredentialsConfig(CamelModel):
    access_key_id: Optional[CredentialSelectors] = None
    secret_access_key: Optional[CredentialSelectors] = None
    session_token: Optional[CredentialSelectors] = None

    def is_empty(self) -> bool:
        return self.access_key_id is None and self.secret_access_key is None


class ProviderConfigSpec(CamelModel):
    rancher_host: str
    credentials: CredentialSelectors
    aws_creds: Optional[AWSCredentialsConfig] = None


class ProviderConfig(CamelModel):
    kind: Literal["ProviderConfig"] = "ProviderConfig"
    metadata: ObjectMeta
    spec: ProviderConfigSpec


class Secret(CamelModel):
    """Key/value secret; values are base64 encoded like Kubernetes secrets."""

    kind: Literal["Secret"] = "Secret"
    metadata: ObjectMeta
    data: Dict[str, str] = Field(default_factory=dict)

    def get_value(self, key: str) -> bytes:
        """Return the decoded value for key (KeyError if absent)."""
        return base64.b64decode(self.data[key])

    @classmethod
    def from_values(
        cls, name: str, namespace: str, values: Dict[str, bytes]
    ) -> "Secret":
        return cls(
            metadata=ObjectMeta(name=name, namespace=namespace),
            data={k: base64.b64encode(v).decode("ascii") for k, v in values.items()},
        )


# ==================== Control plane records ====================


class RemoteRecord(CamelModel):
    """One entry of a /v3 collection response."""

    id: str
    state: str = ""
    name: str = ""


class RecordList(CamelModel):
    data: List[RemoteRecord]


class CreatedRecord(CamelModel):
    id: str


class KubeconfigResponse(CamelModel):
    config: str
