"""
Data models for the ProxyFleet operator
"""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

# Ownership labels stamped on every rendered workload
OWNING_GATEWAY_NAMESPACE_LABEL = "gateway.proxyfleet.dev/owning-gateway-namespace"
OWNING_GATEWAY_NAME_LABEL = "gateway.proxyfleet.dev/owning-gateway-name"


class WorkloadKind(str, Enum):
    """Workload kinds a proxy can run as"""

    REPLICA_MANAGED = "ReplicaManaged"
    PER_NODE = "PerNode"

    @property
    def k8s_kind(self) -> str:
        """Kubernetes object kind backing this workload kind"""
        return "Deployment" if self is WorkloadKind.REPLICA_MANAGED else "DaemonSet"

    @property
    def other(self) -> "WorkloadKind":
        """The alternate workload kind"""
        if self is WorkloadKind.REPLICA_MANAGED:
            return WorkloadKind.PER_NODE
        return WorkloadKind.REPLICA_MANAGED


class ProxyIdentity(BaseModel):
    """Identity of a logical proxy, owned by a gateway"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Owning gateway name")
    namespace: str = Field(..., min_length=1, description="Owning gateway namespace")
    labels: dict[str, str] = Field(default_factory=dict, description="Extra ownership labels")


class ResourceRequirements(BaseModel):
    """Container resource requests and limits"""

    model_config = ConfigDict(frozen=True)

    requests: dict[str, str] | None = Field(default=None, description="Resource requests")
    limits: dict[str, str] | None = Field(default=None, description="Resource limits")


class ContainerOverride(BaseModel):
    """Overrides applied to the proxy container"""

    model_config = ConfigDict(frozen=True)

    image: str | None = Field(default=None, description="Container image override")
    resources: ResourceRequirements | None = Field(
        default=None, description="Resource requirements override"
    )


class PodOverride(BaseModel):
    """Overrides applied to the proxy pod template"""

    model_config = ConfigDict(frozen=True)

    labels: dict[str, str] = Field(default_factory=dict, description="Extra pod labels")
    annotations: dict[str, str] = Field(default_factory=dict, description="Pod annotations")


class ReplicaManagedProvider(BaseModel):
    """Run the proxy as a Deployment"""

    model_config = ConfigDict(frozen=True)

    type: Literal["ReplicaManaged"] = "ReplicaManaged"
    replicas: int | None = Field(default=None, ge=0, description="Replica count override")
    container: ContainerOverride | None = None
    pod: PodOverride | None = None


class PerNodeProvider(BaseModel):
    """Run the proxy as a DaemonSet, one pod per node"""

    model_config = ConfigDict(frozen=True)

    type: Literal["PerNode"] = "PerNode"
    container: ContainerOverride | None = None
    pod: PodOverride | None = None


ProviderSettings = Annotated[
    ReplicaManagedProvider | PerNodeProvider, Field(discriminator="type")
]


class ProxyDesiredState(BaseModel):
    """Desired state of a single proxy"""

    model_config = ConfigDict(frozen=True)

    identity: ProxyIdentity
    provider: ProviderSettings | None = Field(
        default=None, description="Provider settings, Deployment when unset"
    )
    labels: dict[str, str] = Field(default_factory=dict, description="Workload labels")
    annotations: dict[str, str] = Field(default_factory=dict, description="Workload annotations")
