"""
Rendering of proxy workloads from a proxy's desired state
"""

import json
from dataclasses import dataclass
from typing import Any

from kubernetes.client import ApiClient
from kubernetes.client.models import (
    V1Capabilities,
    V1Container,
    V1ContainerPort,
    V1DaemonSet,
    V1DaemonSetSpec,
    V1DaemonSetUpdateStrategy,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStrategy,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1PodSecurityContext,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1RollingUpdateDaemonSet,
    V1RollingUpdateDeployment,
    V1SecurityContext,
    V1Volume,
    V1VolumeMount,
)

from proxyfleet_operator.config import OperatorConfig
from proxyfleet_operator.models import (
    OWNING_GATEWAY_NAME_LABEL,
    OWNING_GATEWAY_NAMESPACE_LABEL,
    ContainerOverride,
    PerNodeProvider,
    PodOverride,
    ProxyDesiredState,
    ReplicaManagedProvider,
    WorkloadKind,
)
from proxyfleet_operator.naming import derived_name, label_value

PROXY_CONTAINER_NAME = "envoy"
ADMIN_PORT = 19000
READINESS_PORT = 19001
READINESS_PATH = "/ready"

DEFAULT_REQUESTS = {"cpu": "100m", "memory": "512Mi"}

# Selector labels shared by every proxy workload; owning gateway labels are added per proxy
PROXY_SELECTOR_LABELS = {
    "app.kubernetes.io/name": "envoy",
    "app.kubernetes.io/component": "proxy",
    "app.kubernetes.io/managed-by": "proxyfleet-operator",
}

# Label and annotation keys the operator set on a workload, as sorted JSON lists
MANAGED_METADATA_ANNOTATION = "gateway.proxyfleet.dev/managed-metadata"
METADATA_FIELDS = ("labels", "annotations")

_api_client = ApiClient()


@dataclass(frozen=True)
class RenderedWorkload:
    """A fully rendered workload, keyed by kind, namespace and name"""

    kind: WorkloadKind
    namespace: str
    name: str
    body: V1Deployment | V1DaemonSet


def serialize_spec(obj: Any) -> Any:
    """Plain-dict form of a Kubernetes model, used for deep comparison."""
    return _api_client.sanitize_for_serialization(obj)


class ResourceRender:
    """Renders the workload for a single proxy"""

    def __init__(
        self, namespace: str, desired: ProxyDesiredState, config: OperatorConfig
    ) -> None:
        self.namespace = namespace
        self.desired = desired
        self.config = config
        self.name = derived_name(desired.identity)

    @property
    def kind(self) -> WorkloadKind:
        """Workload kind selected by the provider settings"""
        provider = self.desired.provider
        if provider is None or isinstance(provider, ReplicaManagedProvider):
            return WorkloadKind.REPLICA_MANAGED
        if isinstance(provider, PerNodeProvider):
            return WorkloadKind.PER_NODE
        raise TypeError(f"Unsupported provider settings: {type(provider).__name__}")

    def workload(self) -> RenderedWorkload:
        """Render the workload of the selected kind."""
        kind = self.kind
        body = self.deployment() if kind is WorkloadKind.REPLICA_MANAGED else self.daemon_set()
        return RenderedWorkload(kind=kind, namespace=self.namespace, name=self.name, body=body)

    def selector_labels(self) -> dict[str, str]:
        """Labels selecting the proxy's pods; fixed for the life of the workload."""
        identity = self.desired.identity
        return {
            **PROXY_SELECTOR_LABELS,
            OWNING_GATEWAY_NAMESPACE_LABEL: label_value(identity.namespace),
            OWNING_GATEWAY_NAME_LABEL: label_value(identity.name),
        }

    def ownership_labels(self) -> dict[str, str]:
        """Selector labels plus the extra labels of the owning gateway."""
        return {**self.desired.identity.labels, **self.selector_labels()}

    def _metadata(self) -> V1ObjectMeta:
        labels = {**self.desired.labels, **self.ownership_labels()}
        annotations = dict(self.desired.annotations)
        annotations[MANAGED_METADATA_ANNOTATION] = json.dumps(
            {"annotations": sorted(annotations), "labels": sorted(labels)},
            separators=(",", ":"),
        )
        return V1ObjectMeta(
            name=self.name,
            namespace=self.namespace,
            labels=labels,
            annotations=annotations,
        )

    def _container_override(self) -> ContainerOverride:
        provider = self.desired.provider
        if provider is None or provider.container is None:
            return ContainerOverride()
        return provider.container

    def _pod_override(self) -> PodOverride:
        provider = self.desired.provider
        if provider is None or provider.pod is None:
            return PodOverride()
        return provider.pod

    def _resources(self) -> V1ResourceRequirements:
        """Baseline resources with any override merged per key."""
        override = self._container_override().resources
        requests = dict(DEFAULT_REQUESTS)
        limits: dict[str, str] = {}
        if override is not None:
            requests.update(override.requests or {})
            limits.update(override.limits or {})
        return V1ResourceRequirements(requests=requests, limits=limits or None)

    def container(self) -> V1Container:
        """Proxy container built from the baseline template and overrides"""
        image = self._container_override().image or self.config.proxy_image

        return V1Container(
            name=PROXY_CONTAINER_NAME,
            image=image,
            image_pull_policy="IfNotPresent",
            command=["envoy"],
            args=[
                "--service-cluster",
                self.name,
                "--service-node",
                "$(ENVOY_POD_NAME)",
                "--log-level",
                "warn",
            ],
            env=[
                V1EnvVar(
                    name="ENVOY_POD_NAME",
                    value_from=V1EnvVarSource(
                        field_ref=V1ObjectFieldSelector(
                            api_version="v1", field_path="metadata.name"
                        )
                    ),
                )
            ],
            ports=[
                V1ContainerPort(container_port=ADMIN_PORT, name="admin", protocol="TCP"),
                V1ContainerPort(container_port=READINESS_PORT, name="readiness", protocol="TCP"),
            ],
            resources=self._resources(),
            security_context=V1SecurityContext(
                allow_privilege_escalation=False,
                capabilities=V1Capabilities(drop=["ALL"]),
            ),
            readiness_probe=V1Probe(
                http_get=V1HTTPGetAction(
                    path=READINESS_PATH, port=READINESS_PORT, scheme="HTTP"
                ),
                period_seconds=5,
                timeout_seconds=1,
                success_threshold=1,
                failure_threshold=1,
            ),
            volume_mounts=[V1VolumeMount(name="tmp-volume", mount_path="/tmp")],
            termination_message_path="/dev/termination-log",
            termination_message_policy="File",
        )

    def pod_template(self) -> V1PodTemplateSpec:
        pod = self._pod_override()
        return V1PodTemplateSpec(
            metadata=V1ObjectMeta(
                labels={**pod.labels, **self.ownership_labels()},
                annotations=dict(pod.annotations) or None,
            ),
            spec=V1PodSpec(
                containers=[self.container()],
                security_context=V1PodSecurityContext(run_as_non_root=True, run_as_user=65532),
                volumes=[V1Volume(name="tmp-volume", empty_dir=V1EmptyDirVolumeSource())],
                restart_policy="Always",
                dns_policy="ClusterFirst",
                scheduler_name="default-scheduler",
                termination_grace_period_seconds=300,
            ),
        )

    def deployment(self) -> V1Deployment:
        """Render the Deployment for the proxy"""
        provider = self.desired.provider
        replicas = self.config.default_replicas
        if isinstance(provider, ReplicaManagedProvider) and provider.replicas is not None:
            replicas = provider.replicas

        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=self._metadata(),
            spec=V1DeploymentSpec(
                replicas=replicas,
                selector=V1LabelSelector(match_labels=self.selector_labels()),
                template=self.pod_template(),
                strategy=V1DeploymentStrategy(
                    type="RollingUpdate",
                    rolling_update=V1RollingUpdateDeployment(
                        max_surge="25%", max_unavailable="25%"
                    ),
                ),
                revision_history_limit=10,
                progress_deadline_seconds=600,
            ),
        )

    def daemon_set(self) -> V1DaemonSet:
        """Render the DaemonSet for the proxy"""
        return V1DaemonSet(
            api_version="apps/v1",
            kind="DaemonSet",
            metadata=self._metadata(),
            spec=V1DaemonSetSpec(
                selector=V1LabelSelector(match_labels=self.selector_labels()),
                template=self.pod_template(),
                update_strategy=V1DaemonSetUpdateStrategy(
                    type="RollingUpdate",
                    rolling_update=V1RollingUpdateDaemonSet(max_surge=0, max_unavailable=1),
                ),
                revision_history_limit=10,
            ),
        )
