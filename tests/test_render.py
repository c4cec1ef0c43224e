"""Tests for workload rendering."""

import json
from typing import Any

from kubernetes.client.models import V1DaemonSet, V1Deployment

from proxyfleet_operator.config import OperatorConfig
from proxyfleet_operator.models import (
    OWNING_GATEWAY_NAME_LABEL,
    OWNING_GATEWAY_NAMESPACE_LABEL,
    ContainerOverride,
    PerNodeProvider,
    PodOverride,
    ProxyDesiredState,
    ProxyIdentity,
    ReplicaManagedProvider,
    ResourceRequirements,
    WorkloadKind,
)
from proxyfleet_operator.naming import derived_name
from proxyfleet_operator.render import (
    DEFAULT_REQUESTS,
    MANAGED_METADATA_ANNOTATION,
    PROXY_CONTAINER_NAME,
    RenderedWorkload,
    ResourceRender,
    serialize_spec,
)


def _render(desired: ProxyDesiredState, config: OperatorConfig) -> RenderedWorkload:
    return ResourceRender(config.namespace, desired, config).workload()


def _proxy_container(body: Any) -> Any:
    containers = body.spec.template.spec.containers
    return next(c for c in containers if c.name == PROXY_CONTAINER_NAME)


class TestKindSelection:
    """Test workload kind selection from provider settings."""

    def test_no_provider_renders_deployment(
        self, desired: ProxyDesiredState, operator_config: OperatorConfig
    ) -> None:
        """Test absent provider settings give a Deployment with baseline replicas."""
        workload = _render(desired, operator_config)

        assert workload.kind is WorkloadKind.REPLICA_MANAGED
        assert isinstance(workload.body, V1Deployment)
        assert workload.body.spec.replicas == operator_config.default_replicas
        assert _proxy_container(workload.body).image == operator_config.proxy_image

    def test_replica_managed_provider_renders_deployment(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        """Test explicit replica-managed settings override the replica count."""
        desired = ProxyDesiredState(
            identity=identity, provider=ReplicaManagedProvider(replicas=3)
        )

        workload = _render(desired, operator_config)

        assert workload.kind is WorkloadKind.REPLICA_MANAGED
        assert workload.body.spec.replicas == 3

    def test_per_node_provider_renders_daemon_set(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        """Test per-node settings give a DaemonSet."""
        desired = ProxyDesiredState(identity=identity, provider=PerNodeProvider())

        workload = _render(desired, operator_config)

        assert workload.kind is WorkloadKind.PER_NODE
        assert isinstance(workload.body, V1DaemonSet)
        assert workload.body.kind == "DaemonSet"

    def test_provider_parsed_from_dict(self, identity: ProxyIdentity) -> None:
        """Test the provider union is selected by its type tag."""
        desired = ProxyDesiredState.model_validate(
            {"identity": identity, "provider": {"type": "PerNode"}}
        )

        assert isinstance(desired.provider, PerNodeProvider)


class TestIdentityAndLabels:
    """Test names and labels on rendered workloads."""

    def test_both_kinds_share_name(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        """Test both workload kinds use the derived name."""
        deployment = _render(ProxyDesiredState(identity=identity), operator_config)
        daemon_set = _render(
            ProxyDesiredState(identity=identity, provider=PerNodeProvider()), operator_config
        )

        assert deployment.name == daemon_set.name == derived_name(identity)
        assert deployment.body.metadata.name == daemon_set.body.metadata.name
        assert deployment.namespace == operator_config.namespace

    def test_ownership_labels_are_stamped(
        self, operator_config: OperatorConfig
    ) -> None:
        """Test ownership labels land on the object, pods and selector."""
        identity = ProxyIdentity(name="eg", namespace="default", labels={"team": "edge"})
        desired = ProxyDesiredState(
            identity=identity,
            labels={"tier": "edge", OWNING_GATEWAY_NAME_LABEL: "spoofed"},
            annotations={"owner": "platform"},
        )

        body = _render(desired, operator_config).body

        for labels in (
            body.metadata.labels,
            body.spec.template.metadata.labels,
            body.spec.selector.match_labels,
        ):
            assert labels[OWNING_GATEWAY_NAMESPACE_LABEL] == "default"
            assert labels[OWNING_GATEWAY_NAME_LABEL] == "eg"
        assert body.metadata.labels["team"] == "edge"
        assert body.spec.template.metadata.labels["team"] == "edge"
        assert body.metadata.labels["tier"] == "edge"
        assert body.metadata.annotations["owner"] == "platform"

    def test_selector_ignores_extra_owner_labels(
        self, operator_config: OperatorConfig
    ) -> None:
        """Test the selector depends only on the gateway namespace and name."""
        edge = ProxyIdentity(name="eg", namespace="default", labels={"team": "edge"})
        core = ProxyIdentity(name="eg", namespace="default", labels={"team": "core"})

        edge_body = _render(ProxyDesiredState(identity=edge), operator_config).body
        core_body = _render(ProxyDesiredState(identity=core), operator_config).body

        assert edge_body.spec.selector == core_body.spec.selector
        assert "team" not in edge_body.spec.selector.match_labels

    def test_long_gateway_name_fits_label_value(
        self, operator_config: OperatorConfig
    ) -> None:
        identity = ProxyIdentity(name="g" * 253, namespace="default")

        body = _render(ProxyDesiredState(identity=identity), operator_config).body

        owner = body.spec.selector.match_labels[OWNING_GATEWAY_NAME_LABEL]
        assert len(owner) <= 63
        assert body.metadata.labels[OWNING_GATEWAY_NAME_LABEL] == owner

    def test_managed_metadata_records_rendered_keys(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        """Test the workload records which labels and annotations the operator set."""
        desired = ProxyDesiredState(
            identity=identity, labels={"tier": "edge"}, annotations={"owner": "platform"}
        )

        metadata = _render(desired, operator_config).body.metadata

        managed = json.loads(metadata.annotations[MANAGED_METADATA_ANNOTATION])
        assert managed["annotations"] == ["owner"]
        assert managed["labels"] == sorted(metadata.labels)

    def test_pod_overrides(self, identity: ProxyIdentity, operator_config: OperatorConfig) -> None:
        """Test pod labels and annotations reach the template only."""
        desired = ProxyDesiredState(
            identity=identity,
            provider=PerNodeProvider(
                pod=PodOverride(labels={"sidecar": "off"}, annotations={"scrape": "true"})
            ),
        )

        body = _render(desired, operator_config).body

        assert body.spec.template.metadata.labels["sidecar"] == "off"
        assert body.spec.template.metadata.annotations == {"scrape": "true"}
        assert "sidecar" not in body.spec.selector.match_labels


class TestOverrides:
    """Test partial override semantics."""

    def test_image_override_leaves_other_fields_untouched(
        self, desired: ProxyDesiredState, operator_config: OperatorConfig
    ) -> None:
        """Test an image override changes only the image."""
        baseline = _render(desired, operator_config).body
        overridden = _render(
            desired.model_copy(
                update={
                    "provider": ReplicaManagedProvider(
                        container=ContainerOverride(image="proxy-dev:v1.2.3")
                    )
                }
            ),
            operator_config,
        ).body

        assert _proxy_container(overridden).image == "proxy-dev:v1.2.3"

        _proxy_container(overridden).image = _proxy_container(baseline).image
        assert serialize_spec(overridden.spec) == serialize_spec(baseline.spec)

    def test_resource_override_merges_per_key(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        """Test resource overrides merge onto the baseline requests."""
        desired = ProxyDesiredState(
            identity=identity,
            provider=ReplicaManagedProvider(
                container=ContainerOverride(
                    resources=ResourceRequirements(
                        requests={"memory": "1Gi"}, limits={"memory": "2Gi"}
                    )
                )
            ),
        )

        resources = _proxy_container(_render(desired, operator_config).body).resources

        assert resources.requests == {"cpu": DEFAULT_REQUESTS["cpu"], "memory": "1Gi"}
        assert resources.limits == {"memory": "2Gi"}

    def test_baseline_has_no_limits(
        self, desired: ProxyDesiredState, operator_config: OperatorConfig
    ) -> None:
        resources = _proxy_container(_render(desired, operator_config).body).resources

        assert resources.requests == DEFAULT_REQUESTS
        assert resources.limits is None

    def test_render_is_deterministic(
        self, desired: ProxyDesiredState, operator_config: OperatorConfig
    ) -> None:
        """Test rendering twice gives identical objects."""
        first = _render(desired, operator_config).body
        second = _render(desired, operator_config).body

        assert serialize_spec(first) == serialize_spec(second)

    def test_render_does_not_mutate_desired_state(
        self, identity: ProxyIdentity, operator_config: OperatorConfig
    ) -> None:
        desired = ProxyDesiredState(identity=identity, labels={"tier": "edge"})
        before = desired.model_dump()

        _render(desired, operator_config)

        assert desired.model_dump() == before
