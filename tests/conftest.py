"""Test configuration and fixtures."""

import copy
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from proxyfleet_operator.config import OperatorConfig
from proxyfleet_operator.exceptions import WorkloadNotFoundError
from proxyfleet_operator.models import ProxyDesiredState, ProxyIdentity, WorkloadKind
from proxyfleet_operator.reconciler import ProxyInfra
from proxyfleet_operator.render import RenderedWorkload


class InMemoryWorkloadStore:
    """Workload store keeping records in a dict and recording every mutating call."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str, WorkloadKind], Any] = {}
        self.calls: list[tuple[str, WorkloadKind, str]] = []
        self._resource_version = 0

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def seed(self, workload: RenderedWorkload) -> None:
        """Store a workload without recording a call."""
        body = copy.deepcopy(workload.body)
        body.metadata.resource_version = self._next_version()
        self.records[(workload.namespace, workload.name, workload.kind)] = body

    def get(self, namespace: str, name: str, kind: WorkloadKind) -> Any:
        record = self.records.get((namespace, name, kind))
        return copy.deepcopy(record)

    def create(self, workload: RenderedWorkload) -> None:
        self.calls.append(("create", workload.kind, workload.name))
        self.seed(workload)

    def update(self, workload: RenderedWorkload) -> None:
        self.calls.append(("update", workload.kind, workload.name))
        self.seed(workload)

    def delete(self, namespace: str, name: str, kind: WorkloadKind) -> None:
        self.calls.append(("delete", kind, name))
        if self.records.pop((namespace, name, kind), None) is None:
            raise WorkloadNotFoundError(
                message=f"Failed to delete {kind.k8s_kind}:{namespace}/{name}: Not Found",
                operation="delete",
                resource=f"{kind.k8s_kind}:{namespace}/{name}",
            )

    def kinds_present(self, namespace: str, name: str) -> set[WorkloadKind]:
        return {kind for kind in WorkloadKind if (namespace, name, kind) in self.records}


@pytest.fixture
def operator_config() -> OperatorConfig:
    """Operator configuration with fixed values."""
    return OperatorConfig(
        namespace="proxyfleet-system",
        proxy_image="envoyproxy/envoy:distroless-v1.31.0",
        default_replicas=1,
    )


@pytest.fixture
def identity() -> ProxyIdentity:
    """Proxy owned by the default/eg gateway."""
    return ProxyIdentity(name="eg", namespace="default")


@pytest.fixture
def desired(identity: ProxyIdentity) -> ProxyDesiredState:
    """Desired state with no provider settings."""
    return ProxyDesiredState(identity=identity)


@pytest.fixture
def store() -> InMemoryWorkloadStore:
    return InMemoryWorkloadStore()


@pytest.fixture
def infra(store: InMemoryWorkloadStore, operator_config: OperatorConfig) -> ProxyInfra:
    return ProxyInfra(store, operator_config)


@pytest.fixture
def mock_apps_api() -> MagicMock:
    """Mock Kubernetes AppsV1Api."""
    return MagicMock(spec=client.AppsV1Api)
