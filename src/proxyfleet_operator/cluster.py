"""
Cluster access for proxy workloads.

The reconciler only needs single-object get/create/update/delete over the two
workload kinds. ``WorkloadStore`` is that capability; ``KubernetesWorkloadStore``
implements it with the Kubernetes ``AppsV1Api``.
"""

import logging
from typing import Protocol

from kubernetes import client
from kubernetes.client.models import V1DaemonSet, V1Deployment

from proxyfleet_operator.exceptions import handle_kubernetes_errors
from proxyfleet_operator.models import WorkloadKind
from proxyfleet_operator.render import RenderedWorkload

logger = logging.getLogger(__name__)

WorkloadRecord = V1Deployment | V1DaemonSet


class WorkloadStore(Protocol):
    """Protocol defining the cluster access the reconciler relies on.

    ``get`` returns ``None`` when the workload is absent. ``delete`` raises
    ``WorkloadNotFoundError`` when there is nothing to delete.
    """

    def get(self, namespace: str, name: str, kind: WorkloadKind) -> WorkloadRecord | None:
        """Read a workload."""
        ...

    def create(self, workload: RenderedWorkload) -> None:
        """Create a workload."""
        ...

    def update(self, workload: RenderedWorkload) -> None:
        """Replace an existing workload."""
        ...

    def delete(self, namespace: str, name: str, kind: WorkloadKind) -> None:
        """Delete a workload."""
        ...


class KubernetesWorkloadStore:
    """Workload access backed by the Kubernetes API"""

    def __init__(self, apps_api: client.AppsV1Api | None = None) -> None:
        self.k8s_apps = apps_api or client.AppsV1Api()

    @handle_kubernetes_errors("get")
    def get(self, namespace: str, name: str, kind: WorkloadKind) -> WorkloadRecord | None:
        try:
            if kind is WorkloadKind.REPLICA_MANAGED:
                return self.k8s_apps.read_namespaced_deployment(name=name, namespace=namespace)
            return self.k8s_apps.read_namespaced_daemon_set(name=name, namespace=namespace)
        except client.ApiException as e:
            if e.status == 404:
                logger.debug("%s %s/%s not found", kind.k8s_kind, namespace, name)
                return None
            raise

    @handle_kubernetes_errors("create")
    def create(self, workload: RenderedWorkload) -> None:
        if workload.kind is WorkloadKind.REPLICA_MANAGED:
            self.k8s_apps.create_namespaced_deployment(
                namespace=workload.namespace, body=workload.body
            )
        else:
            self.k8s_apps.create_namespaced_daemon_set(
                namespace=workload.namespace, body=workload.body
            )

    @handle_kubernetes_errors("update")
    def update(self, workload: RenderedWorkload) -> None:
        if workload.kind is WorkloadKind.REPLICA_MANAGED:
            self.k8s_apps.replace_namespaced_deployment(
                name=workload.name, namespace=workload.namespace, body=workload.body
            )
        else:
            self.k8s_apps.replace_namespaced_daemon_set(
                name=workload.name, namespace=workload.namespace, body=workload.body
            )

    @handle_kubernetes_errors("delete")
    def delete(self, namespace: str, name: str, kind: WorkloadKind) -> None:
        # Background: the record goes away now, the garbage collector removes the pods
        options = client.V1DeleteOptions(propagation_policy="Background")
        if kind is WorkloadKind.REPLICA_MANAGED:
            self.k8s_apps.delete_namespaced_deployment(
                name=name, namespace=namespace, body=options
            )
        else:
            self.k8s_apps.delete_namespaced_daemon_set(
                name=name, namespace=namespace, body=options
            )
