"""
Proxy workload reconciler.

Converges the cluster to exactly one workload per proxy. A pass renders the
desired workload, creates or replaces it when it is missing or has drifted,
then removes a workload of the other kind left behind by a kind switch. The
new kind is always in place before the old one is deleted, and every step is
safe to repeat, so retrying belongs to the caller.
"""

import json
import logging
from typing import Any

from kubernetes.client.models import V1ObjectMeta
from kubernetes.utils.quantity import parse_quantity

from proxyfleet_operator.cluster import WorkloadRecord, WorkloadStore
from proxyfleet_operator.config import OperatorConfig
from proxyfleet_operator.exceptions import ProxyFleetError, WorkloadNotFoundError
from proxyfleet_operator.models import ProxyDesiredState, ProxyIdentity, WorkloadKind
from proxyfleet_operator.naming import derived_name
from proxyfleet_operator.render import (
    MANAGED_METADATA_ANNOTATION,
    METADATA_FIELDS,
    RenderedWorkload,
    ResourceRender,
    serialize_spec,
)

logger = logging.getLogger(__name__)


def _quantity(value: Any) -> Any:
    try:
        return parse_quantity(value)
    except ValueError:
        return value


def comparable_spec(spec: Any) -> Any:
    """Serialized workload spec with container resource quantities parsed.

    The API server stores quantities in canonical form ("1000m" comes back as
    "1"), so they are compared by value.
    """
    data = serialize_spec(spec)
    pod_spec = (data.get("template") or {}).get("spec") or {}
    for container in pod_spec.get("containers") or []:
        resources = container.get("resources") or {}
        for field in ("requests", "limits"):
            if resources.get(field):
                resources[field] = {
                    name: _quantity(value) for name, value in resources[field].items()
                }
    return data


def _managed_keys(metadata: V1ObjectMeta) -> dict[str, set[str]]:
    """Label and annotation keys recorded as set by the operator on a stored workload."""
    raw = (metadata.annotations or {}).get(MANAGED_METADATA_ANNOTATION)
    if not raw:
        return {}
    try:
        recorded = json.loads(raw)
    except ValueError:
        logger.warning(
            "Ignoring unreadable %s annotation on %s", MANAGED_METADATA_ANNOTATION, metadata.name
        )
        return {}
    if not isinstance(recorded, dict):
        return {}
    return {field: set(recorded.get(field) or []) for field in METADATA_FIELDS}


def merged_metadata(
    current: WorkloadRecord, desired: RenderedWorkload
) -> dict[str, dict[str, str]]:
    """Stored labels and annotations with the rendered ones applied.

    Keys the operator set on an earlier pass and no longer renders are dropped.
    Keys written by anyone else, such as ``deployment.kubernetes.io/revision``,
    are kept.
    """
    managed = _managed_keys(current.metadata)
    merged: dict[str, dict[str, str]] = {}
    for field in METADATA_FIELDS:
        stored = getattr(current.metadata, field, None) or {}
        wanted = getattr(desired.body.metadata, field, None) or {}
        dropped = managed.get(field, set()) - wanted.keys()
        kept = {key: value for key, value in stored.items() if key not in dropped}
        merged[field] = {**kept, **wanted}
    return merged


def has_drifted(current: WorkloadRecord, desired: RenderedWorkload) -> bool:
    """Check whether a stored workload differs from the rendered one.

    The spec must match, with resource quantities compared by value. Labels and
    annotations must equal the stored ones after the rendered metadata is merged
    in, so a managed key that is no longer wanted counts as drift.
    """
    if comparable_spec(current.spec) != comparable_spec(desired.body.spec):
        return True

    merged = merged_metadata(current, desired)
    return any(
        (getattr(current.metadata, field, None) or {}) != merged[field]
        for field in METADATA_FIELDS
    )


class ProxyInfra:
    """Reconciles proxy workloads in the operator namespace"""

    def __init__(self, store: WorkloadStore, config: OperatorConfig) -> None:
        self.store = store
        self.config = config
        self.namespace = config.namespace

    def render(self, desired: ProxyDesiredState) -> RenderedWorkload:
        return ResourceRender(self.namespace, desired, self.config).workload()

    def apply_workload(self, identity: ProxyIdentity, desired: ProxyDesiredState) -> WorkloadKind:
        """
        Converge the proxy's workload to the desired state.

        If creating or updating the desired kind fails, the error is raised and
        a workload of the other kind is left running until a later pass succeeds.

        Returns:
            The workload kind that is now active

        Raises:
            ValueError: If ``desired`` belongs to a different proxy
            ProxyFleetError: If a cluster call failed; the error names the call
        """
        if desired.identity != identity:
            raise ValueError(
                f"Desired state for {desired.identity.namespace}/{desired.identity.name} "
                f"passed for proxy {identity.namespace}/{identity.name}"
            )

        workload = self.render(desired)
        self._create_or_update(workload)
        self._delete_stale(workload.name, workload.kind.other)
        return workload.kind

    def _create_or_update(self, workload: RenderedWorkload) -> None:
        kind_name = workload.kind.k8s_kind
        current = self.store.get(workload.namespace, workload.name, workload.kind)

        if current is None:
            self.store.create(workload)
            logger.info("Created %s %s/%s", kind_name, workload.namespace, workload.name)
            return

        if not has_drifted(current, workload):
            logger.debug("%s %s/%s is up to date", kind_name, workload.namespace, workload.name)
            return

        # Full replace of the spec, guarded by the stored resourceVersion
        merged = merged_metadata(current, workload)
        metadata = workload.body.metadata
        metadata.resource_version = current.metadata.resource_version
        metadata.labels = merged["labels"] or None
        metadata.annotations = merged["annotations"] or None
        self.store.update(workload)
        logger.info("Updated %s %s/%s", kind_name, workload.namespace, workload.name)

    def _delete_stale(self, name: str, kind: WorkloadKind) -> None:
        if self.store.get(self.namespace, name, kind) is None:
            return
        try:
            self.store.delete(self.namespace, name, kind)
        except WorkloadNotFoundError:
            logger.debug("Stale %s %s/%s already gone", kind.k8s_kind, self.namespace, name)
            return
        logger.info("Deleted stale %s %s/%s", kind.k8s_kind, self.namespace, name)

    def delete_workload(self, identity: ProxyIdentity) -> None:
        """
        Delete the proxy's workload, whichever kind it is.

        Both kinds are attempted; the first failure is raised afterwards.
        Deleting a proxy with no workload is not an error.
        """
        name = derived_name(identity)
        errors: list[ProxyFleetError] = []

        for kind in WorkloadKind:
            try:
                self.store.delete(self.namespace, name, kind)
                logger.info("Deleted %s %s/%s", kind.k8s_kind, self.namespace, name)
            except WorkloadNotFoundError:
                logger.debug("%s %s/%s not found", kind.k8s_kind, self.namespace, name)
            except ProxyFleetError as e:
                errors.append(e)

        if errors:
            raise errors[0]
