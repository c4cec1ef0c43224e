#!/usr/bin/env python3
"""
ProxyFleet Operator for Kubernetes

Watches Proxy resources and keeps one proxy workload per Proxy, running as a
Deployment or a DaemonSet depending on its provider settings.
"""

import asyncio
import logging
import sys
from datetime import UTC, datetime
from typing import Any

import kopf
from kubernetes import client, config
from pydantic import ValidationError

from proxyfleet_operator._version import __version__
from proxyfleet_operator.cluster import KubernetesWorkloadStore
from proxyfleet_operator.config import OperatorConfig
from proxyfleet_operator.exceptions import ProxyFleetError
from proxyfleet_operator.models import ProxyDesiredState, ProxyIdentity
from proxyfleet_operator.naming import derived_name
from proxyfleet_operator.reconciler import ProxyInfra

logger = logging.getLogger(__name__)

GROUP = "gateway.proxyfleet.dev"
VERSION = "v1alpha1"
PLURAL = "proxies"

# Initialized on startup
operator_config: OperatorConfig | None = None
proxy_infra: ProxyInfra | None = None


def _initialize_kubernetes_clients() -> None:
    """Load Kubernetes configuration and build the reconciler."""
    global operator_config, proxy_infra  # noqa: PLW0603

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")

    operator_config = OperatorConfig.from_env()
    logging.getLogger().setLevel(operator_config.log_level)
    proxy_infra = ProxyInfra(KubernetesWorkloadStore(client.AppsV1Api()), operator_config)


def _get_infra() -> tuple[ProxyInfra, OperatorConfig]:
    if proxy_infra is None or operator_config is None:
        raise RuntimeError("Kubernetes clients not initialized")
    return proxy_infra, operator_config


def build_desired_state(spec: Any, name: str, namespace: str) -> ProxyDesiredState:
    """Convert a Proxy resource into the proxy's desired state.

    Raises:
        kopf.PermanentError: If the resource spec is malformed
    """
    spec = dict(spec or {})
    try:
        identity = ProxyIdentity(
            name=name, namespace=namespace, labels=dict(spec.get("ownerLabels") or {})
        )
        return ProxyDesiredState.model_validate(
            {
                "identity": identity,
                "provider": spec.get("provider"),
                "labels": dict(spec.get("labels") or {}),
                "annotations": dict(spec.get("annotations") or {}),
            }
        )
    except ValidationError as e:
        raise kopf.PermanentError(f"Invalid Proxy {namespace}/{name}: {e}") from e


def _condition(status: str, reason: str, message: str) -> dict[str, Any]:
    return {
        "type": "Ready",
        "status": status,
        "lastTransitionTime": datetime.now(UTC).isoformat(),
        "reason": reason,
        "message": message,
    }


def _kopf_error(
    error: ProxyFleetError, retry_delay: int
) -> kopf.PermanentError | kopf.TemporaryError:
    """Translate a reconciler error into kopf's retry semantics."""
    if error.retryable:
        return kopf.TemporaryError(error.message, delay=retry_delay)
    return kopf.PermanentError(error.message)


@kopf.on.startup()
async def startup_handler(logger: logging.Logger, **_kwargs: Any) -> None:
    """Build the reconciler unless main() already did."""
    if proxy_infra is None:
        _initialize_kubernetes_clients()
    _, cfg = _get_infra()
    logger.info(
        "ProxyFleet operator %s managing proxy workloads in namespace %s",
        __version__,
        cfg.namespace,
    )


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)
async def reconcile_proxy(  # type: ignore[no-untyped-def]
    spec, name, namespace, logger, **_kwargs
) -> dict[str, Any]:
    """Handle Proxy creation, updates and operator restarts"""
    infra, cfg = _get_infra()
    desired = build_desired_state(spec, name, namespace)

    logger.info(f"Reconciling Proxy {namespace}/{name}")
    try:
        kind = await asyncio.to_thread(infra.apply_workload, desired.identity, desired)
    except ProxyFleetError as e:
        logger.error(f"Failed to reconcile Proxy {namespace}/{name}: {e.message}")
        raise _kopf_error(e, cfg.retry_delay) from e

    workload_name = derived_name(desired.identity)
    logger.info(f"Proxy {namespace}/{name} running as {kind.k8s_kind} {workload_name}")
    return {
        "phase": "Running",
        "workloadKind": kind.value,
        "workloadName": workload_name,
        "workloadNamespace": cfg.namespace,
        "conditions": [
            _condition(
                "True", "WorkloadReconciled", f"{kind.k8s_kind} {workload_name} is current"
            )
        ],
    }


@kopf.on.delete(GROUP, VERSION, PLURAL)
async def delete_proxy(spec, name, namespace, logger, **_kwargs):  # type: ignore[no-untyped-def]
    """Handle Proxy deletion"""
    infra, cfg = _get_infra()
    identity = ProxyIdentity(
        name=name, namespace=namespace, labels=dict((spec or {}).get("ownerLabels") or {})
    )

    logger.info(f"Deleting workloads for Proxy {namespace}/{name}")
    try:
        await asyncio.to_thread(infra.delete_workload, identity)
    except ProxyFleetError as e:
        if e.retryable:
            logger.warning(f"Retrying deletion of Proxy {namespace}/{name}: {e.message}")
            raise kopf.TemporaryError(e.message, delay=cfg.retry_delay) from e
        # Don't block finalizer removal on errors a retry cannot fix
        logger.error(f"Error during Proxy {namespace}/{name} deletion (non-fatal): {e.message}")
        return

    logger.info(f"Successfully deleted workloads for Proxy {namespace}/{name}")


def main() -> None:
    """Main entry point for the operator."""
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting ProxyFleet Operator %s...", __version__)

    try:
        _initialize_kubernetes_clients()
        kopf.run(
            clusterwide=True,
            liveness_endpoint="http://0.0.0.0:8080/healthz",
        )
    except Exception as e:
        logger.error("Failed to start operator: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
