"""
Operator configuration
"""

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")

DEFAULT_NAMESPACE = "proxyfleet-system"
DEFAULT_PROXY_IMAGE = "envoyproxy/envoy:distroless-v1.31.0"


class OperatorConfig(BaseModel):
    """Settings shared by every reconciliation pass"""

    namespace: str = Field(default=DEFAULT_NAMESPACE, description="Namespace for proxy workloads")
    proxy_image: str = Field(default=DEFAULT_PROXY_IMAGE, description="Baseline proxy image")
    default_replicas: int = Field(default=1, ge=0, description="Baseline Deployment replicas")
    log_level: str = Field(default="INFO", description="Root log level")
    retry_delay: int = Field(default=30, ge=1, description="Seconds before kopf retries")

    @classmethod
    def from_env(cls) -> "OperatorConfig":
        """Build configuration from the environment."""
        return cls(
            namespace=_get_operator_namespace(),
            proxy_image=os.getenv("PROXY_IMAGE", DEFAULT_PROXY_IMAGE),
            default_replicas=int(os.getenv("DEFAULT_REPLICAS", "1")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            retry_delay=int(os.getenv("RETRY_DELAY", "30")),
        )


def _get_operator_namespace() -> str:
    """
    Get the operator's namespace.

    When running in-cluster, reads from the service account namespace file.
    Falls back to environment variable or default for local development.
    """
    try:
        with SERVICE_ACCOUNT_NAMESPACE_PATH.open() as f:
            namespace = f.read().strip()
            logger.info("Detected operator namespace from service account: %s", namespace)
            return namespace
    except FileNotFoundError:
        namespace = os.getenv("NAMESPACE", DEFAULT_NAMESPACE)
        logger.info("Using namespace from environment/default: %s", namespace)
        return namespace
