"""Resource naming for proxy workloads."""

import hashlib
import re

from proxyfleet_operator.models import ProxyIdentity

RESOURCE_PREFIX = "envoy"

# DNS-1123 labels are capped at 63 characters; prefix + "-" + 48 + "-" + 8 stays under it
MAX_NATURAL_NAME_LENGTH = 48
HASH_LENGTH = 8
MAX_LABEL_VALUE_LENGTH = 63

_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")


def hashed_name(value: str, length: int = MAX_NATURAL_NAME_LENGTH) -> str:
    """Truncate a name to ``length`` characters and append a short sha256 of the full value.

    Args:
        value: The natural name, e.g. "namespace/name"

    Returns:
        A lowercase DNS-1123 compatible name
    """
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    sanitized = _INVALID_CHARS.sub("-", value.lower()).strip("-")
    trimmed = sanitized[:length].rstrip("-")
    if not trimmed:
        return digest
    return f"{trimmed}-{digest}"


def derived_name(identity: ProxyIdentity) -> str:
    """Stable workload name for a proxy, shared by both workload kinds."""
    return f"{RESOURCE_PREFIX}-{hashed_name(f'{identity.namespace}/{identity.name}')}"


def label_value(value: str) -> str:
    """Value usable as a label value; names over 63 characters are hashed."""
    if len(value) <= MAX_LABEL_VALUE_LENGTH:
        return value
    return hashed_name(value)
