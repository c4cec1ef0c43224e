"""
Error handling utilities and custom exceptions for the ProxyFleet operator
"""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)

# Statuses the API server uses to reject an object it will never accept as-is
INVALID_STATUSES = (400, 422)


class ProxyFleetError(Exception):
    """Base exception for workload operations"""

    retryable = True

    def __init__(self, message: str, operation: str, resource: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.resource = resource


class KubernetesOperationError(ProxyFleetError):
    """Exception for Kubernetes API operation failures"""

    def __init__(
        self,
        message: str,
        operation: str,
        resource: str,
        api_exception: ApiException | None = None,
    ):
        super().__init__(message, operation, resource)
        self.api_exception = api_exception
        self.status_code = api_exception.status if api_exception else None

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class WorkloadNotFoundError(KubernetesOperationError):
    """The workload does not exist"""

    retryable = True


class WorkloadConflictError(KubernetesOperationError):
    """The workload was modified concurrently"""

    retryable = True


class WorkloadInvalidError(KubernetesOperationError):
    """The API server rejected the rendered workload"""

    retryable = False


class TransportError(ProxyFleetError):
    """The API server could not be reached"""

    retryable = True


_ERRORS_BY_STATUS: dict[int, type[KubernetesOperationError]] = {
    404: WorkloadNotFoundError,
    409: WorkloadConflictError,
    **{status: WorkloadInvalidError for status in INVALID_STATUSES},
}


def _describe_resource(args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    """Build "Kind:namespace/name" from an accessor call's arguments."""
    workload = kwargs.get("workload") or (args[1] if len(args) == 2 else None)
    if workload is not None:
        return f"{workload.kind.k8s_kind}:{workload.namespace}/{workload.name}"

    namespace, name, kind = (list(args[1:4]) + [None, None, None])[:3]
    namespace = kwargs.get("namespace", namespace)
    name = kwargs.get("name", name)
    kind = kwargs.get("kind", kind)
    kind_name = kind.k8s_kind if kind is not None else "unknown"
    return f"{kind_name}:{namespace}/{name}"


def handle_kubernetes_errors(operation: str) -> Callable[[F], F]:
    """
    Decorator to convert Kubernetes client failures into domain exceptions.

    The converted exception names the operation and the workload it targeted so
    callers can decide whether to retry.

    Args:
        operation: Name of the operation (e.g., "create", "delete")
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except ApiException as e:
                resource = _describe_resource(args, kwargs)
                error_msg = f"Kubernetes API error while {operation} {resource}"

                # Log with appropriate level based on status code
                if e.status == 404:
                    logger.debug("%s: Resource not found (404)", error_msg)
                elif e.status in (400, 401, 403, 409, 422):
                    logger.warning("%s: Client error (%s): %s", error_msg, e.status, e.reason)
                else:
                    logger.error("%s: Server error (%s): %s", error_msg, e.status, e.reason)
                    if e.body:
                        logger.error("Error details: %s", e.body)

                error_cls = _ERRORS_BY_STATUS.get(e.status, KubernetesOperationError)
                raise error_cls(
                    message=f"Failed to {operation} {resource}: {e.reason}",
                    operation=operation,
                    resource=resource,
                    api_exception=e,
                ) from e
            except HTTPError as e:
                resource = _describe_resource(args, kwargs)
                logger.error("Transport error while %s %s: %s", operation, resource, e)
                raise TransportError(
                    message=f"Failed to {operation} {resource}: {e}",
                    operation=operation,
                    resource=resource,
                ) from e

        return wrapper  # type: ignore[return-value]

    return decorator
