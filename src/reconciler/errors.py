"""Failure types produced by the MCPServer reconcile pipeline.

Each stage raises its own exception type; the driver maps them onto the
condition chain instead of letting them escape as handler faults.
"""

from kubernetes.client.exceptions import ApiException

# Accepted
REASON_ACCEPTED = "Accepted"
REASON_INVALID_CONFIG = "InvalidConfig"
REASON_UNSUPPORTED_TRANSPORT = "UnsupportedTransport"

# ResolvedRefs
REASON_RESOLVED_REFS = "ResolvedRefs"
REASON_IMAGE_NOT_FOUND = "ImageNotFound"
REASON_INVALID_TLS_SECRET = "InvalidTLSSecret"
REASON_REFERENCE_LOOKUP_FAILED = "ReferenceLookupFailed"

# Programmed
REASON_PROGRAMMED = "Programmed"
REASON_DEPLOYMENT_FAILED = "DeploymentFailed"
REASON_SERVICE_FAILED = "ServiceFailed"
REASON_CONFIGMAP_FAILED = "ConfigMapFailed"
REASON_SERVICEACCOUNT_FAILED = "ServiceAccountFailed"

# Ready
REASON_READY = "Ready"
REASON_PODS_NOT_READY = "PodsNotReady"

# Downstream of a stage that did not succeed
REASON_PENDING = "Pending"

FAILED_REASON_BY_KIND = {
    "Deployment": REASON_DEPLOYMENT_FAILED,
    "Service": REASON_SERVICE_FAILED,
    "ConfigMap": REASON_CONFIGMAP_FAILED,
    "ServiceAccount": REASON_SERVICEACCOUNT_FAILED,
}

TRANSIENT_STATUS_CODES = frozenset({404, 409, 429, 500, 502, 503, 504})


class ReconcileError(Exception):
    """Base class for pipeline failures that carry a condition reason."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class ValidationFailure(ReconcileError):
    """The spec is invalid. Deterministic, never retried."""


class ReferenceFailure(ReconcileError):
    """A referenced object is missing or unusable. May resolve later."""


class ApplyFailure(ReconcileError):
    """A child resource write failed after exhausting retries."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(FAILED_REASON_BY_KIND.get(kind, f"{kind}Failed"), message)
        self.kind = kind


class TransientClusterError(Exception):
    """A cluster call failed in a way that is expected to clear on retry."""


def is_transient(exc: BaseException) -> bool:
    """Return True if a cluster API failure is worth retrying.

    Args:
        exc: The exception raised by a kubernetes client call.

    Returns:
        True for conflicts, throttling, server errors, timeouts and
        objects that are not visible yet.
    """
    if isinstance(exc, TransientClusterError):
        return True
    if isinstance(exc, ApiException):
        return exc.status in TRANSIENT_STATUS_CODES
    return isinstance(exc, (TimeoutError, ConnectionError))
