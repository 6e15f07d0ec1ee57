"""Resource client capability consumed by reconciliation tasks.

Tasks talk to the cluster only through the ResourceClient protocol. Every
verb is idempotent so a failed run can be retried from scratch:

- create_if_absent: no-op if the resource already exists. Used for
  resources whose ongoing contents are owned by something else
  (generated secrets, CA bundles injected by the platform).
- create_or_update: upsert for resources the task fully owns.
- delete: succeeds when the resource is already gone.
- wait_until_ready: blocks until the resource reports ready, bounded by a
  Deadline that can also be cancelled.
- get_secret: read access to another component's materialized secret.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from .resources import ManagedResource, ResourceKind

DEFAULT_READINESS_TIMEOUT_SECONDS = 300
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class ResourceClientError(Exception):
    """Raised when the cluster rejects or fails an operation."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ResourceConflictError(ResourceClientError):
    """The write conflicted with the current state of the resource."""


class ResourceRejectedError(ResourceClientError):
    """The cluster refused the resource (validation, admission, permissions)."""


class ResourceKindNotServedError(ResourceClientError):
    """The cluster does not serve the kind, e.g. its CRD is not installed."""


class WaitTimeoutError(ResourceClientError):
    """The resource did not become ready before the deadline."""


class WaitCancelledError(ResourceClientError):
    """The wait was cancelled through the deadline's cancellation event."""


@dataclass
class Deadline:
    """Bound on a blocking wait.

    Combines a monotonic expiry with a cancellation event shared with the
    outer driver, so a shutdown interrupts waits in progress.
    """

    timeout_seconds: float
    cancel_event: threading.Event = field(default_factory=threading.Event)
    _started: float = field(default_factory=time.monotonic, repr=False)

    def remaining(self) -> float:
        return max(0.0, self.timeout_seconds - (time.monotonic() - self._started))

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds` without overshooting the deadline.

        Returns:
            True if the sleep was interrupted by cancellation.
        """
        return self.cancel_event.wait(timeout=min(seconds, self.remaining()))


class ResourceClient(Protocol):
    """Operations a reconciliation task needs from the cluster."""

    def create_if_absent(self, resource: ManagedResource) -> bool:
        """Create the resource unless it exists. Returns True if created."""
        ...

    def create_or_update(self, resource: ManagedResource) -> None:
        """Create the resource or replace it with the desired state."""
        ...

    def delete(self, resource: ManagedResource) -> None:
        """Delete the resource. Absent resources are not an error."""
        ...

    def wait_until_ready(self, resource: ManagedResource, deadline: Deadline) -> None:
        """Block until the resource is ready.

        Raises:
            WaitTimeoutError: If the deadline expires first.
            WaitCancelledError: If the deadline is cancelled first.
        """
        ...

    def get_secret(self, namespace: str, name: str) -> dict[str, bytes] | None:
        """Return a secret's decoded data, or None if it does not exist."""
        ...


# =============================================================================
# Readiness conditions
# =============================================================================


def _has_condition(conditions: list[dict[str, Any]] | None, type_: str) -> bool:
    return any(
        c.get("type") == type_ and str(c.get("status")) == "True" for c in conditions or []
    )


def _deployment_ready(obj: dict[str, Any]) -> bool:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    metadata = obj.get("metadata") or {}
    desired = spec.get("replicas", 1)
    if status.get("observedGeneration", 0) < metadata.get("generation", 0):
        return False
    return (
        status.get("replicas", 0) == desired
        and status.get("updatedReplicas", 0) == desired
        and status.get("availableReplicas", 0) == desired
    )


def _route_ready(obj: dict[str, Any]) -> bool:
    ingress = (obj.get("status") or {}).get("ingress") or []
    return any(_has_condition(i.get("conditions"), "Admitted") for i in ingress)


def _prometheus_ready(obj: dict[str, Any]) -> bool:
    status = obj.get("status") or {}
    if _has_condition(status.get("conditions"), "Available"):
        return True
    desired = (obj.get("spec") or {}).get("replicas", 1)
    return bool(status) and status.get("availableReplicas", 0) >= desired


def is_ready(kind: ResourceKind, obj: dict[str, Any] | None) -> bool:
    """Evaluate the readiness condition for a live object.

    Kinds without a status contract are ready as soon as they exist.
    """
    if obj is None:
        return False
    if kind is ResourceKind.DEPLOYMENT:
        return _deployment_ready(obj)
    if kind is ResourceKind.ROUTE:
        return _route_ready(obj)
    if kind is ResourceKind.PROMETHEUS:
        return _prometheus_ready(obj)
    return True
