"""Reconciliation error taxonomy.

Every failure surfaced by a task is a ReconcileError carrying the
operation that was attempted, the resource it was attempted on and the
underlying cause. Callers branch on the subclass rather than on message
text:

- ConstructionError: the manifest factory could not build a descriptor
  (bad configuration).
- OperationError: the cluster rejected a create, update or delete.
- ReadinessTimeoutError: a readiness wait exceeded its deadline.
- ReconcileCancelledError: a readiness wait was cancelled.
- DependencyDataError: another component's secret could not be used,
  split into DependencySecretMissingError (ordering problem) and
  DependencySecretMalformedError (content problem).
"""

from __future__ import annotations

from enum import Enum

from .resources import ResourceKind


class Operation(str, Enum):
    """Operation attempted when a step failed."""

    INITIALIZING = "initializing"
    CREATING = "creating"
    RECONCILING = "reconciling"
    WAITING = "waiting"
    DELETING = "deleting"
    READING = "reading"

    def describe(self, subject: str) -> str:
        """Static human-readable description of the attempted operation."""
        if self is Operation.WAITING:
            return f"waiting for {subject} to become ready failed"
        return f"{self.value} {subject} failed"


class ReconcileError(Exception):
    """Base class for errors raised by a reconciliation task."""

    def __init__(
        self,
        operation: Operation,
        subject: str,
        cause: BaseException | str,
        *,
        kind: ResourceKind | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        self.operation = operation
        self.subject = subject
        self.cause = cause
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{operation.describe(subject)}: {cause}")

    @property
    def description(self) -> str:
        """The wrapped description without the cause."""
        return self.operation.describe(self.subject)


class ConstructionError(ReconcileError):
    """Descriptor construction failed."""


class OperationError(ReconcileError):
    """The resource client rejected an operation."""


class ReadinessTimeoutError(ReconcileError):
    """A resource did not become ready before the deadline."""


class ReconcileCancelledError(ReconcileError):
    """A readiness wait was cancelled before the resource became ready."""


class DependencyDataError(ReconcileError):
    """Data read from another component's resource could not be used."""


class DependencySecretMissingError(DependencyDataError):
    """The dependency secret, or the expected key in it, does not exist."""


class DependencySecretMalformedError(DependencyDataError):
    """The dependency secret exists but its content cannot be parsed."""


class OrderingError(Exception):
    """Raised when a step sequence violates dependency ordering."""
