"""Sequential step execution with error-context wrapping.

Steps execute synchronously, strictly in order, with no fan-out even
between unrelated resources: resource counts per component are small and
deterministic error attribution matters more than throughput.

The first failing step aborts the sequence. Its error is wrapped in a
ReconcileError subclass naming the operation, the resource and the cause.
Nothing is rolled back: every prior step was an idempotent success, so the
next run may start over from the beginning.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from .client import (
    DEFAULT_READINESS_TIMEOUT_SECONDS,
    Deadline,
    ResourceClient,
    WaitCancelledError,
    WaitTimeoutError,
)
from .errors import (
    ConstructionError,
    DependencySecretMalformedError,
    DependencySecretMissingError,
    Operation,
    OperationError,
    ReadinessTimeoutError,
    ReconcileCancelledError,
    ReconcileError,
)
from .resources import ManagedResource, ResourceKind
from .steps import Direction, OperationStep, ReadStep, StepContext, StepSequence, Verb

logger = logging.getLogger(__name__)


@dataclass
class ExecutionRecord:
    """What one successful sequence execution did."""

    direction: Direction
    steps_executed: int = 0
    created: int = 0
    applied: int = 0
    deleted: int = 0
    waited: int = 0
    duration_seconds: float = 0.0


class StepExecutor:
    """Executes a StepSequence against a resource client."""

    def __init__(
        self,
        client: ResourceClient,
        readiness_timeout_seconds: float = DEFAULT_READINESS_TIMEOUT_SECONDS,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._client = client
        self._readiness_timeout_seconds = readiness_timeout_seconds
        self._cancel_event = cancel_event or threading.Event()

    def execute(
        self, sequence: StepSequence, context: StepContext | None = None
    ) -> ExecutionRecord:
        """Run every step of the sequence in order.

        Raises:
            ReconcileError: For the first step that fails.
        """
        context = context or StepContext()
        record = ExecutionRecord(direction=sequence.direction)
        start = time.monotonic()

        for index, step in enumerate(sequence, start=1):
            try:
                if isinstance(step, ReadStep):
                    self._read(step, context)
                else:
                    self._apply(step, context, record)
            except ReconcileError as e:
                logger.warning(
                    "Step failed, aborting sequence",
                    extra={
                        "direction": sequence.direction.value,
                        "step": index,
                        "total_steps": len(sequence),
                        "operation": e.operation.value,
                        "kind": e.kind.value if e.kind else None,
                        "resource_name": e.name,
                        "error": str(e.cause),
                    },
                )
                raise
            record.steps_executed = index

        record.duration_seconds = time.monotonic() - start
        return record

    def _apply(
        self, step: OperationStep, context: StepContext, record: ExecutionRecord
    ) -> None:
        try:
            resources, is_list = step.expand(context)
        except Exception as e:
            raise ConstructionError(
                Operation.INITIALIZING, step.subject, e, kind=step.kind
            ) from e

        for resource in resources:
            label = step.label(resource, is_list)
            logger.debug(
                "Executing step",
                extra={
                    "verb": step.verb.value,
                    "kind": resource.kind.value,
                    "resource_name": resource.name,
                    "namespace": resource.namespace,
                },
            )
            try:
                self._dispatch(step.verb, resource, record)
            except WaitTimeoutError as e:
                raise self._wrap(ReadinessTimeoutError, step.verb, label, resource, e) from e
            except WaitCancelledError as e:
                raise self._wrap(ReconcileCancelledError, step.verb, label, resource, e) from e
            except Exception as e:
                raise self._wrap(OperationError, step.verb, label, resource, e) from e

    def _dispatch(self, verb: Verb, resource: ManagedResource, record: ExecutionRecord) -> None:
        if verb is Verb.CREATE_IF_ABSENT:
            if self._client.create_if_absent(resource):
                record.created += 1
                logger.info(
                    "Created resource",
                    extra={"kind": resource.kind.value, "resource_name": resource.name},
                )
        elif verb is Verb.CREATE_OR_UPDATE:
            self._client.create_or_update(resource)
            record.applied += 1
        elif verb is Verb.WAIT_UNTIL_READY:
            deadline = Deadline(self._readiness_timeout_seconds, self._cancel_event)
            self._client.wait_until_ready(resource, deadline)
            record.waited += 1
        elif verb is Verb.DELETE:
            self._client.delete(resource)
            record.deleted += 1
        else:
            raise ValueError(f"Unsupported verb: {verb}")

    @staticmethod
    def _wrap(
        error_class: type[ReconcileError],
        verb: Verb,
        label: str,
        resource: ManagedResource,
        cause: Exception,
    ) -> ReconcileError:
        return error_class(
            verb.operation,
            label,
            cause,
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
        )

    def _read(self, step: ReadStep, context: StepContext) -> None:
        tags = {
            "kind": ResourceKind.SECRET,
            "name": step.secret_name,
            "namespace": step.namespace,
        }
        try:
            data = self._client.get_secret(step.namespace, step.secret_name)
        except Exception as e:
            raise OperationError(Operation.READING, step.subject, e, **tags) from e

        if data is None:
            raise DependencySecretMissingError(
                Operation.READING,
                step.subject,
                f"secret {step.namespace}/{step.secret_name} not found",
                **tags,
            )
        if step.key not in data:
            raise DependencySecretMissingError(
                Operation.READING,
                step.subject,
                f"secret {step.namespace}/{step.secret_name} has no key '{step.key}'",
                **tags,
            )

        try:
            value = step.extract(data[step.key])
        except ValueError as e:
            raise DependencySecretMalformedError(
                Operation.READING, step.subject, e, **tags
            ) from e

        context.set(step.store_as, value)
        logger.debug(
            "Read dependency value",
            extra={"secret": f"{step.namespace}/{step.secret_name}", "key": step.key},
        )
