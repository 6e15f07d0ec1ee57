"""Operation steps, step sequences and their ordering rules.

A component declares one converge StepSequence. Its teardown sequence is
derived mechanically: exact reverse order, every apply verb turned into a
delete, readiness waits and cross-component reads dropped. The ordering
invariant ("apply in dependency order, remove in exact reverse order") is
then a checkable property of the pair rather than a convention, see
check_ordering().

Resources are built lazily when a step executes, so a construction failure
is attributed to the step that needed the resource.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from .errors import Operation, OrderingError
from .resources import ManagedResource, ResourceKey, ResourceKind

logger = logging.getLogger(__name__)


class Verb(str, Enum):
    """Resource operation applied by a step."""

    CREATE_IF_ABSENT = "create_if_absent"
    CREATE_OR_UPDATE = "create_or_update"
    WAIT_UNTIL_READY = "wait_until_ready"
    DELETE = "delete"

    @property
    def operation(self) -> Operation:
        return _VERB_OPERATIONS[self]

    @property
    def applies(self) -> bool:
        """True for verbs that write the resource into the cluster."""
        return self in (Verb.CREATE_IF_ABSENT, Verb.CREATE_OR_UPDATE)


_VERB_OPERATIONS: dict[Verb, Operation] = {
    Verb.CREATE_IF_ABSENT: Operation.CREATING,
    Verb.CREATE_OR_UPDATE: Operation.RECONCILING,
    Verb.WAIT_UNTIL_READY: Operation.WAITING,
    Verb.DELETE: Operation.DELETING,
}


class Direction(str, Enum):
    """Which way a task drives the cluster on a given run."""

    CONVERGING = "converging"
    TEARING_DOWN = "tearing-down"

    @classmethod
    def for_enabled(cls, enabled: bool) -> Direction:
        return cls.CONVERGING if enabled else cls.TEARING_DOWN


class StepContext:
    """Values produced by read steps during one run.

    A planning context answers every lookup with a placeholder so that a
    sequence can be rendered without touching the cluster.
    """

    def __init__(self, values: dict[str, Any] | None = None, *, planning: bool = False) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self._planning = planning

    @classmethod
    def for_planning(cls) -> StepContext:
        return cls(planning=True)

    @property
    def planning(self) -> bool:
        return self._planning

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        if self._planning and name not in self._values:
            return f"<{name}>"
        return self._values.get(name, default)

    def require(self, name: str) -> Any:
        """Return a value stored by an earlier read step.

        Raises:
            KeyError: If no earlier step produced the value.
        """
        if self._planning and name not in self._values:
            return f"<{name}>"
        if name not in self._values:
            raise KeyError(f"no step produced '{name}'")
        return self._values[name]


Built = Union[ManagedResource, list[ManagedResource]]
Builder = Callable[[StepContext], Built]


@dataclass(frozen=True)
class OperationStep:
    """One verb applied to the resource(s) returned by `build`.

    Attributes:
        verb: Operation to apply.
        kind: Kind of the resource(s) built, known before construction.
        subject: Static label used in logs and error messages,
            e.g. "Thanos Querier ServiceAccount".
        build: Produces the resource, or a list of resources of `kind`.
        reverse_items: Apply to list items in reverse order.
    """

    verb: Verb
    kind: ResourceKind
    subject: str
    build: Builder = field(compare=False)
    reverse_items: bool = False

    def expand(self, context: StepContext) -> tuple[list[ManagedResource], bool]:
        """Build the step's resources.

        Returns:
            The resources in application order, and whether `build`
            produced a list (list items are labelled by name).
        """
        built = self.build(context)
        is_list = isinstance(built, list)
        items = list(built) if is_list else [built]
        for item in items:
            if item.kind is not self.kind:
                raise TypeError(
                    f"{self.subject}: expected {self.kind.value}, built {item.kind.value}"
                )
        if self.reverse_items:
            items.reverse()
        return items, is_list

    def resources(self, context: StepContext) -> list[ManagedResource]:
        return self.expand(context)[0]

    def label(self, resource: ManagedResource, is_list: bool) -> str:
        if is_list:
            return f'{self.subject} "{resource.name}"'
        return self.subject

    def teardown(self) -> OperationStep | None:
        """Counterpart of this step in a teardown sequence, if any."""
        if not self.verb.applies:
            return None
        return replace(self, verb=Verb.DELETE, reverse_items=not self.reverse_items)

    def __str__(self) -> str:
        return f"{self.verb.value} {self.subject}"


@dataclass(frozen=True)
class ReadStep:
    """Read a value out of another component's Secret.

    The extracted value is stored in the StepContext under `store_as` for
    later builders. `extract` receives the raw bytes under `key` and raises
    ValueError when they cannot be parsed.
    """

    subject: str
    namespace: str
    secret_name: str
    key: str
    store_as: str
    extract: Callable[[bytes], Any] = field(compare=False)

    def teardown(self) -> None:
        return None

    def __str__(self) -> str:
        return f"read {self.subject}"


Step = Union[OperationStep, ReadStep]


class StepSequence:
    """Ordered steps for one direction of one component."""

    def __init__(self, steps: Iterable[Step], direction: Direction = Direction.CONVERGING) -> None:
        self._steps: tuple[Step, ...] = tuple(steps)
        self._direction = direction

    @property
    def direction(self) -> Direction:
        return self._direction

    @property
    def steps(self) -> tuple[Step, ...]:
        return self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def reversed_for_teardown(self) -> StepSequence:
        """Derive the teardown sequence from a converge sequence.

        Raises:
            ValueError: If this is already a teardown sequence.
        """
        if self._direction is not Direction.CONVERGING:
            raise ValueError("teardown is derived from a converge sequence")
        teardown: list[Step] = []
        for step in reversed(self._steps):
            counterpart = step.teardown()
            if counterpart is not None:
                teardown.append(counterpart)
        return StepSequence(teardown, Direction.TEARING_DOWN)

    def plan(self, context: StepContext | None = None) -> list[tuple[Step, ManagedResource | None]]:
        """Build every resource in order without touching the cluster.

        Read steps appear with a None resource. The default context answers
        dependency lookups with placeholders.
        """
        context = context or StepContext.for_planning()
        planned: list[tuple[Step, ManagedResource | None]] = []
        for step in self._steps:
            if isinstance(step, ReadStep):
                planned.append((step, None))
                continue
            for resource in step.resources(context):
                planned.append((step, resource))
        return planned


def check_ordering(sequence: StepSequence, context: StepContext | None = None) -> None:
    """Verify the dependency ordering of a sequence.

    Converging: a resource referenced by another managed resource is
    applied strictly earlier, tiers never decrease, and every wait follows
    an apply of the same resource.

    Tearing down: a resource is deleted only after every managed resource
    referencing it, and tiers never increase.

    References to resources the sequence does not manage are ignored.

    Raises:
        OrderingError: On the first violation found.
    """
    planned = [
        (step, resource)
        for step, resource in sequence.plan(context)
        if resource is not None and isinstance(step, OperationStep)
    ]
    managed = {resource.key for _, resource in planned}

    if sequence.direction is Direction.CONVERGING:
        _check_converge(planned, managed)
    else:
        _check_teardown(planned, managed)

    logger.debug(
        "Step ordering verified",
        extra={"direction": sequence.direction.value, "steps": len(planned)},
    )


def _check_converge(
    planned: list[tuple[OperationStep, ManagedResource]], managed: set[ResourceKey]
) -> None:
    applied: set[ResourceKey] = set()
    last_tier = None
    for step, resource in planned:
        if step.verb is Verb.WAIT_UNTIL_READY:
            if resource.key not in applied:
                raise OrderingError(f"waiting for {resource.key} before it is applied")
            continue
        if step.verb is Verb.DELETE:
            raise OrderingError(f"converge sequence deletes {resource.key}")
        for ref in resource.references:
            if ref in managed and ref not in applied:
                raise OrderingError(f"{resource.key} is applied before {ref} which it references")
        if last_tier is not None and resource.kind.tier < last_tier:
            raise OrderingError(
                f"{resource.key} ({resource.kind.tier.name}) applied after "
                f"{last_tier.name} resources"
            )
        last_tier = resource.kind.tier
        applied.add(resource.key)


def _check_teardown(
    planned: list[tuple[OperationStep, ManagedResource]], managed: set[ResourceKey]
) -> None:
    referenced_by: dict[ResourceKey, set[ResourceKey]] = {}
    for _, resource in planned:
        for ref in resource.references:
            if ref in managed:
                referenced_by.setdefault(ref, set()).add(resource.key)

    deleted: set[ResourceKey] = set()
    last_tier = None
    for step, resource in planned:
        if step.verb is not Verb.DELETE:
            raise OrderingError(f"teardown sequence applies {step.verb.value} to {resource.key}")
        still_present = referenced_by.get(resource.key, set()) - deleted
        if still_present:
            first = sorted(still_present, key=str)[0]
            raise OrderingError(f"{resource.key} is deleted while {first} still references it")
        if last_tier is not None and resource.kind.tier > last_tier:
            raise OrderingError(
                f"{resource.key} ({resource.kind.tier.name}) deleted after "
                f"{last_tier.name} resources"
            )
        last_tier = resource.kind.tier
        deleted.add(resource.key)
