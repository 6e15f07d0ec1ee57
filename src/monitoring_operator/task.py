"""Reconciliation task protocol.

A task is the per-component unit of work. On every run it:
1. Reads the component's enablement flag (never cached)
2. Selects a Direction: converging or tearing down
3. Executes that direction's StepSequence strictly in order
4. Raises the first failure as a ReconcileError, or returns None

Tasks hold only their collaborators. All state lives in the cluster, so
retrying a failed run from scratch is always safe.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar, Protocol

from .client import ResourceClient
from .config import OperatorConfig
from .config_loader import ConfigLoadError
from .errors import ConstructionError, Operation
from .executor import StepExecutor
from .manifests import ManifestFactory
from .models import ClusterMonitoringConfig
from .steps import Direction, StepSequence

logger = logging.getLogger(__name__)

MONITORING_CONFIG_SUBJECT = "monitoring configuration"


class ConfigSource(Protocol):
    """Supplies the current monitoring configuration."""

    def load(self) -> ClusterMonitoringConfig: ...


class Task(Protocol):
    """Anything the runner can execute."""

    name: str

    def run(self) -> None: ...


FactoryBuilder = Callable[[ClusterMonitoringConfig], ManifestFactory]


class ReconciliationTask(ABC):
    """Base class for component tasks.

    Subclasses declare the converge sequence and the enablement rule. The
    teardown sequence is always the mechanical reverse of converge.
    """

    name: ClassVar[str]

    def __init__(
        self,
        client: ResourceClient,
        settings: OperatorConfig,
        config_source: ConfigSource,
        executor: StepExecutor | None = None,
        factory_builder: FactoryBuilder | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._config_source = config_source
        self._executor = executor or StepExecutor(
            client, readiness_timeout_seconds=settings.readiness_timeout_seconds
        )
        self._factory_builder: FactoryBuilder = factory_builder or (
            lambda monitoring: ManifestFactory(settings, monitoring)
        )

    @classmethod
    @abstractmethod
    def is_enabled(cls, monitoring: ClusterMonitoringConfig) -> bool:
        """Whether the component should be present."""

    @classmethod
    @abstractmethod
    def converge_steps(cls, factory: ManifestFactory) -> StepSequence:
        """Ordered steps bringing the component to present and healthy."""

    @classmethod
    def sequence(cls, factory: ManifestFactory, direction: Direction) -> StepSequence:
        """Converge steps, or their derived teardown."""
        converge = cls.converge_steps(factory)
        if direction is Direction.CONVERGING:
            return converge
        return converge.reversed_for_teardown()

    def load_monitoring_config(self) -> ClusterMonitoringConfig:
        """Read the monitoring config for this run.

        Raises:
            ConstructionError: If the config cannot be loaded.
        """
        try:
            return self._config_source.load()
        except ConfigLoadError as e:
            raise ConstructionError(Operation.INITIALIZING, MONITORING_CONFIG_SUBJECT, e) from e

    def run(self) -> None:
        """Drive the component toward its declared state.

        Raises:
            ReconcileError: For the first step that failed. Steps before it
                remain applied.
        """
        monitoring = self.load_monitoring_config()
        direction = Direction.for_enabled(self.is_enabled(monitoring))
        sequence = self.sequence(self._factory_builder(monitoring), direction)

        logger.info(
            "Running task",
            extra={"task": self.name, "direction": direction.value, "steps": len(sequence)},
        )
        record = self._executor.execute(sequence)
        logger.info(
            "Task complete",
            extra={
                "task": self.name,
                "direction": direction.value,
                "created": record.created,
                "applied": record.applied,
                "deleted": record.deleted,
                "duration_seconds": record.duration_seconds,
            },
        )
