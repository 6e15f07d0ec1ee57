"""Main entry point for the monitoring stack operator.

Builds the settings, the Kubernetes client and one task per managed
component, then drives them with the TaskRunner until SIGTERM or SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
import threading
from datetime import UTC, datetime

from .client import ResourceClient
from .components import TASK_CLASSES
from .config import ConfigurationError, OperatorConfig
from .config_loader import ConfigLoadError, MonitoringConfigSource, load_monitoring_config
from .executor import StepExecutor
from .kube_client import KubernetesResourceClient, load_api_client
from .runner import TaskRunner
from .task import ConfigSource, ReconciliationTask

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_LOG_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_tasks(
    client: ResourceClient,
    settings: OperatorConfig,
    config_source: ConfigSource,
    cancel_event: threading.Event,
) -> list[ReconciliationTask]:
    """One task per managed component, sharing the cancellation event."""
    executor = StepExecutor(
        client,
        readiness_timeout_seconds=settings.readiness_timeout_seconds,
        cancel_event=cancel_event,
    )
    return [task_class(client, settings, config_source, executor) for task_class in TASK_CLASSES]


def build_runner(settings: OperatorConfig, client: ResourceClient | None = None) -> TaskRunner:
    """Wire the client, tasks and runner for the given settings."""
    if client is None:
        client = KubernetesResourceClient(
            load_api_client(settings.kubeconfig),
            poll_interval_seconds=settings.readiness_poll_interval_seconds,
        )
    cancel_event = threading.Event()
    tasks = build_tasks(client, settings, MonitoringConfigSource(settings.config_file), cancel_event)
    return TaskRunner(
        tasks,
        interval_seconds=settings.reconcile_interval_seconds,
        cancel_event=cancel_event,
    )


async def main(log_level: str = "INFO") -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, 1 for configuration or startup failure).
    """
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    try:
        settings = OperatorConfig.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    # Fail fast on a broken monitoring config; tasks re-read it every pass
    try:
        load_monitoring_config(settings.config_file)
    except ConfigLoadError as e:
        logger.error("Invalid monitoring config", extra={"error": str(e)})
        return 1

    logger.info(
        "Starting monitoring stack operator",
        extra={
            "namespace": settings.namespace,
            "user_workload_namespace": settings.user_workload_namespace,
            "interval_seconds": settings.reconcile_interval_seconds,
        },
    )

    try:
        runner = build_runner(settings)
    except Exception as e:
        logger.error(
            "Failed to initialize operator",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        runner.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await runner.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for running the operator directly."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
