"""Operator configuration with validation.

Process-level settings come from environment variables and are validated
at construction time. The user-facing monitoring configuration (which
components are enabled and how they are sized) is a separate YAML document
loaded by config_loader.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_NAMESPACE = "openshift-monitoring"
DEFAULT_USER_WORKLOAD_NAMESPACE = "openshift-user-workload-monitoring"

DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 30
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_READINESS_TIMEOUT_SECONDS = 300
MAX_READINESS_TIMEOUT_SECONDS = 1800
DEFAULT_READINESS_POLL_INTERVAL_SECONDS = 5

# Security constraints
MAX_CONFIG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max monitoring config

# Kubernetes object names (DNS-1123 label)
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"


@dataclass(frozen=True)
class ImageConfig:
    """Container images used by the managed workloads."""

    thanos: str = "quay.io/thanos/thanos:v0.32.5"
    prometheus: str = "quay.io/prometheus/prometheus:v2.48.0"
    oauth_proxy: str = "quay.io/openshift/origin-oauth-proxy:4.14"
    kube_rbac_proxy: str = "quay.io/brancz/kube-rbac-proxy:v0.15.0"


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    namespace: str = DEFAULT_NAMESPACE
    user_workload_namespace: str = DEFAULT_USER_WORKLOAD_NAMESPACE

    # Monitoring config YAML; None means all defaults
    config_file: Path | None = None

    # Kubeconfig for out-of-cluster runs; in-cluster config is tried first
    kubeconfig: Path | None = None

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    readiness_timeout_seconds: int = DEFAULT_READINESS_TIMEOUT_SECONDS
    readiness_poll_interval_seconds: float = DEFAULT_READINESS_POLL_INTERVAL_SECONDS

    images: ImageConfig = field(default_factory=ImageConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        for label, value in (
            ("OPERATOR_NAMESPACE", self.namespace),
            ("USER_WORKLOAD_NAMESPACE", self.user_workload_namespace),
        ):
            if not value:
                errors.append(f"{label} is required")
            elif not re.match(VALID_NAMESPACE_PATTERN, value):
                errors.append(f"{label} must be a valid DNS-1123 label: {value}")

        if self.namespace and self.namespace == self.user_workload_namespace:
            errors.append("USER_WORKLOAD_NAMESPACE must differ from OPERATOR_NAMESPACE")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not (1 <= self.readiness_timeout_seconds <= MAX_READINESS_TIMEOUT_SECONDS):
            errors.append(
                f"READINESS_TIMEOUT must be between 1 and {MAX_READINESS_TIMEOUT_SECONDS} seconds"
            )

        if self.readiness_poll_interval_seconds <= 0:
            errors.append("READINESS_POLL_INTERVAL must be positive")
        elif self.readiness_poll_interval_seconds > self.readiness_timeout_seconds:
            errors.append("READINESS_POLL_INTERVAL cannot exceed READINESS_TIMEOUT")

        if self.config_file is not None and not self.config_file.is_file():
            errors.append(f"Monitoring config file does not exist: {self.config_file}")

        if self.kubeconfig is not None and not self.kubeconfig.is_file():
            errors.append(f"Kubeconfig does not exist: {self.kubeconfig}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            OPERATOR_NAMESPACE: Platform monitoring namespace
                (default: openshift-monitoring)
            USER_WORKLOAD_NAMESPACE: User workload monitoring namespace
                (default: openshift-user-workload-monitoring)
            MONITORING_CONFIG_FILE: Path to the monitoring config YAML
            KUBECONFIG: Kubeconfig used when not running in a cluster
            RECONCILE_INTERVAL: Seconds between reconciliation passes (default: 300)
            READINESS_TIMEOUT: Bound on each readiness wait in seconds (default: 300)
            READINESS_POLL_INTERVAL: Seconds between readiness polls (default: 5)
            THANOS_IMAGE, PROMETHEUS_IMAGE, OAUTH_PROXY_IMAGE, KUBE_RBAC_PROXY_IMAGE:
                Image overrides
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_path(key: str) -> Path | None:
            value = os.environ.get(key)
            return Path(value) if value else None

        defaults = ImageConfig()
        return cls(
            namespace=os.environ.get("OPERATOR_NAMESPACE", DEFAULT_NAMESPACE),
            user_workload_namespace=os.environ.get(
                "USER_WORKLOAD_NAMESPACE", DEFAULT_USER_WORKLOAD_NAMESPACE
            ),
            config_file=get_path("MONITORING_CONFIG_FILE"),
            kubeconfig=get_path("KUBECONFIG"),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            readiness_timeout_seconds=get_int(
                "READINESS_TIMEOUT", DEFAULT_READINESS_TIMEOUT_SECONDS
            ),
            readiness_poll_interval_seconds=get_float(
                "READINESS_POLL_INTERVAL", DEFAULT_READINESS_POLL_INTERVAL_SECONDS
            ),
            images=ImageConfig(
                thanos=os.environ.get("THANOS_IMAGE", defaults.thanos),
                prometheus=os.environ.get("PROMETHEUS_IMAGE", defaults.prometheus),
                oauth_proxy=os.environ.get("OAUTH_PROXY_IMAGE", defaults.oauth_proxy),
                kube_rbac_proxy=os.environ.get("KUBE_RBAC_PROXY_IMAGE", defaults.kube_rbac_proxy),
            ),
        )
