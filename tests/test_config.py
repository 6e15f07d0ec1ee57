"""Tests for operator settings."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from monitoring_operator.config import (
    DEFAULT_NAMESPACE,
    DEFAULT_USER_WORKLOAD_NAMESPACE,
    ConfigurationError,
    OperatorConfig,
)


class TestOperatorConfig:
    """Tests for OperatorConfig validation."""

    def test_defaults_are_valid(self) -> None:
        config = OperatorConfig()
        assert config.namespace == DEFAULT_NAMESPACE
        assert config.user_workload_namespace == DEFAULT_USER_WORKLOAD_NAMESPACE
        assert config.config_file is None

    def test_invalid_namespace(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(namespace="Not_Valid")
        assert "OPERATOR_NAMESPACE" in str(exc_info.value)

    def test_namespaces_must_differ(self) -> None:
        with pytest.raises(ConfigurationError, match="must differ"):
            OperatorConfig(namespace="monitoring", user_workload_namespace="monitoring")

    def test_invalid_reconcile_interval(self) -> None:
        with pytest.raises(ConfigurationError, match="RECONCILE_INTERVAL"):
            OperatorConfig(reconcile_interval_seconds=5)

    def test_poll_interval_cannot_exceed_timeout(self) -> None:
        with pytest.raises(ConfigurationError, match="READINESS_POLL_INTERVAL"):
            OperatorConfig(readiness_timeout_seconds=10, readiness_poll_interval_seconds=30)

    def test_missing_config_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            OperatorConfig(config_file=tmp_path / "missing.yaml")

    def test_errors_are_collected(self) -> None:
        """Test every problem is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            OperatorConfig(namespace="", reconcile_interval_seconds=1, readiness_timeout_seconds=0)
        message = str(exc_info.value)
        assert "OPERATOR_NAMESPACE is required" in message
        assert "RECONCILE_INTERVAL" in message
        assert "READINESS_TIMEOUT" in message


class TestFromEnv:
    """Tests for OperatorConfig.from_env()."""

    def test_reads_environment(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("enableUserWorkload: true\n")
        env = {
            "OPERATOR_NAMESPACE": "monitoring",
            "USER_WORKLOAD_NAMESPACE": "user-monitoring",
            "MONITORING_CONFIG_FILE": str(config_file),
            "RECONCILE_INTERVAL": "60",
            "READINESS_TIMEOUT": "120",
            "READINESS_POLL_INTERVAL": "2.5",
            "THANOS_IMAGE": "registry.local/thanos:1",
        }
        with patch.dict(os.environ, env, clear=True):
            config = OperatorConfig.from_env()

        assert config.namespace == "monitoring"
        assert config.user_workload_namespace == "user-monitoring"
        assert config.config_file == config_file
        assert config.reconcile_interval_seconds == 60
        assert config.readiness_timeout_seconds == 120
        assert config.readiness_poll_interval_seconds == 2.5
        assert config.images.thanos == "registry.local/thanos:1"
        assert config.kubeconfig is None

    def test_non_integer_interval(self) -> None:
        with patch.dict(os.environ, {"RECONCILE_INTERVAL": "soon"}, clear=True):
            with pytest.raises(ConfigurationError, match="must be an integer"):
                OperatorConfig.from_env()

    def test_empty_environment_uses_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = OperatorConfig.from_env()
        assert config == OperatorConfig()
