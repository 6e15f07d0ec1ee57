"""Monitoring config file loading with validation.

SECURITY: File reads enforce a size limit. Input validation is performed
at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_CONFIG_FILE_SIZE_BYTES
from .models import ClusterMonitoringConfig

logger = logging.getLogger(__name__)

# Key holding the embedded document when the file is a ConfigMap manifest
CONFIGMAP_DATA_KEY = "config.yaml"


class ConfigLoadError(Exception):
    """Raised when the monitoring config cannot be loaded or validated."""

    pass


def parse_monitoring_config(raw_data: Any, source: str = "<config>") -> ClusterMonitoringConfig:
    """Validate an already-parsed monitoring config document.

    Accepts a flat mapping or a ConfigMap manifest whose
    data["config.yaml"] holds the document as an embedded YAML string.

    Raises:
        ConfigLoadError: If the document is malformed or fails validation.
    """
    if raw_data is None:
        raw_data = {}

    if not isinstance(raw_data, dict):
        raise ConfigLoadError(f"Monitoring config must be a YAML mapping: {source}")

    if raw_data.get("kind") == "ConfigMap":
        data = raw_data.get("data") or {}
        if not isinstance(data, dict):
            raise ConfigLoadError(f"ConfigMap data must be a mapping: {source}")
        embedded = data.get(CONFIGMAP_DATA_KEY, "")
        try:
            raw_data = yaml.safe_load(embedded) or {}
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {source} data.{CONFIGMAP_DATA_KEY}: {e}") from e
        if not isinstance(raw_data, dict):
            raise ConfigLoadError(f"data.{CONFIGMAP_DATA_KEY} must be a YAML mapping: {source}")

    try:
        return ClusterMonitoringConfig.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ConfigLoadError(f"Validation failed for {source}:\n{error_list}") from e


def load_monitoring_config(path: Path | None) -> ClusterMonitoringConfig:
    """Load and validate the monitoring config.

    Args:
        path: YAML file, or None for an all-defaults configuration.

    Returns:
        Validated configuration.

    Raises:
        ConfigLoadError: If the file cannot be read or fails validation.
    """
    if path is None:
        return ClusterMonitoringConfig()

    if not path.exists():
        raise ConfigLoadError(f"Monitoring config not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ConfigLoadError(f"Failed to stat monitoring config {path}: {e}") from e

    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigLoadError(
            f"Monitoring config exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError(f"Failed to read monitoring config {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}: {e}") from e

    config = parse_monitoring_config(raw_data, source=str(path))
    logger.info("Loaded monitoring config from %s", path)
    return config


class MonitoringConfigSource:
    """Re-reads the monitoring config on every access.

    Tasks consult this on each run so that enablement changes take effect
    on the next pass without restarting the operator.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> ClusterMonitoringConfig:
        return load_monitoring_config(self._path)


class StaticConfigSource:
    """Serves a fixed, already-validated monitoring config."""

    def __init__(self, config: ClusterMonitoringConfig | None = None) -> None:
        self.config = config or ClusterMonitoringConfig()

    def load(self) -> ClusterMonitoringConfig:
        return self.config
