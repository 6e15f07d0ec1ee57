"""Pydantic models for the cluster monitoring configuration.

These models provide:
1. Type-safe YAML parsing of the user-facing monitoring config
2. Validation at the boundary (fail fast, fail loudly)
3. The enablement flags tasks read on every run
"""

from __future__ import annotations

import json
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, field_validator

VALID_LOG_LEVELS = {"debug", "info", "warn", "error"}


class ComponentModel(BaseModel):
    """Base model with the config conventions shared by all sections."""

    model_config = {"extra": "ignore", "populate_by_name": True}


class ResourceRequirements(ComponentModel):
    """Container resource requests and limits."""

    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)

    def to_manifest(self) -> dict[str, Any]:
        rendered: dict[str, Any] = {}
        if self.requests:
            rendered["requests"] = dict(self.requests)
        if self.limits:
            rendered["limits"] = dict(self.limits)
        return rendered


class Toleration(ComponentModel):
    """Pod toleration."""

    key: str | None = None
    operator: str = "Equal"
    value: str | None = None
    effect: str | None = None

    @field_validator("operator")
    @classmethod
    def validate_operator(cls, v: str) -> str:
        if v not in ("Equal", "Exists"):
            raise ValueError("operator must be Equal or Exists")
        return v

    def to_manifest(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SchedulingConfig(ComponentModel):
    """Placement and sizing shared by workload components."""

    log_level: str = Field("info", alias="logLevel")
    node_selector: dict[str, str] = Field(default_factory=dict, alias="nodeSelector")
    tolerations: list[Toleration] = Field(default_factory=list)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.lower()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(f"logLevel must be one of {sorted(VALID_LOG_LEVELS)}")
        return v


class ThanosQuerierConfig(SchedulingConfig):
    """Thanos Querier section.

    `enabled` is tri-state: unset means the component default (enabled).
    """

    enabled: bool | None = None
    replicas: Annotated[int, Field(ge=1, le=10)] = 2

    def is_enabled(self) -> bool:
        return True if self.enabled is None else self.enabled


class PrometheusUserWorkloadConfig(SchedulingConfig):
    """User-workload Prometheus section."""

    retention: str = "24h"
    replicas: Annotated[int, Field(ge=1, le=10)] = 2

    @field_validator("retention")
    @classmethod
    def validate_retention(cls, v: str) -> str:
        if not v or not v[:-1].isdigit() or v[-1] not in "smhdwy":
            raise ValueError("retention must be a duration such as 24h or 15d")
        return v


class ClusterMonitoringConfig(ComponentModel):
    """Top-level monitoring configuration."""

    enable_user_workload: bool | None = Field(None, alias="enableUserWorkload")
    thanos_querier: ThanosQuerierConfig = Field(
        default_factory=ThanosQuerierConfig, alias="thanosQuerier"
    )
    prometheus_user_workload: PrometheusUserWorkloadConfig = Field(
        default_factory=PrometheusUserWorkloadConfig, alias="prometheusUserWorkload"
    )

    def user_workload_enabled(self) -> bool:
        """User workload monitoring is off unless explicitly enabled."""
        return bool(self.enable_user_workload)


# =============================================================================
# Cross-component data
# =============================================================================


class GrafanaDatasource(ComponentModel):
    """One datasource entry of the Grafana provisioning file."""

    name: str | None = None
    url: str | None = None
    basic_auth_user: str | None = Field(None, alias="basicAuthUser")
    basic_auth_password: Annotated[str, Field(min_length=1)] = Field(
        alias="basicAuthPassword"
    )


class GrafanaDatasources(ComponentModel):
    """Grafana datasource provisioning document stored in a Secret."""

    api_version: int | None = Field(None, alias="apiVersion")
    datasources: Annotated[list[GrafanaDatasource], Field(min_length=1)]


def parse_datasource_password(raw: bytes) -> str:
    """Extract the first datasource's basic auth password.

    The document is JSON in practice; YAML is accepted as well since it is a
    superset.

    Raises:
        ValueError: If the payload cannot be parsed or lacks the password.
            pydantic's ValidationError is a ValueError.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"datasource document is not UTF-8: {e}") from e
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"datasource document is not JSON or YAML: {e}") from e
    if not isinstance(document, dict):
        raise ValueError("datasource document must be a mapping")
    return GrafanaDatasources.model_validate(document).datasources[0].basic_auth_password
