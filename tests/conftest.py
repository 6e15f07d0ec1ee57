"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for cluster_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from cluster_mock import MockClusterState, MockResourceClient  # noqa: E402
from monitoring_operator.config import OperatorConfig  # noqa: E402

GRAFANA_DATASOURCES_JSON = (
    b'{"apiVersion": 1, "datasources": [{"name": "prometheus", '
    b'"url": "https://prometheus-k8s.openshift-monitoring.svc:9091", '
    b'"basicAuthUser": "internal", "basicAuthPassword": "s3cr3t-pa55"}]}'
)


@pytest.fixture
def settings() -> OperatorConfig:
    return OperatorConfig()


@pytest.fixture
def cluster() -> MockClusterState:
    return MockClusterState()


@pytest.fixture
def client(cluster: MockClusterState) -> MockResourceClient:
    return MockResourceClient(cluster)


@pytest.fixture
def grafana_secret(cluster: MockClusterState, settings: OperatorConfig) -> None:
    """The Grafana component's datasource secret, already materialized."""
    cluster.seed_secret(
        settings.namespace,
        "grafana-datasources",
        {"prometheus.yaml": GRAFANA_DATASOURCES_JSON},
    )
