"""Tests for the Kubernetes resource client with a mocked dynamic client."""

from __future__ import annotations

import base64
import threading
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import urllib3
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from monitoring_operator.client import (
    Deadline,
    ResourceClientError,
    ResourceConflictError,
    ResourceKindNotServedError,
    ResourceRejectedError,
    WaitCancelledError,
    WaitTimeoutError,
)
from monitoring_operator.components import PrometheusUserWorkloadTask
from monitoring_operator.config import OperatorConfig
from monitoring_operator.config_loader import StaticConfigSource
from monitoring_operator.errors import Operation, OperationError
from monitoring_operator.executor import StepExecutor
from monitoring_operator.kube_client import KubernetesResourceClient
from monitoring_operator.models import ClusterMonitoringConfig
from monitoring_operator.resources import ManagedResource, ResourceKind

NS = "openshift-monitoring"


def live(obj: dict[str, Any]) -> MagicMock:
    instance = MagicMock()
    instance.to_dict.return_value = obj
    return instance


@pytest.fixture
def api() -> MagicMock:
    """The per-kind resource API returned by discovery."""
    return MagicMock()


@pytest.fixture
def dynamic_client(api: MagicMock) -> MagicMock:
    dynamic_client = MagicMock()
    dynamic_client.resources.get.return_value = api
    return dynamic_client


@pytest.fixture
def kube(dynamic_client: MagicMock) -> KubernetesResourceClient:
    with patch("monitoring_operator.kube_client.dynamic.DynamicClient", return_value=dynamic_client):
        client = KubernetesResourceClient(MagicMock(), poll_interval_seconds=0.01)
        # Trigger lazy discovery while the patch is active
        client._resource_api(ResourceKind.SECRET)
    return client


def service() -> ManagedResource:
    return ManagedResource(
        kind=ResourceKind.SERVICE,
        name="thanos-querier",
        namespace=NS,
        body={"spec": {"ports": [{"name": "web", "port": 9091}]}},
    )


def deployment() -> ManagedResource:
    return ManagedResource(kind=ResourceKind.DEPLOYMENT, name="thanos-querier", namespace=NS)


class TestCreateIfAbsent:
    """Tests for create_if_absent()."""

    def test_creates_when_missing(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")
        assert kube.create_if_absent(service()) is True
        api.create.assert_called_once()
        assert api.create.call_args.kwargs["namespace"] == NS
        assert api.create.call_args.kwargs["body"]["kind"] == "Service"

    def test_skips_existing(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.return_value = live({"metadata": {"name": "thanos-querier"}})
        assert kube.create_if_absent(service()) is False
        api.create.assert_not_called()

    def test_concurrent_create_counts_as_existing(
        self, kube: KubernetesResourceClient, api: MagicMock
    ) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")
        api.create.side_effect = ApiException(status=409, reason="AlreadyExists")
        assert kube.create_if_absent(service()) is False


class TestCreateOrUpdate:
    """Tests for create_or_update()."""

    def test_replace_carries_server_fields(
        self, kube: KubernetesResourceClient, api: MagicMock
    ) -> None:
        api.get.return_value = live(
            {
                "metadata": {"name": "thanos-querier", "resourceVersion": "42"},
                "spec": {"clusterIP": "172.30.0.10", "clusterIPs": ["172.30.0.10"]},
            }
        )
        kube.create_or_update(service())
        body = api.replace.call_args.kwargs["body"]
        assert body["metadata"]["resourceVersion"] == "42"
        assert body["spec"]["clusterIP"] == "172.30.0.10"
        assert body["spec"]["ports"] == [{"name": "web", "port": 9091}]

    def test_creates_when_missing(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")
        kube.create_or_update(service())
        api.create.assert_called_once()
        api.replace.assert_not_called()

    @pytest.mark.parametrize(
        ("status", "error_class"),
        [
            (409, ResourceConflictError),
            (422, ResourceRejectedError),
            (403, ResourceRejectedError),
            (500, ResourceClientError),
        ],
    )
    def test_error_mapping(
        self,
        kube: KubernetesResourceClient,
        api: MagicMock,
        status: int,
        error_class: type[ResourceClientError],
    ) -> None:
        api.get.return_value = live({"metadata": {"resourceVersion": "1"}})
        api.replace.side_effect = ApiException(status=status, reason="Failure")
        with pytest.raises(error_class) as exc_info:
            kube.create_or_update(service())
        assert exc_info.value.status == status
        assert "updating Service/openshift-monitoring/thanos-querier" in str(exc_info.value)


class TestDelete:
    """Tests for delete()."""

    def test_absent_is_success(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.delete.side_effect = ApiException(status=404, reason="Not Found")
        kube.delete(service())

    def test_other_errors_raise(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.delete.side_effect = ApiException(status=500, reason="Internal Error")
        with pytest.raises(ResourceClientError):
            kube.delete(service())


class TestWaitUntilReady:
    """Tests for wait_until_ready()."""

    def test_returns_when_ready(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        not_ready = {"spec": {"replicas": 2}, "status": {"replicas": 2, "availableReplicas": 1}}
        ready = {
            "spec": {"replicas": 2},
            "status": {"replicas": 2, "updatedReplicas": 2, "availableReplicas": 2},
        }
        api.get.side_effect = [live(not_ready), live(ready)]
        kube.wait_until_ready(deployment(), Deadline(5))
        assert api.get.call_count == 2

    def test_times_out(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(WaitTimeoutError):
            kube.wait_until_ready(deployment(), Deadline(0.05))

    def test_cancelled(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(WaitCancelledError):
            kube.wait_until_ready(deployment(), Deadline(5, cancel))
        api.get.assert_not_called()

    def test_transient_errors_keep_polling(
        self, kube: KubernetesResourceClient, api: MagicMock
    ) -> None:
        ready = {"status": {"replicas": 1, "updatedReplicas": 1, "availableReplicas": 1}}
        api.get.side_effect = [ApiException(status=503, reason="Unavailable"), live(ready)]
        kube.wait_until_ready(deployment(), Deadline(5))


class TestGetSecret:
    """Tests for get_secret()."""

    def test_decodes_data(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        encoded = base64.b64encode(b'{"datasources": []}').decode()
        api.get.return_value = live({"data": {"prometheus.yaml": encoded}})
        assert kube.get_secret(NS, "grafana-datasources") == {
            "prometheus.yaml": b'{"datasources": []}'
        }
        assert api.get.call_args.kwargs == {"name": "grafana-datasources", "namespace": NS}

    def test_missing_secret(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")
        assert kube.get_secret(NS, "grafana-datasources") is None

    def test_invalid_base64(self, kube: KubernetesResourceClient, api: MagicMock) -> None:
        api.get.return_value = live({"data": {"prometheus.yaml": "not base64!"}})
        with pytest.raises(ResourceClientError, match="not valid base64"):
            kube.get_secret(NS, "grafana-datasources")


def without_monitoring_crds(api: MagicMock):
    """Discovery that serves every kind except the monitoring.coreos.com ones."""

    def get(api_version: str, kind: str) -> MagicMock:
        if api_version.startswith("monitoring.coreos.com/"):
            raise ResourceNotFoundError(
                f"No matches found for {{'api_version': '{api_version}', 'kind': '{kind}'}}"
            )
        return api

    return get


def service_monitor() -> ManagedResource:
    return ManagedResource(kind=ResourceKind.SERVICE_MONITOR, name="thanos-querier", namespace=NS)


class TestDiscovery:
    """Tests for kinds the cluster does not serve."""

    @pytest.fixture(autouse=True)
    def no_monitoring_crds(self, dynamic_client: MagicMock, api: MagicMock) -> None:
        dynamic_client.resources.get.side_effect = without_monitoring_crds(api)
        api.get.side_effect = ApiException(status=404, reason="Not Found")

    def test_delete_of_unserved_kind_is_success(
        self, kube: KubernetesResourceClient, api: MagicMock
    ) -> None:
        kube.delete(service_monitor())
        api.delete.assert_not_called()

    def test_write_of_unserved_kind_raises(self, kube: KubernetesResourceClient) -> None:
        with pytest.raises(ResourceKindNotServedError, match="monitoring.coreos.com/v1/ServiceMonitor"):
            kube.create_or_update(service_monitor())

    def test_connection_failure_during_discovery(
        self, kube: KubernetesResourceClient, dynamic_client: MagicMock
    ) -> None:
        dynamic_client.resources.get.side_effect = urllib3.exceptions.MaxRetryError(None, "/apis")
        with pytest.raises(ResourceClientError, match="discovering"):
            kube.delete(service())

    def make_task(
        self, kube: KubernetesResourceClient, monitoring: ClusterMonitoringConfig
    ) -> PrometheusUserWorkloadTask:
        executor = StepExecutor(kube, readiness_timeout_seconds=0.05)
        return PrometheusUserWorkloadTask(
            kube, OperatorConfig(), StaticConfigSource(monitoring), executor
        )

    def test_teardown_without_crds_succeeds(
        self, kube: KubernetesResourceClient, api: MagicMock
    ) -> None:
        """Test the default disabled pass treats unserved kinds as already removed."""
        self.make_task(kube, ClusterMonitoringConfig()).run()
        assert api.delete.called
        deleted_names = {c.kwargs["name"] for c in api.delete.call_args_list}
        assert "prometheus-user-workload" in deleted_names

    def test_converge_without_crds_fails_with_context(self, kube: KubernetesResourceClient) -> None:
        monitoring = ClusterMonitoringConfig.model_validate({"enableUserWorkload": True})
        with pytest.raises(OperationError) as exc_info:
            self.make_task(kube, monitoring).run()
        error = exc_info.value
        assert error.operation is Operation.RECONCILING
        assert error.kind is ResourceKind.PROMETHEUS
        assert isinstance(error.cause, ResourceKindNotServedError)
        assert str(error).startswith("reconciling UserWorkload Prometheus object failed")
