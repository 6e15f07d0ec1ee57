"""Component tasks: Thanos Querier and user workload Prometheus."""

from __future__ import annotations

from .manifests import GRAFANA_DATASOURCES, GRAFANA_DATASOURCES_KEY, ManifestFactory
from .models import ClusterMonitoringConfig, parse_datasource_password
from .resources import ResourceKind
from .steps import OperationStep, ReadStep, StepSequence, Verb
from .task import ReconciliationTask

GRAFANA_PASSWORD = "grafana_basic_auth_password"


class ThanosQuerierTask(ReconciliationTask):
    """Query federation across the platform Prometheus replicas.

    Enabled unless thanosQuerier.enabled is explicitly false. The htpasswd
    secret embeds the basic auth password Grafana uses, read from the
    grafana-datasources secret owned by the Grafana component.
    """

    name = "thanos-querier"

    @classmethod
    def is_enabled(cls, monitoring: ClusterMonitoringConfig) -> bool:
        return monitoring.thanos_querier.is_enabled()

    @classmethod
    def converge_steps(cls, factory: ManifestFactory) -> StepSequence:
        f = factory
        return StepSequence(
            [
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE_ACCOUNT,
                    "Thanos Querier ServiceAccount",
                    lambda _: f.thanos_querier_service_account(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.CLUSTER_ROLE,
                    "Thanos Querier ClusterRole",
                    lambda _: f.thanos_querier_cluster_role(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.CLUSTER_ROLE_BINDING,
                    "Thanos Querier ClusterRoleBinding",
                    lambda _: f.thanos_querier_cluster_role_binding(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE,
                    "Thanos Querier Service",
                    lambda _: f.thanos_querier_service(),
                ),
                OperationStep(
                    Verb.CREATE_IF_ABSENT,
                    ResourceKind.ROUTE,
                    "Thanos Querier Route",
                    lambda _: f.thanos_querier_route(),
                ),
                # The Route must be admitted before oauth-proxy can redirect to it
                OperationStep(
                    Verb.WAIT_UNTIL_READY,
                    ResourceKind.ROUTE,
                    "Thanos Querier Route",
                    lambda _: f.thanos_querier_route(),
                ),
                OperationStep(
                    Verb.CREATE_IF_ABSENT,
                    ResourceKind.SECRET,
                    "Thanos Querier OAuth Cookie Secret",
                    lambda _: f.thanos_querier_oauth_cookie_secret(),
                ),
                ReadStep(
                    subject="Grafana datasources Secret",
                    namespace=f.namespace,
                    secret_name=GRAFANA_DATASOURCES,
                    key=GRAFANA_DATASOURCES_KEY,
                    store_as=GRAFANA_PASSWORD,
                    extract=parse_datasource_password,
                ),
                OperationStep(
                    Verb.CREATE_IF_ABSENT,
                    ResourceKind.SECRET,
                    "Thanos Querier htpasswd Secret",
                    lambda ctx: f.thanos_querier_htpasswd_secret(ctx.get(GRAFANA_PASSWORD)),
                ),
                OperationStep(
                    Verb.CREATE_IF_ABSENT,
                    ResourceKind.SECRET,
                    "Thanos Querier RBAC proxy Secret",
                    lambda _: f.thanos_querier_rbac_proxy_secret(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.DEPLOYMENT,
                    "Thanos Querier Deployment",
                    lambda _: f.thanos_querier_deployment(),
                ),
                OperationStep(
                    Verb.WAIT_UNTIL_READY,
                    ResourceKind.DEPLOYMENT,
                    "Thanos Querier Deployment",
                    lambda _: f.thanos_querier_deployment(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE_MONITOR,
                    "Thanos Querier ServiceMonitor",
                    lambda _: f.thanos_querier_service_monitor(),
                ),
            ]
        )


class PrometheusUserWorkloadTask(ReconciliationTask):
    """Prometheus scraping user-defined projects.

    Disabled unless enableUserWorkload is true; disabling it removes every
    resource the task created.
    """

    name = "prometheus-user-workload"

    @classmethod
    def is_enabled(cls, monitoring: ClusterMonitoringConfig) -> bool:
        return monitoring.user_workload_enabled()

    @classmethod
    def converge_steps(cls, factory: ManifestFactory) -> StepSequence:
        f = factory
        return StepSequence(
            [
                # Contents are injected by the service CA operator
                OperationStep(
                    Verb.CREATE_IF_ABSENT,
                    ResourceKind.CONFIG_MAP,
                    "UserWorkload serving certs CA Bundle ConfigMap",
                    lambda _: f.prometheus_user_workload_serving_certs_ca_bundle(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE_ACCOUNT,
                    "UserWorkload Prometheus ServiceAccount",
                    lambda _: f.prometheus_user_workload_service_account(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.CLUSTER_ROLE,
                    "UserWorkload Prometheus ClusterRole",
                    lambda _: f.prometheus_user_workload_cluster_role(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.CLUSTER_ROLE_BINDING,
                    "UserWorkload Prometheus ClusterRoleBinding",
                    lambda _: f.prometheus_user_workload_cluster_role_binding(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.ROLE,
                    "UserWorkload Prometheus Role config",
                    lambda _: f.prometheus_user_workload_role_config(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.ROLE,
                    "UserWorkload Prometheus Role",
                    lambda _: f.prometheus_user_workload_role_list(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.ROLE_BINDING,
                    "UserWorkload Prometheus RoleBinding",
                    lambda _: f.prometheus_user_workload_role_binding_list(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.ROLE_BINDING,
                    "UserWorkload Prometheus config RoleBinding",
                    lambda _: f.prometheus_user_workload_role_binding_config(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE,
                    "UserWorkload Prometheus Service",
                    lambda _: f.prometheus_user_workload_service(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.PROMETHEUS,
                    "UserWorkload Prometheus object",
                    lambda _: f.prometheus_user_workload(),
                ),
                OperationStep(
                    Verb.WAIT_UNTIL_READY,
                    ResourceKind.PROMETHEUS,
                    "UserWorkload Prometheus object",
                    lambda _: f.prometheus_user_workload(),
                ),
                OperationStep(
                    Verb.CREATE_OR_UPDATE,
                    ResourceKind.SERVICE_MONITOR,
                    "UserWorkload Prometheus ServiceMonitor",
                    lambda _: f.prometheus_user_workload_service_monitor(),
                ),
            ]
        )


TASK_CLASSES: tuple[type[ReconciliationTask], ...] = (ThanosQuerierTask, PrometheusUserWorkloadTask)
