"""Desired-state construction for the managed components.

ManifestFactory turns the operator settings and the monitoring config into
ManagedResource descriptors. It performs no I/O; every method is a pure
function of its configuration, except for generated secret material, which
comes from an injectable token source and is only ever written with
create-if-absent.

Each descriptor lists the managed resources it references so step
sequences can be checked for dependency ordering.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from collections.abc import Callable
from typing import Any

import yaml

from .config import OperatorConfig
from .models import ClusterMonitoringConfig, SchedulingConfig
from .resources import ManagedResource, ResourceKey, ResourceKind, key_for

PART_OF = "openshift-monitoring"
MANAGED_BY = "monitoring-operator"

THANOS_QUERIER = "thanos-querier"
THANOS_QUERIER_OAUTH_COOKIE = "thanos-querier-oauth-cookie"
THANOS_QUERIER_HTPASSWD = "thanos-querier-htpasswd"
THANOS_QUERIER_RBAC_PROXY = "thanos-querier-kube-rbac-proxy"
THANOS_QUERIER_TLS = "thanos-querier-tls"
THANOS_QUERIER_INTERNAL_USER = "internal"

GRAFANA_DATASOURCES = "grafana-datasources"
GRAFANA_DATASOURCES_KEY = "prometheus.yaml"

PROMETHEUS_USER_WORKLOAD = "prometheus-user-workload"
PROMETHEUS_USER_WORKLOAD_CONFIG = "prometheus-user-workload-config"
PROMETHEUS_USER_WORKLOAD_CR = "user-workload"
PROMETHEUS_USER_WORKLOAD_TLS = "prometheus-user-workload-tls"
SERVING_CERTS_CA_BUNDLE = "serving-certs-ca-bundle"

SERVING_CERT_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"
INJECT_CABUNDLE_ANNOTATION = "service.beta.openshift.io/inject-cabundle"

COOKIE_SECRET_LENGTH = 32


class ManifestError(Exception):
    """Raised when a descriptor cannot be built from the configuration."""

    pass


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _htpasswd_entry(user: str, password: str) -> str:
    """htpasswd line using the {SHA} scheme understood by oauth-proxy."""
    digest = hashlib.sha1(password.encode("utf-8")).digest()  # noqa: S324 - htpasswd {SHA} format
    return f"{user}:{{SHA}}{base64.b64encode(digest).decode('ascii')}"


class ManifestFactory:
    """Builds descriptors for every managed component.

    Args:
        settings: Operator settings (namespaces, images).
        monitoring: User-facing monitoring configuration.
        token_source: Generator for random secret material, receives a
            byte count. Defaults to secrets.token_urlsafe.
    """

    def __init__(
        self,
        settings: OperatorConfig,
        monitoring: ClusterMonitoringConfig | None = None,
        token_source: Callable[[int], str] = secrets.token_urlsafe,
    ) -> None:
        self._settings = settings
        self._monitoring = monitoring or ClusterMonitoringConfig()
        self._token_source = token_source

    @property
    def namespace(self) -> str:
        return self._settings.namespace

    @property
    def user_workload_namespace(self) -> str:
        return self._settings.user_workload_namespace

    @property
    def monitoring(self) -> ClusterMonitoringConfig:
        return self._monitoring

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _labels(component: str) -> dict[str, str]:
        return {
            "app.kubernetes.io/name": component,
            "app.kubernetes.io/part-of": PART_OF,
            "app.kubernetes.io/managed-by": MANAGED_BY,
        }

    def _metadata(self, component: str, annotations: dict[str, str] | None = None) -> dict[str, Any]:
        metadata: dict[str, Any] = {"labels": self._labels(component)}
        if annotations:
            metadata["annotations"] = dict(annotations)
        return metadata

    @staticmethod
    def _scheduling(pod_spec: dict[str, Any], config: SchedulingConfig) -> dict[str, Any]:
        if config.node_selector:
            pod_spec["nodeSelector"] = dict(config.node_selector)
        if config.tolerations:
            pod_spec["tolerations"] = [t.to_manifest() for t in config.tolerations]
        return pod_spec

    def _secret(
        self,
        name: str,
        namespace: str,
        component: str,
        string_data: dict[str, str],
    ) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SECRET,
            name=name,
            namespace=namespace,
            body={
                "metadata": self._metadata(component),
                "type": "Opaque",
                "data": {k: _b64(v) for k, v in string_data.items()},
            },
        )

    def _service_account(self, name: str, namespace: str) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SERVICE_ACCOUNT,
            name=name,
            namespace=namespace,
            body={"metadata": self._metadata(name)},
        )

    def _binding(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None,
        role: ResourceKey,
        subject: ResourceKey,
        component: str,
    ) -> ManagedResource:
        return ManagedResource(
            kind=kind,
            name=name,
            namespace=namespace,
            body={
                "metadata": self._metadata(component),
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": role.kind.value,
                    "name": role.name,
                },
                "subjects": [
                    {
                        "kind": "ServiceAccount",
                        "name": subject.name,
                        "namespace": subject.namespace,
                    }
                ],
            },
            references=(subject, role),
        )

    # -------------------------------------------------------------------------
    # Thanos Querier
    # -------------------------------------------------------------------------

    def _tq_key(self, kind: ResourceKind, name: str = THANOS_QUERIER) -> ResourceKey:
        return key_for(kind, name, self.namespace)

    def thanos_querier_service_account(self) -> ManagedResource:
        return self._service_account(THANOS_QUERIER, self.namespace)

    def thanos_querier_cluster_role(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.CLUSTER_ROLE,
            name=THANOS_QUERIER,
            body={
                "metadata": self._metadata(THANOS_QUERIER),
                "rules": [
                    {
                        "apiGroups": ["authentication.k8s.io"],
                        "resources": ["tokenreviews"],
                        "verbs": ["create"],
                    },
                    {
                        "apiGroups": ["authorization.k8s.io"],
                        "resources": ["subjectaccessreviews"],
                        "verbs": ["create"],
                    },
                    {"apiGroups": [""], "resources": ["namespaces"], "verbs": ["get"]},
                ],
            },
        )

    def thanos_querier_cluster_role_binding(self) -> ManagedResource:
        return self._binding(
            ResourceKind.CLUSTER_ROLE_BINDING,
            THANOS_QUERIER,
            None,
            role=self._tq_key(ResourceKind.CLUSTER_ROLE),
            subject=self._tq_key(ResourceKind.SERVICE_ACCOUNT),
            component=THANOS_QUERIER,
        )

    def thanos_querier_service(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SERVICE,
            name=THANOS_QUERIER,
            namespace=self.namespace,
            body={
                "metadata": self._metadata(
                    THANOS_QUERIER, {SERVING_CERT_ANNOTATION: THANOS_QUERIER_TLS}
                ),
                "spec": {
                    "selector": {"app.kubernetes.io/name": THANOS_QUERIER},
                    "type": "ClusterIP",
                    "ports": [
                        {"name": "web", "port": 9091, "targetPort": "web"},
                        {"name": "tenancy", "port": 9092, "targetPort": "tenancy"},
                    ],
                },
            },
        )

    def thanos_querier_route(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.ROUTE,
            name=THANOS_QUERIER,
            namespace=self.namespace,
            body={
                "metadata": self._metadata(THANOS_QUERIER),
                "spec": {
                    "path": "/api",
                    "port": {"targetPort": "web"},
                    "to": {"kind": "Service", "name": THANOS_QUERIER},
                    "tls": {
                        "termination": "Reencrypt",
                        "insecureEdgeTerminationPolicy": "Redirect",
                    },
                },
            },
            references=(self._tq_key(ResourceKind.SERVICE),),
        )

    def thanos_querier_oauth_cookie_secret(self) -> ManagedResource:
        return self._secret(
            THANOS_QUERIER_OAUTH_COOKIE,
            self.namespace,
            THANOS_QUERIER,
            {"session_secret": self._token_source(COOKIE_SECRET_LENGTH)},
        )

    def thanos_querier_htpasswd_secret(self, password: str | None) -> ManagedResource:
        """htpasswd secret granting the internal user access to the querier.

        Args:
            password: Basic auth password shared with the Grafana datasource.
                None yields the descriptor without data, which identifies
                the secret for deletion.

        Raises:
            ManifestError: If the password is empty.
        """
        if password is None:
            return self._secret(THANOS_QUERIER_HTPASSWD, self.namespace, THANOS_QUERIER, {})
        if not password:
            raise ManifestError("Thanos Querier htpasswd requires a non-empty password")
        return self._secret(
            THANOS_QUERIER_HTPASSWD,
            self.namespace,
            THANOS_QUERIER,
            {"auth": _htpasswd_entry(THANOS_QUERIER_INTERNAL_USER, password)},
        )

    def thanos_querier_rbac_proxy_secret(self) -> ManagedResource:
        proxy_config = {
            "authorization": {
                "rewrites": {"byQueryParameter": {"name": "namespace"}},
                "resourceAttributes": {
                    "apiVersion": "metrics.k8s.io/v1beta1",
                    "resource": "pods",
                    "namespace": "{{ .Value }}",
                },
            }
        }
        return self._secret(
            THANOS_QUERIER_RBAC_PROXY,
            self.namespace,
            THANOS_QUERIER,
            {"config.yaml": yaml.safe_dump(proxy_config, sort_keys=True)},
        )

    def thanos_querier_deployment(self) -> ManagedResource:
        config = self._monitoring.thanos_querier
        images = self._settings.images
        ns = self.namespace

        containers = [
            {
                "name": "thanos-query",
                "image": images.thanos,
                "args": [
                    "query",
                    "--grpc-address=127.0.0.1:10901",
                    "--http-address=127.0.0.1:9090",
                    f"--log.level={config.log_level}",
                    "--query.replica-label=prometheus_replica",
                    f"--store=dnssrv+_grpc._tcp.prometheus-operated.{ns}.svc.cluster.local",
                ],
                "resources": config.resources.to_manifest(),
            },
            {
                "name": "oauth-proxy",
                "image": images.oauth_proxy,
                "args": [
                    "-provider=openshift",
                    "-https-address=:9091",
                    "-upstream=http://localhost:9090",
                    f"-openshift-service-account={THANOS_QUERIER}",
                    "-htpasswd-file=/etc/proxy/htpasswd/auth",
                    "-cookie-secret-file=/etc/proxy/secrets/session_secret",
                    "-tls-cert=/etc/tls/private/tls.crt",
                    "-tls-key=/etc/tls/private/tls.key",
                ],
                "ports": [{"name": "web", "containerPort": 9091}],
                "volumeMounts": [
                    {"name": "secret-htpasswd", "mountPath": "/etc/proxy/htpasswd"},
                    {"name": "secret-oauth-cookie", "mountPath": "/etc/proxy/secrets"},
                    {"name": "secret-tls", "mountPath": "/etc/tls/private"},
                ],
            },
            {
                "name": "kube-rbac-proxy",
                "image": images.kube_rbac_proxy,
                "args": [
                    "--secure-listen-address=0.0.0.0:9092",
                    "--upstream=http://127.0.0.1:9090",
                    "--config-file=/etc/kube-rbac-proxy/config.yaml",
                    "--tls-cert-file=/etc/tls/private/tls.crt",
                    "--tls-private-key-file=/etc/tls/private/tls.key",
                ],
                "ports": [{"name": "tenancy", "containerPort": 9092}],
                "volumeMounts": [
                    {"name": "secret-kube-rbac-proxy", "mountPath": "/etc/kube-rbac-proxy"},
                    {"name": "secret-tls", "mountPath": "/etc/tls/private"},
                ],
            },
        ]
        volumes = [
            {"name": "secret-htpasswd", "secret": {"secretName": THANOS_QUERIER_HTPASSWD}},
            {"name": "secret-oauth-cookie", "secret": {"secretName": THANOS_QUERIER_OAUTH_COOKIE}},
            {"name": "secret-kube-rbac-proxy", "secret": {"secretName": THANOS_QUERIER_RBAC_PROXY}},
            {"name": "secret-tls", "secret": {"secretName": THANOS_QUERIER_TLS}},
        ]
        pod_spec = self._scheduling(
            {
                "serviceAccountName": THANOS_QUERIER,
                "containers": containers,
                "volumes": volumes,
            },
            config,
        )
        return ManagedResource(
            kind=ResourceKind.DEPLOYMENT,
            name=THANOS_QUERIER,
            namespace=ns,
            body={
                "metadata": self._metadata(THANOS_QUERIER),
                "spec": {
                    "replicas": config.replicas,
                    "selector": {"matchLabels": {"app.kubernetes.io/name": THANOS_QUERIER}},
                    "template": {
                        "metadata": {"labels": self._labels(THANOS_QUERIER)},
                        "spec": pod_spec,
                    },
                },
            },
            references=(
                self._tq_key(ResourceKind.SERVICE_ACCOUNT),
                self._tq_key(ResourceKind.SECRET, THANOS_QUERIER_OAUTH_COOKIE),
                self._tq_key(ResourceKind.SECRET, THANOS_QUERIER_HTPASSWD),
                self._tq_key(ResourceKind.SECRET, THANOS_QUERIER_RBAC_PROXY),
            ),
        )

    def thanos_querier_service_monitor(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SERVICE_MONITOR,
            name=THANOS_QUERIER,
            namespace=self.namespace,
            body={
                "metadata": self._metadata(THANOS_QUERIER),
                "spec": {
                    "selector": {"matchLabels": {"app.kubernetes.io/name": THANOS_QUERIER}},
                    "endpoints": [
                        {
                            "port": "web",
                            "interval": "30s",
                            "scheme": "https",
                            "bearerTokenFile": (
                                "/var/run/secrets/kubernetes.io/serviceaccount/token"
                            ),
                            "tlsConfig": {
                                "serverName": f"{THANOS_QUERIER}.{self.namespace}.svc",
                            },
                        }
                    ],
                },
            },
            references=(
                self._tq_key(ResourceKind.SERVICE),
                self._tq_key(ResourceKind.DEPLOYMENT),
            ),
        )

    # -------------------------------------------------------------------------
    # Prometheus user workload
    # -------------------------------------------------------------------------

    def _uwl_key(self, kind: ResourceKind, name: str = PROMETHEUS_USER_WORKLOAD) -> ResourceKey:
        return key_for(kind, name, self.user_workload_namespace)

    def _uwl_role_namespaces(self) -> list[str]:
        """Namespaces where user workload Prometheus discovers targets."""
        return [self.user_workload_namespace, self.namespace]

    def prometheus_user_workload_serving_certs_ca_bundle(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.CONFIG_MAP,
            name=SERVING_CERTS_CA_BUNDLE,
            namespace=self.user_workload_namespace,
            body={
                "metadata": self._metadata(
                    PROMETHEUS_USER_WORKLOAD, {INJECT_CABUNDLE_ANNOTATION: "true"}
                ),
                "data": {"service-ca.crt": ""},
            },
        )

    def prometheus_user_workload_service_account(self) -> ManagedResource:
        return self._service_account(PROMETHEUS_USER_WORKLOAD, self.user_workload_namespace)

    def prometheus_user_workload_cluster_role(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.CLUSTER_ROLE,
            name=PROMETHEUS_USER_WORKLOAD,
            body={
                "metadata": self._metadata(PROMETHEUS_USER_WORKLOAD),
                "rules": [
                    {"apiGroups": [""], "resources": ["nodes/metrics"], "verbs": ["get"]},
                    {"apiGroups": [""], "resources": ["namespaces"], "verbs": ["get"]},
                    {"nonResourceURLs": ["/metrics"], "verbs": ["get"]},
                    {
                        "apiGroups": ["authentication.k8s.io"],
                        "resources": ["tokenreviews"],
                        "verbs": ["create"],
                    },
                    {
                        "apiGroups": ["authorization.k8s.io"],
                        "resources": ["subjectaccessreviews"],
                        "verbs": ["create"],
                    },
                ],
            },
        )

    def prometheus_user_workload_cluster_role_binding(self) -> ManagedResource:
        return self._binding(
            ResourceKind.CLUSTER_ROLE_BINDING,
            PROMETHEUS_USER_WORKLOAD,
            None,
            role=self._uwl_key(ResourceKind.CLUSTER_ROLE),
            subject=self._uwl_key(ResourceKind.SERVICE_ACCOUNT),
            component=PROMETHEUS_USER_WORKLOAD,
        )

    def prometheus_user_workload_role_config(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.ROLE,
            name=PROMETHEUS_USER_WORKLOAD_CONFIG,
            namespace=self.user_workload_namespace,
            body={
                "metadata": self._metadata(PROMETHEUS_USER_WORKLOAD),
                "rules": [{"apiGroups": [""], "resources": ["configmaps"], "verbs": ["get"]}],
            },
        )

    def prometheus_user_workload_role_list(self) -> list[ManagedResource]:
        return [
            ManagedResource(
                kind=ResourceKind.ROLE,
                name=PROMETHEUS_USER_WORKLOAD,
                namespace=namespace,
                body={
                    "metadata": self._metadata(PROMETHEUS_USER_WORKLOAD),
                    "rules": [
                        {
                            "apiGroups": [""],
                            "resources": ["services", "endpoints", "pods"],
                            "verbs": ["get", "list", "watch"],
                        }
                    ],
                },
            )
            for namespace in self._uwl_role_namespaces()
        ]

    def prometheus_user_workload_role_binding_list(self) -> list[ManagedResource]:
        return [
            self._binding(
                ResourceKind.ROLE_BINDING,
                PROMETHEUS_USER_WORKLOAD,
                namespace,
                role=key_for(ResourceKind.ROLE, PROMETHEUS_USER_WORKLOAD, namespace),
                subject=self._uwl_key(ResourceKind.SERVICE_ACCOUNT),
                component=PROMETHEUS_USER_WORKLOAD,
            )
            for namespace in self._uwl_role_namespaces()
        ]

    def prometheus_user_workload_role_binding_config(self) -> ManagedResource:
        return self._binding(
            ResourceKind.ROLE_BINDING,
            PROMETHEUS_USER_WORKLOAD_CONFIG,
            self.user_workload_namespace,
            role=self._uwl_key(ResourceKind.ROLE, PROMETHEUS_USER_WORKLOAD_CONFIG),
            subject=self._uwl_key(ResourceKind.SERVICE_ACCOUNT),
            component=PROMETHEUS_USER_WORKLOAD,
        )

    def prometheus_user_workload_service(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SERVICE,
            name=PROMETHEUS_USER_WORKLOAD,
            namespace=self.user_workload_namespace,
            body={
                "metadata": self._metadata(
                    PROMETHEUS_USER_WORKLOAD,
                    {SERVING_CERT_ANNOTATION: PROMETHEUS_USER_WORKLOAD_TLS},
                ),
                "spec": {
                    "selector": {
                        "app.kubernetes.io/name": "prometheus",
                        "prometheus": PROMETHEUS_USER_WORKLOAD_CR,
                    },
                    "type": "ClusterIP",
                    "sessionAffinity": "ClientIP",
                    "ports": [{"name": "metrics", "port": 9091, "targetPort": "metrics"}],
                },
            },
        )

    def prometheus_user_workload(self) -> ManagedResource:
        config = self._monitoring.prometheus_user_workload
        spec = self._scheduling(
            {
                "replicas": config.replicas,
                "image": self._settings.images.prometheus,
                "serviceAccountName": PROMETHEUS_USER_WORKLOAD,
                "retention": config.retention,
                "logLevel": config.log_level,
                "configMaps": [SERVING_CERTS_CA_BUNDLE],
                "secrets": [PROMETHEUS_USER_WORKLOAD_TLS],
                "serviceMonitorSelector": {},
                "serviceMonitorNamespaceSelector": {
                    "matchExpressions": [
                        {
                            "key": "openshift.io/cluster-monitoring",
                            "operator": "NotIn",
                            "values": ["true"],
                        }
                    ]
                },
                "ruleSelector": {},
                "podMetadata": {"labels": self._labels("prometheus")},
            },
            config,
        )
        resources = config.resources.to_manifest()
        if resources:
            spec["resources"] = resources
        return ManagedResource(
            kind=ResourceKind.PROMETHEUS,
            name=PROMETHEUS_USER_WORKLOAD_CR,
            namespace=self.user_workload_namespace,
            body={"metadata": self._metadata(PROMETHEUS_USER_WORKLOAD), "spec": spec},
            references=(
                self._uwl_key(ResourceKind.SERVICE_ACCOUNT),
                self._uwl_key(ResourceKind.CONFIG_MAP, SERVING_CERTS_CA_BUNDLE),
            ),
        )

    def prometheus_user_workload_service_monitor(self) -> ManagedResource:
        return ManagedResource(
            kind=ResourceKind.SERVICE_MONITOR,
            name=PROMETHEUS_USER_WORKLOAD,
            namespace=self.user_workload_namespace,
            body={
                "metadata": self._metadata(PROMETHEUS_USER_WORKLOAD),
                "spec": {
                    "selector": {
                        "matchLabels": {"app.kubernetes.io/name": PROMETHEUS_USER_WORKLOAD}
                    },
                    "endpoints": [
                        {
                            "port": "metrics",
                            "interval": "30s",
                            "scheme": "https",
                            "bearerTokenFile": (
                                "/var/run/secrets/kubernetes.io/serviceaccount/token"
                            ),
                            "tlsConfig": {
                                "serverName": (
                                    f"{PROMETHEUS_USER_WORKLOAD}."
                                    f"{self.user_workload_namespace}.svc"
                                ),
                            },
                        }
                    ],
                },
            },
            references=(
                self._uwl_key(ResourceKind.SERVICE),
                self._uwl_key(ResourceKind.PROMETHEUS, PROMETHEUS_USER_WORKLOAD_CR),
            ),
        )
