"""Managed resource descriptors.

A ManagedResource is a complete desired-state snapshot of one object the
operator owns in the cluster. Descriptors are built fresh on every
reconciliation pass by the manifest factory and are never mutated
afterwards: the resource client receives a deep copy of the body.

Each kind carries an ordering tier. Converge sequences apply tiers in
ascending order (trust material first, monitors last) and teardown
sequences remove them in exact reverse.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, NamedTuple


class Tier(IntEnum):
    """Ordering tier of a resource kind within a converge sequence."""

    TRUST = 10  # CA bundles, certificates
    IDENTITY = 20  # ServiceAccounts
    AUTHORIZATION = 30  # Roles, bindings and cluster-scoped equivalents
    NETWORK = 40  # Services, Routes
    EXTERNAL_SECRET = 50  # Secrets, some built from another component's data
    WORKLOAD = 60  # Deployments, Prometheus
    OBSERVABILITY = 70  # ServiceMonitors pointing at the workload


class ResourceKind(str, Enum):
    """Resource kinds managed by the operator."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    SERVICE_ACCOUNT = "ServiceAccount"
    CLUSTER_ROLE = "ClusterRole"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    SERVICE = "Service"
    ROUTE = "Route"
    DEPLOYMENT = "Deployment"
    PROMETHEUS = "Prometheus"
    SERVICE_MONITOR = "ServiceMonitor"

    @property
    def api_version(self) -> str:
        return _API_VERSIONS[self]

    @property
    def cluster_scoped(self) -> bool:
        return self in _CLUSTER_SCOPED

    @property
    def tier(self) -> Tier:
        return _TIERS[self]


_API_VERSIONS: dict[ResourceKind, str] = {
    ResourceKind.CONFIG_MAP: "v1",
    ResourceKind.SECRET: "v1",
    ResourceKind.SERVICE_ACCOUNT: "v1",
    ResourceKind.SERVICE: "v1",
    ResourceKind.CLUSTER_ROLE: "rbac.authorization.k8s.io/v1",
    ResourceKind.CLUSTER_ROLE_BINDING: "rbac.authorization.k8s.io/v1",
    ResourceKind.ROLE: "rbac.authorization.k8s.io/v1",
    ResourceKind.ROLE_BINDING: "rbac.authorization.k8s.io/v1",
    ResourceKind.ROUTE: "route.openshift.io/v1",
    ResourceKind.DEPLOYMENT: "apps/v1",
    ResourceKind.PROMETHEUS: "monitoring.coreos.com/v1",
    ResourceKind.SERVICE_MONITOR: "monitoring.coreos.com/v1",
}

_CLUSTER_SCOPED = frozenset({ResourceKind.CLUSTER_ROLE, ResourceKind.CLUSTER_ROLE_BINDING})

_TIERS: dict[ResourceKind, Tier] = {
    ResourceKind.CONFIG_MAP: Tier.TRUST,
    ResourceKind.SERVICE_ACCOUNT: Tier.IDENTITY,
    ResourceKind.CLUSTER_ROLE: Tier.AUTHORIZATION,
    ResourceKind.CLUSTER_ROLE_BINDING: Tier.AUTHORIZATION,
    ResourceKind.ROLE: Tier.AUTHORIZATION,
    ResourceKind.ROLE_BINDING: Tier.AUTHORIZATION,
    ResourceKind.SERVICE: Tier.NETWORK,
    ResourceKind.ROUTE: Tier.NETWORK,
    ResourceKind.SECRET: Tier.EXTERNAL_SECRET,
    ResourceKind.DEPLOYMENT: Tier.WORKLOAD,
    ResourceKind.PROMETHEUS: Tier.WORKLOAD,
    ResourceKind.SERVICE_MONITOR: Tier.OBSERVABILITY,
}


class ResourceKey(NamedTuple):
    """Identity of a resource in the cluster."""

    kind: ResourceKind
    namespace: str | None
    name: str

    def __str__(self) -> str:
        if self.namespace is None:
            return f"{self.kind.value}/{self.name}"
        return f"{self.kind.value}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ManagedResource:
    """One object this operator owns in the cluster.

    Attributes:
        kind: Resource kind.
        name: metadata.name.
        namespace: metadata.namespace, None for cluster-scoped kinds.
        body: Manifest content (spec, data, rules, ...). metadata.labels and
            metadata.annotations may be given under a "metadata" key.
        references: Keys of other resources this resource's spec refers to.
            Converge sequences must apply those earlier.
    """

    kind: ResourceKind
    name: str
    namespace: str | None = None
    body: dict[str, Any] = field(default_factory=dict)
    references: tuple[ResourceKey, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError(f"{self.kind.value} name cannot be empty")
        if self.kind.cluster_scoped and self.namespace is not None:
            raise ValueError(f"{self.kind.value} is cluster scoped and takes no namespace")
        if not self.kind.cluster_scoped and not self.namespace:
            raise ValueError(f"{self.kind.value} {self.name} requires a namespace")

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.namespace, self.name)

    @property
    def api_version(self) -> str:
        return self.kind.api_version

    def to_manifest(self) -> dict[str, Any]:
        """Render the full manifest sent to the cluster.

        Returns a fresh deep copy so callers may mutate it freely.
        """
        body = copy.deepcopy(self.body)
        metadata: dict[str, Any] = body.pop("metadata", {})
        metadata["name"] = self.name
        if self.namespace is not None:
            metadata["namespace"] = self.namespace
        manifest: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind.value,
            "metadata": metadata,
        }
        manifest.update(body)
        return manifest

    def __str__(self) -> str:
        return str(self.key)


def key_for(kind: ResourceKind, name: str, namespace: str | None = None) -> ResourceKey:
    """Build a ResourceKey, dropping the namespace for cluster-scoped kinds."""
    return ResourceKey(kind, None if kind.cluster_scoped else namespace, name)
