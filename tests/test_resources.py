"""Tests for managed resource descriptors."""

from __future__ import annotations

import pytest

from monitoring_operator.resources import (
    ManagedResource,
    ResourceKey,
    ResourceKind,
    Tier,
    key_for,
)


class TestResourceKind:
    """Tests for kind metadata."""

    def test_api_versions(self) -> None:
        """Test core, RBAC and custom kinds map to their API groups."""
        assert ResourceKind.SECRET.api_version == "v1"
        assert ResourceKind.ROLE_BINDING.api_version == "rbac.authorization.k8s.io/v1"
        assert ResourceKind.ROUTE.api_version == "route.openshift.io/v1"
        assert ResourceKind.PROMETHEUS.api_version == "monitoring.coreos.com/v1"

    def test_cluster_scoped_kinds(self) -> None:
        """Test only ClusterRole and ClusterRoleBinding are cluster scoped."""
        scoped = {kind for kind in ResourceKind if kind.cluster_scoped}
        assert scoped == {ResourceKind.CLUSTER_ROLE, ResourceKind.CLUSTER_ROLE_BINDING}

    def test_every_kind_has_a_tier(self) -> None:
        """Test tier lookup is total."""
        for kind in ResourceKind:
            assert isinstance(kind.tier, Tier)

    def test_tier_order(self) -> None:
        """Test identities precede bindings, which precede workloads and monitors."""
        assert ResourceKind.CONFIG_MAP.tier < ResourceKind.SERVICE_ACCOUNT.tier
        assert ResourceKind.SERVICE_ACCOUNT.tier < ResourceKind.CLUSTER_ROLE_BINDING.tier
        assert ResourceKind.ROLE_BINDING.tier < ResourceKind.SERVICE.tier
        assert ResourceKind.SECRET.tier < ResourceKind.DEPLOYMENT.tier
        assert ResourceKind.PROMETHEUS.tier < ResourceKind.SERVICE_MONITOR.tier


class TestManagedResource:
    """Tests for ManagedResource."""

    def test_namespaced_kind_requires_namespace(self) -> None:
        with pytest.raises(ValueError, match="requires a namespace"):
            ManagedResource(kind=ResourceKind.SERVICE, name="svc")

    def test_cluster_scoped_kind_rejects_namespace(self) -> None:
        with pytest.raises(ValueError, match="cluster scoped"):
            ManagedResource(kind=ResourceKind.CLUSTER_ROLE, name="cr", namespace="ns")

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="name cannot be empty"):
            ManagedResource(kind=ResourceKind.SECRET, name="", namespace="ns")

    def test_to_manifest_fills_identity(self) -> None:
        """Test the rendered manifest carries apiVersion, kind and metadata."""
        resource = ManagedResource(
            kind=ResourceKind.CONFIG_MAP,
            name="cm",
            namespace="ns",
            body={"metadata": {"labels": {"a": "b"}}, "data": {"k": "v"}},
        )
        manifest = resource.to_manifest()
        assert manifest == {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"labels": {"a": "b"}, "name": "cm", "namespace": "ns"},
            "data": {"k": "v"},
        }

    def test_to_manifest_is_a_copy(self) -> None:
        """Test mutating a rendered manifest leaves the descriptor untouched."""
        resource = ManagedResource(
            kind=ResourceKind.CONFIG_MAP, name="cm", namespace="ns", body={"data": {"k": "v"}}
        )
        manifest = resource.to_manifest()
        manifest["data"]["k"] = "changed"
        assert resource.body["data"]["k"] == "v"

    def test_cluster_scoped_manifest_has_no_namespace(self) -> None:
        resource = ManagedResource(kind=ResourceKind.CLUSTER_ROLE, name="cr")
        assert "namespace" not in resource.to_manifest()["metadata"]

    def test_key_and_str(self) -> None:
        resource = ManagedResource(kind=ResourceKind.SECRET, name="s", namespace="ns")
        assert resource.key == ResourceKey(ResourceKind.SECRET, "ns", "s")
        assert str(resource) == "Secret/ns/s"


class TestKeyFor:
    """Tests for key_for()."""

    def test_drops_namespace_for_cluster_scoped(self) -> None:
        key = key_for(ResourceKind.CLUSTER_ROLE, "cr", "ns")
        assert key.namespace is None
        assert str(key) == "ClusterRole/cr"

    def test_keeps_namespace_for_namespaced(self) -> None:
        assert key_for(ResourceKind.ROLE, "r", "ns").namespace == "ns"
