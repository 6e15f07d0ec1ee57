"""Tests for the reconciliation error taxonomy."""

from __future__ import annotations

from monitoring_operator.errors import (
    ConstructionError,
    DependencyDataError,
    DependencySecretMalformedError,
    DependencySecretMissingError,
    Operation,
    OperationError,
    ReconcileError,
)
from monitoring_operator.resources import ResourceKind


class TestOperation:
    """Tests for operation descriptions."""

    def test_describe_apply_operations(self) -> None:
        assert Operation.CREATING.describe("Thanos Querier Route") == (
            "creating Thanos Querier Route failed"
        )
        assert Operation.DELETING.describe("X") == "deleting X failed"
        assert Operation.INITIALIZING.describe("X") == "initializing X failed"

    def test_describe_wait(self) -> None:
        assert Operation.WAITING.describe("Thanos Querier Deployment") == (
            "waiting for Thanos Querier Deployment to become ready failed"
        )


class TestReconcileError:
    """Tests for ReconcileError."""

    def test_message_wraps_cause(self) -> None:
        cause = RuntimeError("admission webhook denied the request")
        error = OperationError(
            Operation.RECONCILING,
            "UserWorkload Prometheus RoleBinding",
            cause,
            kind=ResourceKind.ROLE_BINDING,
            name="prometheus-user-workload",
            namespace="openshift-monitoring",
        )
        assert str(error) == (
            "reconciling UserWorkload Prometheus RoleBinding failed: "
            "admission webhook denied the request"
        )
        assert error.cause is cause
        assert error.description == "reconciling UserWorkload Prometheus RoleBinding failed"
        assert error.kind is ResourceKind.ROLE_BINDING
        assert error.namespace == "openshift-monitoring"

    def test_cause_may_be_a_message(self) -> None:
        error = DependencySecretMissingError(Operation.READING, "Grafana datasources", "not found")
        assert str(error) == "reading Grafana datasources failed: not found"

    def test_subclass_hierarchy(self) -> None:
        """Test callers can branch on the dependency failure mode."""
        assert issubclass(DependencySecretMissingError, DependencyDataError)
        assert issubclass(DependencySecretMalformedError, DependencyDataError)
        assert not issubclass(DependencySecretMissingError, DependencySecretMalformedError)
        for cls in (ConstructionError, OperationError, DependencyDataError):
            assert issubclass(cls, ReconcileError)
