"""In-memory cluster mock for task and executor tests.

Provides a ResourceClient implementation backed by a dict of manifests,
so reconciliation can be exercised end to end without a cluster.

Key Features:
- In-memory object store keyed by (kind, namespace, name)
- Error injection per (verb, kind, name)
- Call log for asserting operation order
- Readiness that is either immediate or never reached

Usage:
    from cluster_mock import MockClusterState, MockResourceClient

    state = MockClusterState()
    client = MockResourceClient(state)
    client.fail_on("create_or_update", ResourceKind.ROLE_BINDING, "prometheus-user-workload")

    task = PrometheusUserWorkloadTask(client, settings, config_source)
    with pytest.raises(OperationError):
        task.run()
"""

from .client import MockResourceClient
from .state import MockClusterState

__all__ = [
    "MockClusterState",
    "MockResourceClient",
]
