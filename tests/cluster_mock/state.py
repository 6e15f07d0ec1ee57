"""Mock cluster object store.

Holds rendered manifests keyed by ResourceKey. All operations are
synchronous since this is test code.
"""

from __future__ import annotations

import base64
import copy
from typing import Any

from monitoring_operator.resources import ManagedResource, ResourceKey, ResourceKind


class MockClusterState:
    """In-memory cluster state.

    Stores what a real API server would return for each object, including
    a resourceVersion bumped on every write.
    """

    def __init__(self) -> None:
        """Initialize empty state."""
        self._objects: dict[ResourceKey, dict[str, Any]] = {}
        self._resource_version = 0

    @property
    def object_count(self) -> int:
        """Get current object count."""
        return len(self._objects)

    def keys(self) -> set[ResourceKey]:
        return set(self._objects)

    def exists(self, key: ResourceKey) -> bool:
        return key in self._objects

    def get(self, key: ResourceKey) -> dict[str, Any] | None:
        """Get a deep copy of the stored object, or None."""
        obj = self._objects.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def put(self, resource: ManagedResource) -> dict[str, Any]:
        """Store the resource's manifest, replacing any existing object."""
        self._resource_version += 1
        manifest = resource.to_manifest()
        manifest["metadata"]["resourceVersion"] = str(self._resource_version)
        self._objects[resource.key] = manifest
        return copy.deepcopy(manifest)

    def delete(self, key: ResourceKey) -> bool:
        """Delete an object. Returns True if it existed."""
        return self._objects.pop(key, None) is not None

    def snapshot(self) -> dict[ResourceKey, dict[str, Any]]:
        """Objects without server-assigned fields, for equality checks."""
        result = {}
        for key, obj in self._objects.items():
            obj = copy.deepcopy(obj)
            obj["metadata"].pop("resourceVersion", None)
            result[key] = obj
        return result

    def seed_secret(self, namespace: str, name: str, data: dict[str, bytes]) -> ManagedResource:
        """Pre-populate a Secret owned by some other component."""
        secret = ManagedResource(
            kind=ResourceKind.SECRET,
            name=name,
            namespace=namespace,
            body={
                "type": "Opaque",
                "data": {k: base64.b64encode(v).decode("ascii") for k, v in data.items()},
            },
        )
        self.put(secret)
        return secret

    def clear(self) -> None:
        """Clear all state."""
        self._objects.clear()
