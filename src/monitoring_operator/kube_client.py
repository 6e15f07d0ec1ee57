"""Kubernetes implementation of the ResourceClient protocol.

Uses the dynamic client from the official `kubernetes` package so every
managed kind, custom resources included, goes through one code path.
API errors are translated into ResourceClientError subclasses at this
boundary; nothing from the kubernetes package leaks to the tasks.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes import dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError

from .client import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    Deadline,
    ResourceClientError,
    ResourceConflictError,
    ResourceKindNotServedError,
    ResourceRejectedError,
    WaitCancelledError,
    WaitTimeoutError,
    is_ready,
)
from .resources import ManagedResource, ResourceKind

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE = 422


def load_api_client(kubeconfig: Path | None = None) -> k8s_client.ApiClient:
    """Build an API client from in-cluster config, falling back to kubeconfig."""
    try:
        k8s_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except k8s_config.ConfigException:
        k8s_config.load_kube_config(config_file=str(kubeconfig) if kubeconfig else None)
        logger.info(
            "Using kubeconfig",
            extra={"kubeconfig": str(kubeconfig) if kubeconfig else "default"},
        )
    return k8s_client.ApiClient()


def _translate(e: ApiException, action: str, target: str) -> ResourceClientError:
    status = e.status
    message = f"{action} {target}: {status} {e.reason}"
    if status == HTTP_CONFLICT:
        return ResourceConflictError(message, status)
    if status in (HTTP_BAD_REQUEST, HTTP_FORBIDDEN, HTTP_UNPROCESSABLE):
        return ResourceRejectedError(message, status)
    return ResourceClientError(message, status)


class KubernetesResourceClient:
    """ResourceClient backed by the Kubernetes API.

    Args:
        api_client: Configured ApiClient. Discovery happens lazily on the
            first operation.
        poll_interval_seconds: Delay between readiness polls.
    """

    def __init__(
        self,
        api_client: k8s_client.ApiClient,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._api_client = api_client
        self._poll_interval_seconds = poll_interval_seconds
        self._dynamic: dynamic.DynamicClient | None = None

    def _resource_api(self, kind: ResourceKind) -> Any:
        if self._dynamic is None:
            try:
                self._dynamic = dynamic.DynamicClient(self._api_client)
            except ApiException as e:
                raise _translate(e, "discovering", "API resources") from e
            except urllib3.exceptions.HTTPError as e:
                raise ResourceClientError(f"discovering API resources: {e}") from e
        target = f"{kind.api_version}/{kind.value}"
        try:
            return self._dynamic.resources.get(api_version=kind.api_version, kind=kind.value)
        except ResourceNotFoundError as e:
            raise ResourceKindNotServedError(f"{target} is not served by the cluster") from e
        except ResourceNotUniqueError as e:
            raise ResourceClientError(f"discovering {target}: {e}") from e
        except ApiException as e:
            raise _translate(e, "discovering", target) from e
        except urllib3.exceptions.HTTPError as e:
            raise ResourceClientError(f"discovering {target}: {e}") from e

    def _get(self, resource: ManagedResource) -> dict[str, Any] | None:
        api = self._resource_api(resource.kind)
        try:
            live = api.get(name=resource.name, namespace=resource.namespace)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                return None
            raise _translate(e, "getting", str(resource)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ResourceClientError(f"getting {resource}: {e}") from e
        return live.to_dict()

    def _create(self, resource: ManagedResource) -> None:
        api = self._resource_api(resource.kind)
        api.create(body=resource.to_manifest(), namespace=resource.namespace)

    def create_if_absent(self, resource: ManagedResource) -> bool:
        if self._get(resource) is not None:
            return False
        try:
            self._create(resource)
        except ApiException as e:
            if e.status == HTTP_CONFLICT:
                # Created concurrently by someone else
                return False
            raise _translate(e, "creating", str(resource)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ResourceClientError(f"creating {resource}: {e}") from e
        return True

    def create_or_update(self, resource: ManagedResource) -> None:
        existing = self._get(resource)
        try:
            if existing is None:
                self._create(resource)
                return
            manifest = resource.to_manifest()
            self._carry_over(resource.kind, existing, manifest)
            api = self._resource_api(resource.kind)
            api.replace(body=manifest, name=resource.name, namespace=resource.namespace)
        except ApiException as e:
            action = "creating" if existing is None else "updating"
            raise _translate(e, action, str(resource)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ResourceClientError(f"writing {resource}: {e}") from e

    @staticmethod
    def _carry_over(kind: ResourceKind, existing: dict[str, Any], manifest: dict[str, Any]) -> None:
        """Copy server-owned fields a replace must preserve."""
        existing_meta = existing.get("metadata") or {}
        if existing_meta.get("resourceVersion"):
            manifest["metadata"]["resourceVersion"] = existing_meta["resourceVersion"]
        if kind is ResourceKind.SERVICE:
            existing_spec = existing.get("spec") or {}
            spec = manifest.setdefault("spec", {})
            for field_name in ("clusterIP", "clusterIPs"):
                if field_name in existing_spec and field_name not in spec:
                    spec[field_name] = existing_spec[field_name]

    def delete(self, resource: ManagedResource) -> None:
        try:
            api = self._resource_api(resource.kind)
        except ResourceKindNotServedError:
            # No such kind means no such resource
            logger.debug("Kind not served, resource absent", extra={"resource": str(resource)})
            return
        try:
            api.delete(name=resource.name, namespace=resource.namespace)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                logger.debug("Resource already absent", extra={"resource": str(resource)})
                return
            raise _translate(e, "deleting", str(resource)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ResourceClientError(f"deleting {resource}: {e}") from e

    def wait_until_ready(self, resource: ManagedResource, deadline: Deadline) -> None:
        while True:
            if deadline.cancelled:
                raise WaitCancelledError(f"wait for {resource} cancelled")

            try:
                live = self._get(resource)
            except ResourceClientError as e:
                # Transient API failures are expected while polling
                logger.warning(
                    "Readiness poll failed",
                    extra={"resource": str(resource), "error": str(e)},
                )
                live = None

            if is_ready(resource.kind, live):
                logger.debug("Resource ready", extra={"resource": str(resource)})
                return

            if deadline.expired:
                raise WaitTimeoutError(
                    f"{resource} not ready after {deadline.timeout_seconds}s"
                )

            if deadline.sleep(self._poll_interval_seconds):
                raise WaitCancelledError(f"wait for {resource} cancelled")

    def get_secret(self, namespace: str, name: str) -> dict[str, bytes] | None:
        secret = ManagedResource(kind=ResourceKind.SECRET, name=name, namespace=namespace)
        live = self._get(secret)
        if live is None:
            return None
        decoded: dict[str, bytes] = {}
        for key, value in (live.get("data") or {}).items():
            try:
                decoded[key] = base64.b64decode(value or "", validate=True)
            except binascii.Error as e:
                raise ResourceClientError(
                    f"secret {namespace}/{name} key '{key}' is not valid base64"
                ) from e
        return decoded
