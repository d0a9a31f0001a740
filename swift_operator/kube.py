"""
Kubernetes client for the SwiftStorage reconciler
Reads, idempotent create-or-patch of owned children, and status writes.
Transient API failures (429/5xx, connection errors) are retried a bounded
number of times; everything else is raised as PlatformError.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import tenacity
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from prometheus_client import Counter
from urllib3.exceptions import HTTPError

from swift_operator.errors import ConflictError, PlatformError
from swift_operator.swift import STORAGE_PLURAL, SWIFT_GROUP, SWIFT_VERSION

logger = logging.getLogger(__name__)

# ===== Constants =====
MAX_RETRIES = 3
WAIT_BASE = 0.5
WAIT_MAX = 4

METRICS = {
    'applied': Counter('swift_operator_child_apply', 'Child resource apply operations', ['kind', 'result']),
}


class ApplyResult(str, Enum):
    CREATED = "created"
    PATCHED = "patched"
    UNCHANGED = "unchanged"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, PlatformError) and exc.transient


retry_transient = tenacity.retry(
    stop=tenacity.stop_after_attempt(MAX_RETRIES),
    wait=tenacity.wait_exponential(multiplier=WAIT_BASE, max=WAIT_MAX),
    retry=tenacity.retry_if_exception(_is_transient),
    before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def is_subset(desired: Any, live: Any) -> bool:
    """True when every field set in ``desired`` has the same value in ``live``.

    Lists must match in length and element-wise; fields the API server adds
    (defaults, status, managed fields) are ignored.
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(k in live and is_subset(v, live[k]) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(is_subset(d, l) for d, l in zip(desired, live))
    return desired == live


class KubePlatform:
    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.api_client = api_client or client.ApiClient()
        self.core_v1 = client.CoreV1Api(api_client=self.api_client)
        self.apps_v1 = client.AppsV1Api(api_client=self.api_client)
        self.networking_v1 = client.NetworkingV1Api(api_client=self.api_client)
        self.custom_api = client.CustomObjectsApi(api_client=self.api_client)

    @classmethod
    def from_cluster(cls) -> "KubePlatform":
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
        return cls()

    # ===== SwiftStorage =====
    @retry_transient
    def get_swift_storage(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self._call(
            f"get SwiftStorage {namespace}/{name}",
            self.custom_api.get_namespaced_custom_object,
            missing_ok=True,
            group=SWIFT_GROUP, version=SWIFT_VERSION, plural=STORAGE_PLURAL,
            namespace=namespace, name=name,
        )

    @retry_transient
    def update_swift_storage_replicas(self, namespace: str, name: str, replicas: int,
                                      resource_version: Optional[str]) -> Dict[str, Any]:
        """Rewrite ``spec.replicas``; fails with ConflictError if the object moved on."""
        body: Dict[str, Any] = {"spec": {"replicas": replicas}}
        if resource_version:
            body["metadata"] = {"resourceVersion": resource_version}
        return self._call(
            f"update SwiftStorage {namespace}/{name}",
            self.custom_api.patch_namespaced_custom_object,
            group=SWIFT_GROUP, version=SWIFT_VERSION, plural=STORAGE_PLURAL,
            namespace=namespace, name=name, body=body,
        )

    @retry_transient
    def patch_swift_storage_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        return self._call(
            f"patch SwiftStorage status {namespace}/{name}",
            self.custom_api.patch_namespaced_custom_object_status,
            group=SWIFT_GROUP, version=SWIFT_VERSION, plural=STORAGE_PLURAL,
            namespace=namespace, name=name, body={"status": status},
        )

    # ===== Reads =====
    @retry_transient
    def get_config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self._call(f"get ConfigMap {namespace}/{name}",
                          self.core_v1.read_namespaced_config_map,
                          missing_ok=True, name=name, namespace=namespace)

    @retry_transient
    def get_stateful_set(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self._call(f"get StatefulSet {namespace}/{name}",
                          self.apps_v1.read_namespaced_stateful_set,
                          missing_ok=True, name=name, namespace=namespace)

    @retry_transient
    def get_persistent_volume_claim(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        return self._call(f"get PersistentVolumeClaim {namespace}/{name}",
                          self.core_v1.read_namespaced_persistent_volume_claim,
                          missing_ok=True, name=name, namespace=namespace)

    # ===== Apply =====
    @retry_transient
    def apply(self, resource: Any) -> Tuple[ApplyResult, Dict[str, Any]]:
        """Create ``resource`` or patch the live object until it matches."""
        desired = self.api_client.sanitize_for_serialization(resource)
        kind = desired["kind"]
        name = desired["metadata"]["name"]
        namespace = desired["metadata"]["namespace"]
        read, create, patch = self._operations(kind)
        ref = f"{kind} {namespace}/{name}"

        live = self._call(f"get {ref}", read, missing_ok=True, name=name, namespace=namespace)
        if live is None:
            result = ApplyResult.CREATED
            live = self._call(f"create {ref}", create, namespace=namespace, body=desired)
        elif is_subset(desired, live):
            result = ApplyResult.UNCHANGED
        else:
            result = ApplyResult.PATCHED
            live = self._call(f"patch {ref}", patch, name=name, namespace=namespace, body=desired)

        METRICS['applied'].labels(kind=kind, result=result.value).inc()
        if result != ApplyResult.UNCHANGED:
            logger.info(f"{ref} {result.value}")
        return result, live

    def _operations(self, kind: str) -> Tuple[Callable, Callable, Callable]:
        operations = {
            "ConfigMap": (self.core_v1.read_namespaced_config_map,
                          self.core_v1.create_namespaced_config_map,
                          self.core_v1.patch_namespaced_config_map),
            "Service": (self.core_v1.read_namespaced_service,
                        self.core_v1.create_namespaced_service,
                        self.core_v1.patch_namespaced_service),
            "NetworkPolicy": (self.networking_v1.read_namespaced_network_policy,
                              self.networking_v1.create_namespaced_network_policy,
                              self.networking_v1.patch_namespaced_network_policy),
            "StatefulSet": (self.apps_v1.read_namespaced_stateful_set,
                            self.apps_v1.create_namespaced_stateful_set,
                            self.apps_v1.patch_namespaced_stateful_set),
        }
        if kind not in operations:
            raise ValueError(f"Unsupported child kind: {kind}")
        return operations[kind]

    def _call(self, operation: str, fn: Callable, missing_ok: bool = False, **kwargs) -> Optional[Dict[str, Any]]:
        try:
            result = fn(**kwargs)
        except ApiException as e:
            if missing_ok and e.status == 404:
                return None
            if e.status == 409:
                raise ConflictError(operation, str(e.reason), e.status) from e
            raise PlatformError(operation, str(e.reason), e.status) from e
        except HTTPError as e:
            raise PlatformError(operation, str(e)) from e
        return self.api_client.sanitize_for_serialization(result)
