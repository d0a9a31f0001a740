"""
Kubernetes Operator for OpenStack Swift storage (v1beta1)
kopf entry point turning SwiftStorage and owned child notifications into
serialized reconcile passes. Run with ``kopf run -m swift_operator.operator``.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, Optional

import kopf
from opentelemetry import trace
from prometheus_client import start_http_server

from swift_operator.config import OperatorConfig
from swift_operator.errors import ReconcileError
from swift_operator.kube import KubePlatform
from swift_operator.reconciler import ReconcileResult, SwiftStorageReconciler
from swift_operator.swift import (
    STORAGE_KIND,
    STORAGE_PLURAL,
    SWIFT_GROUP,
    SWIFT_VERSION,
    get_labels_storage,
)

# ===== Constants =====
DIFFBASE_KEY = "last-handled-configuration"
BACKOFF_BASE = 5
BACKOFF_MAX = 300
RESYNC_INTERVAL = OperatorConfig.from_env().resync_interval

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("swift_operator.operator")

_reconciler: Optional[SwiftStorageReconciler] = None
_key_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
_key_locks_guard = threading.Lock()


def get_reconciler() -> SwiftStorageReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = SwiftStorageReconciler(KubePlatform.from_cluster(), OperatorConfig.from_env())
    return _reconciler


def _key_lock(namespace: str, name: str) -> threading.Lock:
    with _key_locks_guard:
        return _key_locks[f"{namespace}/{name}"]


def _release_key_lock(namespace: str, name: str):
    with _key_locks_guard:
        _key_locks.pop(f"{namespace}/{name}", None)


def run_reconcile(namespace: str, name: str) -> ReconcileResult:
    """One reconcile pass; passes for the same key never overlap."""
    with _key_lock(namespace, name):
        result = get_reconciler().reconcile(namespace, name)
    if not result.found:
        _release_key_lock(namespace, name)
    return result


def backoff_delay(retry: int) -> float:
    return min(BACKOFF_BASE * (2 ** retry), BACKOFF_MAX)


def reconcile_or_retry(namespace: str, name: str, retry: int = 0):
    """Map a reconcile result onto kopf's retry semantics."""
    try:
        result = run_reconcile(namespace, name)
    except ReconcileError as e:
        raise kopf.TemporaryError(str(e), delay=backoff_delay(retry)) from e
    if result.requeue_after is not None:
        raise kopf.TemporaryError(
            f"SwiftStorage {namespace}/{name} waiting on a dependency", delay=result.requeue_after)


def is_ready(status: Optional[Dict]) -> bool:
    conditions = (status or {}).get("conditions") or []
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


# ===== Handlers =====
@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    config = OperatorConfig.from_env()
    logging.getLogger("swift_operator").setLevel(config.logging_level)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=SWIFT_GROUP,
        key=DIFFBASE_KEY,
    )
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=SWIFT_GROUP)
    settings.posting.level = logging.INFO
    settings.watching.server_timeout = 60
    start_http_server(config.metrics_port)
    logger.info(f"Metrics server started on port {config.metrics_port}")


@kopf.on.create(SWIFT_GROUP, SWIFT_VERSION, STORAGE_PLURAL)
@kopf.on.update(SWIFT_GROUP, SWIFT_VERSION, STORAGE_PLURAL)
@kopf.on.resume(SWIFT_GROUP, SWIFT_VERSION, STORAGE_PLURAL)
@tracer.start_as_current_span("reconcile_swift_storage")
def reconcile_fn(name: str, namespace: str, retry: int = 0, **_):
    reconcile_or_retry(namespace, name, retry)


@kopf.timer(SWIFT_GROUP, SWIFT_VERSION, STORAGE_PLURAL, interval=RESYNC_INTERVAL, initial_delay=RESYNC_INTERVAL)
def resync_fn(name: str, namespace: str, status: Dict, retry: int = 0, **_):
    # Ready is terminal; only owned-resource changes restart the cycle
    if is_ready(status):
        return
    reconcile_or_retry(namespace, name, retry)


def reconcile_owner(body: Dict, namespace: str, kind: str):
    """Reconcile the SwiftStorage controlling a changed or deleted child."""
    owners = (body.get("metadata") or {}).get("ownerReferences") or []
    for owner in owners:
        if owner.get("kind") != STORAGE_KIND or not owner.get("controller"):
            continue
        try:
            run_reconcile(namespace, owner["name"])
        except ReconcileError as e:
            # the resync timer picks the object up again
            logger.warning(f"Reconcile after {kind} change failed: {e}")


@kopf.on.event('apps', 'v1', 'statefulsets', labels=get_labels_storage())
def stateful_set_event_fn(body: Dict, namespace: str, **_):
    reconcile_owner(body, namespace, "StatefulSet")


@kopf.on.event('v1', 'configmaps', labels=get_labels_storage())
def config_map_event_fn(body: Dict, namespace: str, **_):
    reconcile_owner(body, namespace, "ConfigMap")


@kopf.on.event('v1', 'services', labels=get_labels_storage())
def service_event_fn(body: Dict, namespace: str, **_):
    reconcile_owner(body, namespace, "Service")


@kopf.on.event('networking.k8s.io', 'v1', 'networkpolicies', labels=get_labels_storage())
def network_policy_event_fn(body: Dict, namespace: str, **_):
    reconcile_owner(body, namespace, "NetworkPolicy")
