"""
SwiftStorage Reconciliation Engine (v1beta1)
Converges the children of one SwiftStorage through a fixed sequence of named
steps. Each step returns a tagged Outcome; the driver stops at the first
outcome that is not CONTINUE and writes the status back once per pass.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from opentelemetry import trace
from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from swift_operator import capacity, resources
from swift_operator.conditions import (
    DEPLOYMENT_READY_CONDITION,
    ERROR_REASON,
    READY_CONDITION,
    READY_MESSAGE,
    REQUESTED_REASON,
    SERVICE_CONFIG_READY_CONDITION,
    STORAGE_CONDITION_TYPES,
    SWIFT_STORAGE_READY_CONDITION,
    ConditionTracker,
    Severity,
)
from swift_operator.config import OperatorConfig
from swift_operator.errors import (
    InvalidSpecError,
    PlatformError,
    ReconcileError,
    SwiftOperatorError,
)
from swift_operator.models import SwiftStorage
from swift_operator.swift import RING_CONFIGMAP_NAME, get_labels_storage

logger = logging.getLogger(__name__)

# ===== Metrics =====
METRICS = {
    'reconcile_total': Counter('swift_storage_reconcile', 'SwiftStorage reconcile passes', ['result']),
    'reconcile_duration': Histogram('swift_storage_reconcile_duration_seconds', 'Reconcile pass latency'),
    'downscale_rejected': Counter('swift_storage_downscale_rejected', 'Replica downsizing requests reverted'),
}

tracer = trace.get_tracer("swift_operator.reconciler")


# ===== Outcomes =====
class OutcomeKind(str, Enum):
    CONTINUE = "continue"
    RETRY_AFTER = "retry_after"
    FATAL = "fatal"
    DONE = "done"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    delay: Optional[float] = None
    error: Optional[Exception] = None
    message: str = ""

    @classmethod
    def proceed(cls) -> "Outcome":
        return cls(OutcomeKind.CONTINUE)

    @classmethod
    def retry_after(cls, delay: float, message: str) -> "Outcome":
        return cls(OutcomeKind.RETRY_AFTER, delay=delay, message=message)

    @classmethod
    def fatal(cls, error: Exception) -> "Outcome":
        return cls(OutcomeKind.FATAL, error=error, message=str(error))

    @classmethod
    def done(cls, message: str = "") -> "Outcome":
        return cls(OutcomeKind.DONE, message=message)


@dataclass
class ReconcileResult:
    requeue_after: Optional[float] = None
    found: bool = True


@dataclass
class ReconcileContext:
    """State of one reconcile pass. Nothing here outlives the pass."""
    namespace: str
    name: str
    instance: Optional[SwiftStorage] = None
    conditions: Optional[ConditionTracker] = None
    api_endpoints: Dict[str, str] = field(default_factory=dict)
    ready_count: int = 0
    stateful_set: Optional[Dict[str, Any]] = None
    persisted_status: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[ReconcileContext], Outcome]


# Condition reported False when the step owning it fails
STEP_CONDITIONS = {
    "EnsureConfigBundle": SERVICE_CONFIG_READY_CONDITION,
    "EnsureWorkload": DEPLOYMENT_READY_CONDITION,
}

# Steps after which a pass counts as a completed reconcile
REPORTED_STEPS = ("ReadinessCheck", "MarkReady")


class SwiftStorageReconciler:
    def __init__(self, platform, config: Optional[OperatorConfig] = None,
                 clock: Optional[Callable[[], str]] = None):
        self.platform = platform
        self.config = config or OperatorConfig()
        self.clock = clock
        self.labels = get_labels_storage()
        self.steps: List[Step] = [
            Step("Load", self.load),
            Step("InitConditions", self.init_conditions),
            Step("DeletionGuard", self.deletion_guard),
            Step("EnsureConfigBundle", self.ensure_config_bundle),
            Step("WaitForRingConfig", self.wait_for_ring_config),
            Step("EnsureEndpoint", self.ensure_endpoint),
            Step("EnsureIsolationPolicy", self.ensure_isolation_policy),
            Step("ScaleDownGuard", self.scale_down_guard),
            Step("EnsureWorkload", self.ensure_workload),
            Step("ReadinessCheck", self.readiness_check),
            Step("PublishDeviceManifest", self.publish_device_manifest),
            Step("MarkReady", self.mark_ready),
        ]

    # ===== Driver =====
    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass for the SwiftStorage ``namespace/name``.

        Returns a result with ``requeue_after`` set when a dependency is not
        there yet; raises ReconcileError when a step failed.
        """
        ctx = ReconcileContext(namespace=namespace, name=name)
        with METRICS['reconcile_duration'].time():
            step, outcome = self._run_steps(ctx)
            self._record_outcome(ctx, step, outcome)
            try:
                self._flush(ctx)
            except PlatformError as e:
                METRICS['reconcile_total'].labels(result=OutcomeKind.FATAL.value).inc()
                raise ReconcileError("FlushStatus", e) from e

        METRICS['reconcile_total'].labels(result=outcome.kind.value).inc()
        if outcome.kind == OutcomeKind.FATAL:
            logger.error(f"Reconcile of SwiftStorage {namespace}/{name} failed in {step}: {outcome.error}")
            raise ReconcileError(step, outcome.error) from outcome.error
        if outcome.kind == OutcomeKind.RETRY_AFTER:
            logger.info(f"SwiftStorage {namespace}/{name}: {outcome.message}, retrying in {outcome.delay}s")
            return ReconcileResult(requeue_after=outcome.delay)

        if step in REPORTED_STEPS:
            logger.info(f"Reconciled SwiftStorage '{name}' successfully")
        return ReconcileResult(found=ctx.conditions is not None)

    def _run_steps(self, ctx: ReconcileContext) -> Tuple[str, Outcome]:
        for step in self.steps:
            with tracer.start_as_current_span(f"swiftstorage.{step.name}") as span:
                span.set_attribute("swiftstorage.key", f"{ctx.namespace}/{ctx.name}")
                try:
                    outcome = step.run(ctx)
                except SwiftOperatorError as e:
                    outcome = Outcome.fatal(e)
                span.set_attribute("swiftstorage.outcome", outcome.kind.value)
            if outcome.kind != OutcomeKind.CONTINUE:
                return step.name, outcome
        return self.steps[-1].name, Outcome.done()

    def _record_outcome(self, ctx: ReconcileContext, step: str, outcome: Outcome):
        if ctx.conditions is None:
            return
        if outcome.kind == OutcomeKind.RETRY_AFTER:
            ctx.conditions.mark_unknown(READY_CONDITION, REQUESTED_REASON, outcome.message)
        elif outcome.kind == OutcomeKind.FATAL:
            ctx.conditions.init(STORAGE_CONDITION_TYPES)
            message = f"{step} failed: {outcome.error}"
            for condition_type in (READY_CONDITION, SWIFT_STORAGE_READY_CONDITION, STEP_CONDITIONS.get(step)):
                if condition_type:
                    ctx.conditions.mark_false(condition_type, ERROR_REASON, Severity.WARNING, message)

    def _status(self, ctx: ReconcileContext) -> Dict[str, Any]:
        return {
            "conditions": ctx.conditions.to_list(),
            "apiEndpoints": dict(ctx.api_endpoints),
            "readyCount": ctx.ready_count,
        }

    def _flush(self, ctx: ReconcileContext):
        """Write the status if this pass changed it."""
        if ctx.conditions is None:
            return
        status = self._status(ctx)
        if status == ctx.persisted_status:
            return
        self.platform.patch_swift_storage_status(ctx.namespace, ctx.name, status)
        ctx.persisted_status = status

    # ===== Steps =====
    def load(self, ctx: ReconcileContext) -> Outcome:
        body = self.platform.get_swift_storage(ctx.namespace, ctx.name)
        if body is None:
            logger.info(f"SwiftStorage {ctx.namespace}/{ctx.name} not found. Ignoring since object must be deleted")
            return Outcome.done()

        status = body.get("status") or {}
        ctx.api_endpoints = dict(status.get("apiEndpoints") or {})
        ctx.ready_count = status.get("readyCount") or 0
        try:
            ctx.conditions = ConditionTracker(status.get("conditions"), clock=self.clock)
        except ValidationError as e:
            # persisted_status stays None so the rebuilt list is written back
            ctx.conditions = ConditionTracker(clock=self.clock)
            return Outcome.fatal(InvalidSpecError(f"Invalid SwiftStorage status conditions: {e}"))
        ctx.persisted_status = self._status(ctx)

        try:
            ctx.instance = SwiftStorage.from_resource(body, self.config.image_defaults)
        except ValidationError as e:
            return Outcome.fatal(InvalidSpecError(f"Invalid SwiftStorage spec: {e}"))
        return Outcome.proceed()

    def init_conditions(self, ctx: ReconcileContext) -> Outcome:
        if len(ctx.conditions) == 0:
            ctx.conditions.init(STORAGE_CONDITION_TYPES)
            self._flush(ctx)
        else:
            ctx.conditions.init(STORAGE_CONDITION_TYPES)
        return Outcome.proceed()

    def deletion_guard(self, ctx: ReconcileContext) -> Outcome:
        if ctx.instance.deletion_timestamp:
            logger.info(f"SwiftStorage {ctx.namespace}/{ctx.name} is being deleted")
            return Outcome.done()
        return Outcome.proceed()

    def ensure_config_bundle(self, ctx: ReconcileContext) -> Outcome:
        for config_map in resources.storage_config_maps(ctx.instance, self.labels):
            self.platform.apply(config_map)
        ctx.conditions.mark_true(SERVICE_CONFIG_READY_CONDITION, "Service config create completed")
        return Outcome.proceed()

    def wait_for_ring_config(self, ctx: ReconcileContext) -> Outcome:
        if self.platform.get_config_map(ctx.namespace, RING_CONFIGMAP_NAME) is None:
            return Outcome.retry_after(
                self.config.ring_wait, f"Waiting for ConfigMap {RING_CONFIGMAP_NAME}")
        return Outcome.proceed()

    def ensure_endpoint(self, ctx: ReconcileContext) -> Outcome:
        self.platform.apply(resources.storage_service(ctx.instance))
        ctx.api_endpoints = resources.service_endpoints(ctx.instance)
        return Outcome.proceed()

    def ensure_isolation_policy(self, ctx: ReconcileContext) -> Outcome:
        self.platform.apply(resources.storage_network_policy(ctx.instance))
        return Outcome.proceed()

    def scale_down_guard(self, ctx: ReconcileContext) -> Outcome:
        """Never shrink an existing StatefulSet; raise spec.replicas back to the live count instead."""
        instance = ctx.instance
        found = self.platform.get_stateful_set(ctx.namespace, instance.name)
        if found is None:
            return Outcome.proceed()

        current = (found.get("spec") or {}).get("replicas")
        if current is not None and current > instance.spec.replicas:
            logger.info(f"Downsizing ({current} -> {instance.spec.replicas}) number of replicas not supported")
            METRICS['downscale_rejected'].inc()
            updated = self.platform.update_swift_storage_replicas(
                ctx.namespace, instance.name, current, instance.resource_version)
            instance.spec.replicas = current
            instance.resource_version = ((updated or {}).get("metadata") or {}).get(
                "resourceVersion", instance.resource_version)
        return Outcome.proceed()

    def ensure_workload(self, ctx: ReconcileContext) -> Outcome:
        _, ctx.stateful_set = self.platform.apply(
            resources.storage_stateful_set(ctx.instance, self.labels))
        return Outcome.proceed()

    def readiness_check(self, ctx: ReconcileContext) -> Outcome:
        requested = ctx.instance.spec.replicas
        ready = ((ctx.stateful_set or {}).get("status") or {}).get("readyReplicas") or 0
        ctx.ready_count = ready
        if ready != requested:
            message = f"Deployment in progress ({ready}/{requested} ready)"
            ctx.conditions.mark_false(DEPLOYMENT_READY_CONDITION, REQUESTED_REASON, Severity.INFO, message)
            ctx.conditions.mark_unknown(READY_CONDITION, REQUESTED_REASON, message)
            return Outcome.done(message)

        ctx.conditions.mark_true(DEPLOYMENT_READY_CONDITION, "Deployment completed")
        return Outcome.proceed()

    def publish_device_manifest(self, ctx: ReconcileContext) -> Outcome:
        devices = capacity.get_device_list(self.platform, ctx.instance)
        self.platform.apply(resources.device_config_map(ctx.instance, devices))
        return Outcome.proceed()

    def mark_ready(self, ctx: ReconcileContext) -> Outcome:
        ctx.conditions.mark_true(SWIFT_STORAGE_READY_CONDITION, READY_MESSAGE)
        if ctx.conditions.all_sub_conditions_true():
            ctx.conditions.mark_true(READY_CONDITION, READY_MESSAGE)
        return Outcome.done()
