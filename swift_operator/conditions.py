"""
SwiftStorage status conditions
Ordered, type-unique condition list with mark unknown/true/false transitions
and aggregate readiness. The tracker is handed to every reconcile step and
written back to the resource status once per pass.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ===== Condition Types =====
READY_CONDITION = "Ready"
SWIFT_STORAGE_READY_CONDITION = "SwiftStorageReady"
SERVICE_CONFIG_READY_CONDITION = "ServiceConfigReady"
DEPLOYMENT_READY_CONDITION = "DeploymentReady"

STORAGE_CONDITION_TYPES = (
    READY_CONDITION,
    SWIFT_STORAGE_READY_CONDITION,
    SERVICE_CONFIG_READY_CONDITION,
    DEPLOYMENT_READY_CONDITION,
)

# ===== Reasons & Messages =====
INIT_REASON = "Init"
READY_REASON = "Ready"
REQUESTED_REASON = "Requested"
ERROR_REASON = "Error"

READY_INIT_MESSAGE = "Setup started"
READY_MESSAGE = "Setup complete"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    NONE = ""
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Condition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    severity: Severity = Severity.NONE
    last_transition_time: str = Field(default="", alias="lastTransitionTime")

    def to_dict(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True, mode="json")


class ConditionTracker:
    """Condition list of one SwiftStorage.

    Entries keep the order in which their type was first added, so the
    primary ``Ready`` condition stays at the head of the list. Types are
    never removed; ``lastTransitionTime`` only moves when ``status`` changes.
    """

    def __init__(self, conditions: Optional[Iterable[dict]] = None,
                 clock: Optional[Callable[[], str]] = None):
        self._clock = clock or utc_timestamp
        self._conditions: Dict[str, Condition] = {}
        for raw in conditions or []:
            condition = Condition.model_validate(raw)
            self._conditions.setdefault(condition.type, condition)

    def __len__(self) -> int:
        return len(self._conditions)

    def __contains__(self, condition_type: str) -> bool:
        return condition_type in self._conditions

    def get(self, condition_type: str) -> Optional[Condition]:
        return self._conditions.get(condition_type)

    def init(self, condition_types: Iterable[str]) -> bool:
        """Add every missing type in Unknown state. Returns True if any was added."""
        added = False
        for condition_type in condition_types:
            if condition_type not in self._conditions:
                self._set(condition_type, ConditionStatus.UNKNOWN, INIT_REASON,
                          Severity.NONE, READY_INIT_MESSAGE)
                added = True
        return added

    def mark_true(self, condition_type: str, message: str, reason: str = READY_REASON):
        self._set(condition_type, ConditionStatus.TRUE, reason, Severity.NONE, message)

    def mark_false(self, condition_type: str, reason: str, severity: Severity, message: str):
        self._set(condition_type, ConditionStatus.FALSE, reason, severity, message)

    def mark_unknown(self, condition_type: str, reason: str, message: str):
        self._set(condition_type, ConditionStatus.UNKNOWN, reason, Severity.NONE, message)

    def is_true(self, condition_type: str) -> bool:
        condition = self._conditions.get(condition_type)
        return condition is not None and condition.status == ConditionStatus.TRUE

    def is_ready(self) -> bool:
        return self.is_true(READY_CONDITION)

    def all_sub_conditions_true(self) -> bool:
        return all(
            c.status == ConditionStatus.TRUE
            for t, c in self._conditions.items() if t != READY_CONDITION
        )

    def to_list(self) -> List[Dict[str, str]]:
        return [c.to_dict() for c in self._conditions.values()]

    def _set(self, condition_type: str, status: ConditionStatus, reason: str,
             severity: Severity, message: str):
        existing = self._conditions.get(condition_type)
        if existing is not None and (
            existing.status, existing.reason, existing.severity, existing.message
        ) == (status, reason, severity, message):
            return

        if existing is None or existing.status != status:
            transition_time = self._clock()
        else:
            transition_time = existing.last_transition_time

        self._conditions[condition_type] = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            severity=severity,
            last_transition_time=transition_time,
        )
