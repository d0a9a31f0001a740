"""Exceptions raised by the SwiftStorage operator."""

from typing import Optional


class SwiftOperatorError(Exception):
    """Base class for operator failures"""


class PlatformError(SwiftOperatorError):
    """A Kubernetes API read or write failed"""
    def __init__(self, operation: str, reason: str, status: Optional[int] = None):
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason
        self.status = status

    @property
    def transient(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class ConflictError(PlatformError):
    """Optimistic concurrency check failed (HTTP 409)"""


class InvalidSpecError(SwiftOperatorError):
    """The SwiftStorage spec cannot be turned into child resources"""


class CapacityDiscoveryError(SwiftOperatorError):
    def __init__(self, claim: str, reason: str):
        super().__init__(f"Cannot read capacity of claim {claim}: {reason}")
        self.claim = claim
        self.reason = reason


class ReconcileError(SwiftOperatorError):
    """A reconcile step failed; the pass must be retried with backoff"""
    def __init__(self, step: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
