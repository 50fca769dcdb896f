"""Error taxonomy shared by the store adapter and the reconcilers.

``NotFoundError``
    The target object is absent. Deletes treat it as already satisfied.
``ConflictError``
    A conditional update was rejected because the version token is stale.
    Callers re-read and retry a bounded number of times.
``InvariantViolation``
    A billing precondition failed. Never retried blindly; the pass fails
    and is re-attempted wholesale on the next invocation.
``TransientStoreError``
    The backing store could not be reached.
"""

from __future__ import annotations


class MeteringError(RuntimeError):
    """Base class for every error raised by :mod:`tenantmeter`."""


class NotFoundError(MeteringError):
    """Raised when an object does not exist in the store."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(MeteringError):
    """Raised when creating an object whose key is already taken."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(MeteringError):
    """Raised when a conditional update carries a stale version token."""


class TransientStoreError(MeteringError):
    """Raised when the store is unavailable; safe to retry later."""


class InvariantViolation(MeteringError):
    """Raised when a billing invariant would be broken by continuing."""


class NegativeCostError(InvariantViolation):
    """Raised when a billing period sums to a negative amount."""


class DuplicateBillingError(InvariantViolation):
    """Raised when a ledger deduction for a period already exists."""
