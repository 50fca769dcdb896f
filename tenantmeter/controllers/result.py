from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation pass.

    ``requeue_after`` is the delay in seconds before the object should be
    revisited, or ``None`` when only a new notification should trigger it.
    """

    requeue_after: Optional[float] = None


DONE = ReconcileResult()
