"""
DriftReport schema - per-phase outcome of a diff against the authoritative state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class DriftStatus(str, Enum):
    NO_DRIFT = "NoDrift"
    PENDING_CHANGES = "PendingChanges"
    ERROR = "Error"


@dataclass(frozen=True)
class DriftReport:
    """
    Attributes:
        phase: Phase name, None for the legacy unit
        status: Classification of the diff exit signal
        diff_text: Captured diff output (or the error message)
    """
    phase: Optional[str]
    status: DriftStatus
    diff_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "status": self.status.value,
            "drift_detected": self.status is DriftStatus.PENDING_CHANGES,
            "diff_text": self.diff_text,
        }
