"""
Result schemas for multi-phase operations.

Every operation that spans phases returns an OperationResult holding one
PhaseOutcome per targeted phase, in processing order. A failure on one phase
never hides the outcome of its siblings.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OutcomeStatus(str, Enum):
    OK = "ok"
    PLANNED = "planned"  # dry run
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseOutcome:
    """
    Outcome of one phase.

    Attributes:
        phase: Phase name, None for the legacy unit
        status: ok / planned / failed / skipped
        message: One-line summary
        data: Operation-specific details (counts, paths, actions)
        error: Error message when status is failed
        remediation: Command the operator can run to recover
    """
    phase: Optional[str]
    status: OutcomeStatus = OutcomeStatus.OK
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    remediation: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        result = {
            "phase": self.phase,
            "status": self.status.value,
            "message": self.message,
        }
        if self.data:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        if self.remediation:
            result["remediation"] = self.remediation
        return result


@dataclass
class OperationResult:
    """Aggregated result of one operation across phases."""
    operation: str
    environment: str
    outcomes: list[PhaseOutcome] = field(default_factory=list)

    def add(self, outcome: PhaseOutcome) -> PhaseOutcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def success(self) -> bool:
        return not any(o.failed for o in self.outcomes)

    @property
    def failed_phases(self) -> list[Optional[str]]:
        return [o.phase for o in self.outcomes if o.failed]

    def outcome_for(self, phase: Optional[str]) -> Optional[PhaseOutcome]:
        for outcome in self.outcomes:
            if outcome.phase == phase:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "environment": self.environment,
            "success": self.success,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
