"""
Drift Detector - classifies the engine's diff exit signal per phase.

    0 -> NoDrift
    2 -> PendingChanges
    anything else (including engine failure or timeout) -> Error

Phases are checked independently; an error on one never stops the others.
"""

import logging
from typing import Optional, Sequence

from stateward.engine import PLAN_CHANGES, PLAN_NO_CHANGES, ProvisioningEngine
from stateward.errors import EXIT_DRIFT, EXIT_ERROR, EXIT_OK, StatewardError
from stateward.schemas import DriftReport, DriftStatus, Environment

logger = logging.getLogger(__name__)


def classify(returncode: int) -> DriftStatus:
    if returncode == PLAN_NO_CHANGES:
        return DriftStatus.NO_DRIFT
    if returncode == PLAN_CHANGES:
        return DriftStatus.PENDING_CHANGES
    return DriftStatus.ERROR


def exit_code_for(reports: Sequence[DriftReport]) -> int:
    """Any Error -> 1, else any PendingChanges -> 2, else 0."""
    statuses = {r.status for r in reports}
    if DriftStatus.ERROR in statuses:
        return EXIT_ERROR
    if DriftStatus.PENDING_CHANGES in statuses:
        return EXIT_DRIFT
    return EXIT_OK


class DriftDetector:
    """Runs the engine diff for each targeted phase."""

    def __init__(self, engine: ProvisioningEngine):
        self.engine = engine

    def check_phase(
        self,
        environment: Environment,
        phase: Optional[str],
        timeout: Optional[float] = None,
    ) -> DriftReport:
        workdir = environment.phase_dir(phase)
        label = environment.label(phase)
        try:
            self.engine.ensure_initialized(workdir, timeout=timeout)
            result = self.engine.plan(workdir, timeout=timeout)
        except StatewardError as e:
            logger.error(f"Drift check failed for {label}: {e}", extra={"phase": phase, "event": "drift_error"})
            return DriftReport(phase=phase, status=DriftStatus.ERROR, diff_text=str(e))

        status = classify(result.returncode)
        logger.info(
            f"Drift check for {label}: {status.value}",
            extra={"phase": phase, "event": "drift_checked", "metadata": {"exit_code": result.returncode}},
        )
        return DriftReport(phase=phase, status=status, diff_text=result.output)

    def check(
        self,
        environment: Environment,
        phases: Sequence[Optional[str]],
        timeout: Optional[float] = None,
    ) -> list[DriftReport]:
        return [self.check_phase(environment, phase, timeout) for phase in phases]
