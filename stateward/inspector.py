"""
State Inspector - read-only views of a phase's state.

- show:    summary (resource count, counts by type, providers, outputs)
- list:    flat resource address listing
- inspect: full detail (resources with values, outputs, serial, lineage)

Sensitive output values are always masked.
"""

import logging
from typing import Any, Optional, Sequence

from stateward.engine import ProvisioningEngine
from stateward.errors import StatewardError
from stateward.schemas import Environment, OperationResult, OutcomeStatus, PhaseOutcome, PulledState, ShowDocument

logger = logging.getLogger(__name__)

VIEWS = ("show", "list", "inspect")


class StateInspector:
    """Projects the engine's structured state output into views."""

    def __init__(self, engine: ProvisioningEngine):
        self.engine = engine

    def _document(self, environment: Environment, phase: Optional[str], timeout: Optional[float]) -> ShowDocument:
        workdir = environment.phase_dir(phase)
        self.engine.ensure_initialized(workdir, timeout=timeout)
        return ShowDocument.from_text(self.engine.show_json(workdir, timeout=timeout))

    def summary(self, environment: Environment, phase: Optional[str], timeout: Optional[float] = None) -> dict[str, Any]:
        doc = self._document(environment, phase, timeout)
        return {
            "resource_count": doc.resource_count,
            "resources_by_type": doc.resources_by_type(),
            "providers": doc.providers(),
            "outputs": [o.to_dict() for o in doc.outputs],
            "terraform_version": doc.terraform_version,
        }

    def resources(self, environment: Environment, phase: Optional[str], timeout: Optional[float] = None) -> dict[str, Any]:
        doc = self._document(environment, phase, timeout)
        return {
            "resource_count": doc.resource_count,
            "resources": [r.to_dict() for r in doc.resources],
        }

    def detail(self, environment: Environment, phase: Optional[str], timeout: Optional[float] = None) -> dict[str, Any]:
        doc = self._document(environment, phase, timeout)
        pulled = PulledState.from_text(self.engine.pull_state(environment.phase_dir(phase), timeout=timeout))
        return {
            "resource_count": doc.resource_count,
            "serial": pulled.serial,
            "lineage": pulled.lineage,
            "state_version": pulled.version,
            "terraform_version": doc.terraform_version or pulled.terraform_version,
            "outputs": [o.to_dict() for o in doc.outputs],
            "resources": [r.to_dict(include_values=True) for r in doc.resources],
        }

    def run(
        self,
        view: str,
        environment: Environment,
        phases: Sequence[Optional[str]],
        timeout: Optional[float] = None,
    ) -> OperationResult:
        """Build ``view`` for every targeted phase; one failing phase does not stop the rest."""
        builder = {"show": self.summary, "list": self.resources, "inspect": self.detail}[view]
        result = OperationResult(operation=view, environment=environment.name)
        for phase in phases:
            try:
                data = builder(environment, phase, timeout)
            except StatewardError as e:
                logger.error(
                    f"Could not read state for {environment.label(phase)}: {e}",
                    extra={"phase": phase, "event": "inspect_failed"},
                )
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.FAILED,
                    message=f"{view} failed",
                    error=str(e),
                    remediation=e.remediation,
                ))
                continue
            result.add(PhaseOutcome(
                phase=phase,
                message=f"{data['resource_count']} resources",
                data=data,
            ))
        return result
