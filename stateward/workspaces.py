"""
Workspace Manager - pass-through to the engine's workspace commands, per phase.
"""

import logging
from typing import Optional, Sequence

from stateward.engine import ProvisioningEngine
from stateward.errors import StatewardError, ValidationError
from stateward.schemas import Environment, OperationResult, OutcomeStatus, PhaseOutcome, Workspace
from stateward.topology import validate_name

logger = logging.getLogger(__name__)

ACTIONS = ("list", "new", "select", "delete")


class WorkspaceManager:
    def __init__(self, engine: ProvisioningEngine):
        self.engine = engine

    def list(self, environment: Environment, phase: Optional[str]) -> list[Workspace]:
        workdir = environment.phase_dir(phase)
        self.engine.ensure_initialized(workdir)
        names, current = self.engine.workspace_list(workdir)
        return [Workspace(name=name, phase=phase, current=name == current) for name in names]

    def new(self, environment: Environment, phase: Optional[str], name: str) -> None:
        workdir = environment.phase_dir(phase)
        self.engine.ensure_initialized(workdir)
        self.engine.workspace_new(workdir, name)

    def select(self, environment: Environment, phase: Optional[str], name: str) -> None:
        workdir = environment.phase_dir(phase)
        self.engine.ensure_initialized(workdir)
        self.engine.workspace_select(workdir, name)

    def delete(self, environment: Environment, phase: Optional[str], name: str) -> None:
        if name == "default":
            raise ValidationError("The default workspace cannot be deleted")
        workdir = environment.phase_dir(phase)
        self.engine.ensure_initialized(workdir)
        self.engine.workspace_delete(workdir, name)

    def run(
        self,
        action: str,
        environment: Environment,
        phases: Sequence[Optional[str]],
        name: Optional[str] = None,
    ) -> OperationResult:
        """
        Apply ``action`` to every targeted phase.

        Raises:
            ValidationError: Unknown action, or a missing/invalid workspace name
                             for new/select/delete (before any engine call)
        """
        if action not in ACTIONS:
            raise ValidationError(f"Invalid workspace action: {action}. Must be one of: {', '.join(ACTIONS)}")
        if action != "list":
            if not name:
                raise ValidationError(f"--workspace is required for 'workspace {action}'")
            validate_name(name, "workspace")

        result = OperationResult(operation=f"workspace-{action}", environment=environment.name)
        for phase in phases:
            label = environment.label(phase)
            try:
                if action == "list":
                    workspaces = self.list(environment, phase)
                    result.add(PhaseOutcome(
                        phase=phase,
                        message=", ".join(f"*{w.name}" if w.current else w.name for w in workspaces),
                        data={"workspaces": [w.to_dict() for w in workspaces]},
                    ))
                    continue
                getattr(self, action)(environment, phase, name)
            except StatewardError as e:
                logger.error(f"Workspace {action} failed for {label}: {e}", extra={"phase": phase})
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.FAILED,
                    message=f"workspace {action} failed",
                    error=str(e),
                    remediation=e.remediation,
                ))
                continue
            logger.info(f"Workspace {action} {name} for {label}", extra={"phase": phase, "event": f"workspace_{action}"})
            result.add(PhaseOutcome(phase=phase, message=f"workspace {name}: {action} done", data={"workspace": name}))
        return result
