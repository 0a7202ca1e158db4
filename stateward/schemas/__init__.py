"""
stateward.schemas - Typed records for the state lifecycle orchestrator.

Environment -> Topology -> BackendDescriptor -> StateSnapshot / DriftReport

- Environment, Topology: discovered layout of one environment (never persisted)
- BackendDescriptor: bucket/key/region/endpoint of one phase's state
- StateSnapshot: metadata of an immutable backup
- DriftReport: per-phase diff classification
- Workspace: engine workspace inside a phase
- Request: immutable CLI invocation
- PhaseOutcome, OperationResult: multi-phase results
- PulledState, ShowDocument: decoded engine output
"""

from .environment import Environment, Topology, TopologyKind
from .backend import BackendDescriptor
from .snapshot import StateSnapshot
from .drift import DriftReport, DriftStatus
from .workspace import Workspace
from .request import Request
from .result import OperationResult, OutcomeStatus, PhaseOutcome
from .state import OutputValue, PulledState, ResourceBlock, ResourceRecord, ShowDocument

__all__ = [
    # Layout
    "Environment",
    "Topology",
    "TopologyKind",
    # Backend
    "BackendDescriptor",
    # Snapshots
    "StateSnapshot",
    # Drift
    "DriftReport",
    "DriftStatus",
    # Workspaces
    "Workspace",
    # Invocation
    "Request",
    # Results
    "OperationResult",
    "OutcomeStatus",
    "PhaseOutcome",
    # Engine output
    "OutputValue",
    "PulledState",
    "ResourceBlock",
    "ResourceRecord",
    "ShowDocument",
]
