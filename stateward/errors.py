"""
Error classes for stateward.

Error taxonomy:
- ValidationError: bad environment/phase/region/format argument (no execution)
- PrerequisiteError: missing credentials or required external tool (pre-flight)
- TopologyError: ambiguous or unrecognized phase layout
- BackendError: object storage API failure
- EngineError: provisioning engine subprocess failure (carries captured output)
- OperationTimeout: engine call exceeded the caller-supplied timeout
- VerificationError: post-migration / post-restore check failed
- ConfirmationDeclined: operator declined a prompt (not a failure)

Validation and prerequisite errors are raised before any side effect and abort
the whole invocation. Everything else may be raised per phase; multi-phase
operations capture those in PhaseOutcome records and continue.
"""

from typing import Optional

# Process exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DRIFT = 2
EXIT_INTERRUPTED = 130


class StatewardError(Exception):
    """Base exception for stateward."""

    def __init__(
        self,
        message: str,
        *,
        phase: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.remediation = remediation

    def __str__(self) -> str:
        return self.message


class ValidationError(StatewardError):
    """Invalid argument: environment, phase, region, format, snapshot id."""
    pass


class PrerequisiteError(StatewardError):
    """Missing credentials or external tool. Fatal, never retried."""
    pass


class TopologyError(StatewardError):
    """Ambiguous or unrecognized environment layout."""
    pass


class BackendError(StatewardError):
    """
    Object storage API failure.

    Reported, not retried automatically. The operator re-runs backend setup.
    """
    pass


class EngineError(StatewardError):
    """
    Provisioning engine subprocess failure.

    Attributes:
        command: argv that was executed
        returncode: process exit code (None when the process never finished)
        output: captured stdout + stderr
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[list[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
        phase: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message, phase=phase, remediation=remediation)
        self.command = command or []
        self.returncode = returncode
        self.output = output


class OperationTimeout(EngineError, TimeoutError):
    """
    Engine call exceeded its timeout.

    The remote operation may still be completing; nothing is cleaned up.
    """
    pass


class VerificationError(StatewardError):
    """Post-migration or post-restore verification failed. No automatic rollback."""
    pass


class StateFormatError(StatewardError):
    """Engine state output could not be decoded."""
    pass


class ConfirmationDeclined(StatewardError):
    """Operator answered "no" at a confirmation prompt."""
    pass
