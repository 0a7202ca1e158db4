"""Tests for stateward error classes.

Tests cover:
- Error hierarchy (everything is a StatewardError)
- phase / remediation attributes
- EngineError captured output
- OperationTimeout is also a builtin TimeoutError
"""

import pytest

from stateward.errors import (
    EXIT_DRIFT,
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_OK,
    BackendError,
    ConfirmationDeclined,
    EngineError,
    OperationTimeout,
    PrerequisiteError,
    StateFormatError,
    StatewardError,
    TopologyError,
    ValidationError,
    VerificationError,
)


class TestStatewardError:
    """Tests for the base error."""

    def test_has_message(self):
        error = StatewardError("my message")
        assert str(error) == "my message"
        assert error.message == "my message"

    def test_phase_and_remediation_default_to_none(self):
        error = StatewardError("boom")
        assert error.phase is None
        assert error.remediation is None

    def test_carries_phase_and_remediation(self):
        error = StatewardError("boom", phase="infra", remediation="stateward backend setup --env=dev")
        assert error.phase == "infra"
        assert error.remediation == "stateward backend setup --env=dev"


@pytest.mark.parametrize("cls", [
    ValidationError,
    PrerequisiteError,
    TopologyError,
    BackendError,
    EngineError,
    OperationTimeout,
    VerificationError,
    StateFormatError,
    ConfirmationDeclined,
])
def test_every_error_is_a_stateward_error(cls):
    """All taxonomy members can be caught as StatewardError."""
    with pytest.raises(StatewardError):
        raise cls("failure")


class TestEngineError:
    """Tests for EngineError."""

    def test_captures_command_and_output(self):
        error = EngineError(
            "init failed",
            command=["terraform", "init"],
            returncode=1,
            output="Error: backend unreachable",
        )
        assert error.command == ["terraform", "init"]
        assert error.returncode == 1
        assert "backend unreachable" in error.output

    def test_defaults(self):
        error = EngineError("failed")
        assert error.command == []
        assert error.returncode is None
        assert error.output == ""


class TestOperationTimeout:
    """OperationTimeout surfaces as a TimeoutError."""

    def test_is_timeout_error(self):
        with pytest.raises(TimeoutError):
            raise OperationTimeout("timed out", command=["terraform", "init"])

    def test_is_engine_error(self):
        assert issubclass(OperationTimeout, EngineError)


def test_exit_codes():
    assert (EXIT_OK, EXIT_ERROR, EXIT_DRIFT, EXIT_INTERRUPTED) == (0, 1, 2, 130)
