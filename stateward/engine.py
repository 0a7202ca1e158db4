"""
Provisioning engine adapter.

ProvisioningEngine is the interface stateward orchestrates (initialize
backend, read state, push state, diff, show, workspaces). TerraformEngine
implements it by shelling out to the terraform CLI:

- every call gets an explicit working directory (never os.chdir)
- every call gets an explicit environment mapping built once by the caller
- stdout/stderr are captured; non-zero exits raise EngineError with the output
- a timeout raises OperationTimeout; the remote side is left alone
"""

import json
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from stateward.errors import EngineError, OperationTimeout, PrerequisiteError

logger = logging.getLogger(__name__)

# Exit codes of `plan -detailed-exitcode`
PLAN_NO_CHANGES = 0
PLAN_ERROR = 1
PLAN_CHANGES = 2


@dataclass(frozen=True)
class EngineResult:
    """Captured result of one engine invocation."""
    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def parse_version(version: str) -> tuple[int, ...]:
    """Parse "1.6.3" (or "v1.6.3-beta") into a comparable tuple."""
    core = version.strip().lstrip("v").split("-")[0]
    parts = []
    for piece in core.split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class ProvisioningEngine(ABC):
    """
    Operations stateward needs from the provisioning engine.

    Implementations own the state format; callers only pass directories and
    file paths and receive text.
    """

    @abstractmethod
    def preflight(self) -> None:
        """Check the engine is installed and recent enough. Raises PrerequisiteError."""
        pass

    @abstractmethod
    def version(self) -> str:
        pass

    @abstractmethod
    def is_initialized(self, workdir: Path) -> bool:
        pass

    @abstractmethod
    def init(self, workdir: Path, *, migrate_state: bool = False, timeout: Optional[float] = None) -> EngineResult:
        """Initialize the backend; with migrate_state, copy existing state non-interactively."""
        pass

    @abstractmethod
    def pull_state(self, workdir: Path, *, timeout: Optional[float] = None) -> str:
        """Return the raw state artifact ("" when none is stored)."""
        pass

    @abstractmethod
    def push_state(self, workdir: Path, state_file: Path, *, timeout: Optional[float] = None) -> EngineResult:
        pass

    @abstractmethod
    def plan(self, workdir: Path, *, timeout: Optional[float] = None) -> EngineResult:
        """Run the diff; returns the result without raising on exit code 2."""
        pass

    @abstractmethod
    def show_json(self, workdir: Path, *, timeout: Optional[float] = None) -> str:
        pass

    @abstractmethod
    def workspace_list(self, workdir: Path) -> tuple[list[str], str]:
        """Return (workspace names, current workspace)."""
        pass

    @abstractmethod
    def workspace_new(self, workdir: Path, name: str) -> EngineResult:
        pass

    @abstractmethod
    def workspace_select(self, workdir: Path, name: str) -> EngineResult:
        pass

    @abstractmethod
    def workspace_delete(self, workdir: Path, name: str) -> EngineResult:
        pass

    def ensure_initialized(self, workdir: Path, *, timeout: Optional[float] = None) -> None:
        """Initialize ``workdir`` unless it already has a backend configured."""
        if not self.is_initialized(workdir):
            logger.info(f"Initializing engine in {workdir}", extra={"event": "engine_init"})
            self.init(workdir, timeout=timeout)


class TerraformEngine(ProvisioningEngine):
    """
    Adapter for the terraform CLI.

    Args:
        binary: Executable name or path
        env: Complete environment for every subprocess (built once by the caller)
        min_version: Minimum supported engine version
        timeout: Default per-call timeout in seconds (None = wait forever)
        workspace: Workspace exported as TF_WORKSPACE for state/plan/show calls
    """

    def __init__(
        self,
        binary: str = "terraform",
        env: Optional[Mapping[str, str]] = None,
        min_version: str = "1.6.0",
        timeout: Optional[float] = None,
        workspace: Optional[str] = None,
    ):
        self.binary = binary
        self.env = dict(env or {})
        self.env.setdefault("TF_IN_AUTOMATION", "1")
        self.env.setdefault("TF_INPUT", "0")
        self.min_version = min_version
        self.timeout = timeout
        self.workspace = workspace
        self._version: Optional[str] = None

    def _environment(self, with_workspace: bool = True) -> dict[str, str]:
        env = dict(self.env)
        env.pop("TF_WORKSPACE", None)
        if with_workspace and self.workspace and self.workspace != "default":
            env["TF_WORKSPACE"] = self.workspace
        return env

    def run(
        self,
        args: Sequence[str],
        workdir: Optional[Path] = None,
        *,
        check: bool = True,
        timeout: Optional[float] = None,
        with_workspace: bool = True,
    ) -> EngineResult:
        """
        Run one engine command.

        Raises:
            PrerequisiteError: If the binary cannot be executed
            OperationTimeout: If the call exceeds the timeout
            EngineError: If check is set and the command exits non-zero
        """
        command = [self.binary, *args]
        effective_timeout = timeout if timeout is not None else self.timeout
        logger.debug(f"Executing: {' '.join(command)} (cwd={workdir})")

        try:
            completed = subprocess.run(
                command,
                cwd=str(workdir) if workdir is not None else None,
                env=self._environment(with_workspace),
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                check=False,  # Don't raise, we'll handle errors
            )
        except FileNotFoundError:
            raise PrerequisiteError(
                f"Provisioning engine not found: {self.binary}",
                remediation=f"install {self.binary} and make sure it is on PATH",
            )
        except subprocess.TimeoutExpired as e:
            output = e.stdout or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            raise OperationTimeout(
                f"'{' '.join(command)}' timed out after {effective_timeout}s; "
                "the remote operation may still be completing",
                command=command,
                output=output,
            )

        result = EngineResult(
            command=tuple(command),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

        if check and result.returncode != 0:
            error_msg = f"'{' '.join(command)}' failed with exit code {result.returncode}"
            if result.stderr:
                error_msg += f": {result.stderr.strip()[:500]}"
            logger.error(
                error_msg,
                extra={
                    "event": "engine_error",
                    "metadata": {"exit_code": result.returncode, "cwd": str(workdir)},
                },
            )
            raise EngineError(
                error_msg,
                command=command,
                returncode=result.returncode,
                output=result.output,
            )
        return result

    def preflight(self) -> None:
        if shutil.which(self.binary, path=self.env.get("PATH")) is None:
            raise PrerequisiteError(
                f"Missing required tool: {self.binary}",
                remediation=f"install {self.binary} >= {self.min_version}",
            )
        current = self.version()
        if parse_version(current) < parse_version(self.min_version):
            raise PrerequisiteError(
                f"{self.binary} version {current} is not supported. Minimum required: {self.min_version}",
                remediation=f"upgrade {self.binary} to {self.min_version} or later",
            )

    def version(self) -> str:
        if self._version is None:
            result = self.run(["version", "-json"], with_workspace=False)
            try:
                self._version = json.loads(result.stdout)["terraform_version"]
            except (json.JSONDecodeError, KeyError, TypeError):
                first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
                self._version = first_line.replace("Terraform", "").strip() or "unknown"
        return self._version

    def is_initialized(self, workdir: Path) -> bool:
        return (Path(workdir) / ".terraform" / "terraform.tfstate").is_file()

    def init(self, workdir: Path, *, migrate_state: bool = False, timeout: Optional[float] = None) -> EngineResult:
        args = ["init", "-input=false", "-no-color"]
        if migrate_state:
            args += ["-migrate-state", "-force-copy"]
        return self.run(args, workdir, timeout=timeout, with_workspace=False)

    def pull_state(self, workdir: Path, *, timeout: Optional[float] = None) -> str:
        return self.run(["state", "pull"], workdir, timeout=timeout).stdout

    def push_state(self, workdir: Path, state_file: Path, *, timeout: Optional[float] = None) -> EngineResult:
        # -force: a restored snapshot usually has an older serial than the live state
        return self.run(["state", "push", "-force", str(state_file)], workdir, timeout=timeout)

    def plan(self, workdir: Path, *, timeout: Optional[float] = None) -> EngineResult:
        return self.run(
            ["plan", "-detailed-exitcode", "-input=false", "-no-color", "-lock=false"],
            workdir,
            check=False,
            timeout=timeout,
        )

    def show_json(self, workdir: Path, *, timeout: Optional[float] = None) -> str:
        return self.run(["show", "-json", "-no-color"], workdir, timeout=timeout).stdout

    def workspace_list(self, workdir: Path) -> tuple[list[str], str]:
        result = self.run(["workspace", "list"], workdir, with_workspace=False)
        names = []
        current = "default"
        for line in result.stdout.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("*"):
                stripped = stripped.lstrip("*").strip()
                current = stripped
            names.append(stripped)
        return names, current

    def workspace_new(self, workdir: Path, name: str) -> EngineResult:
        return self.run(["workspace", "new", name], workdir, with_workspace=False)

    def workspace_select(self, workdir: Path, name: str) -> EngineResult:
        return self.run(["workspace", "select", name], workdir, with_workspace=False)

    def workspace_delete(self, workdir: Path, name: str) -> EngineResult:
        return self.run(["workspace", "delete", name], workdir, with_workspace=False)
