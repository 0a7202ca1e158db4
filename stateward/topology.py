"""
Topology Resolver.

Classifies an environment directory as LEGACY (a single root-level
configuration) or PHASED (one subdirectory per configured phase) and turns
the --phase / --all-phases selectors into the ordered list of units to act on.

Topology is re-detected on every call; directories can change between runs.
"""

import re
from pathlib import Path
from typing import Optional, Sequence

from stateward.config import StatewardConfig
from stateward.errors import TopologyError, ValidationError
from stateward.schemas import Environment, Topology

NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def validate_name(value: str, kind: str) -> str:
    """
    Check an environment or phase name before it reaches a path or storage key.

    Raises:
        ValidationError: On empty names, path separators, traversal, or
                         characters outside [a-z0-9_-]
    """
    if not value:
        raise ValidationError(f"{kind.capitalize()} name cannot be empty")
    if "/" in value or "\\" in value or ".." in value:
        raise ValidationError(f"{kind.capitalize()} name must not contain path separators: {value!r}")
    if not NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {kind} name {value!r}: use lowercase letters, digits, '-' and '_'"
        )
    return value


def list_environments(config: StatewardConfig) -> list[str]:
    """Names of all environment directories under the environments root."""
    root = config.environments_path
    if not root.is_dir():
        return []
    return sorted(p.name for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))


def discover_environment(config: StatewardConfig, name: str) -> Environment:
    """
    Resolve an environment name to its directory.

    Raises:
        ValidationError: If the name is invalid or no such directory exists
    """
    validate_name(name, "environment")
    root_path = config.environments_path / name
    if not root_path.is_dir():
        available = list_environments(config)
        hint = f" Available: {', '.join(available)}" if available else ""
        raise ValidationError(f"Environment directory not found: {root_path}.{hint}")
    return Environment(name=name, root_path=root_path.resolve())


def resolve_topology(
    env_root: Path,
    phases: Sequence[str],
    root_config_file: str = "main.tf",
) -> Topology:
    """
    Classify an environment layout.

    PHASED when a subdirectory exists for every configured phase; otherwise
    LEGACY when the root-level configuration file exists.

    Raises:
        TopologyError: If neither layout is recognized
    """
    env_root = Path(env_root)
    if phases and all((env_root / phase).is_dir() for phase in phases):
        return Topology.phased(tuple(phases))
    if (env_root / root_config_file).is_file():
        return Topology.legacy()

    expected = " and ".join(f"{p}/" for p in phases)
    raise TopologyError(
        f"Unknown topology for {env_root}: expected {expected} subdirectories (phased) "
        f"or {root_config_file} (legacy)"
    )


def select_phases(
    topology: Topology,
    phase: Optional[str] = None,
    all_phases: bool = False,
) -> list[Optional[str]]:
    """
    Turn phase selectors into the ordered units to process.

    Returns:
        [None] for a legacy layout, otherwise phase names in configured order

    Raises:
        TopologyError: Phase flags on a legacy layout, or no selector on a
                       phased layout
        ValidationError: Both selectors given, or an unknown phase
    """
    if not topology.is_phased:
        if phase or all_phases:
            raise TopologyError(
                "Phase selectors (--phase/--all-phases) are not valid for a legacy layout",
                remediation="re-run without --phase/--all-phases",
            )
        return [None]

    if phase and all_phases:
        raise ValidationError("--phase and --all-phases are mutually exclusive")
    if all_phases:
        return list(topology.phases)
    if not phase:
        raise TopologyError(
            f"Phase selector required: this environment is phased ({', '.join(topology.phases)})",
            remediation="pass --phase=<name> or --all-phases",
        )
    validate_name(phase, "phase")
    if phase not in topology.phases:
        raise ValidationError(
            f"Unknown phase: {phase}. Must be one of: {', '.join(topology.phases)}"
        )
    return [phase]
