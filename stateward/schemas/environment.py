"""
Environment and Topology schemas.

An Environment is a directory under the environments root. Its Topology is
derived from the directory contents on every invocation and never persisted.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class TopologyKind(str, Enum):
    """Structural classification of an environment."""
    LEGACY = "legacy"
    PHASED = "phased"


@dataclass(frozen=True)
class Topology:
    """
    Topology of one environment.

    Attributes:
        kind: LEGACY (single state) or PHASED
        phases: Phase names in processing order (empty for LEGACY)
    """
    kind: TopologyKind
    phases: tuple[str, ...] = ()

    @classmethod
    def legacy(cls) -> "Topology":
        return cls(kind=TopologyKind.LEGACY)

    @classmethod
    def phased(cls, phases: tuple[str, ...]) -> "Topology":
        return cls(kind=TopologyKind.PHASED, phases=tuple(phases))

    @property
    def is_phased(self) -> bool:
        return self.kind is TopologyKind.PHASED

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "phases": list(self.phases)}


@dataclass(frozen=True)
class Environment:
    """
    A discovered environment.

    Attributes:
        name: Environment name (directory name, e.g. "dev")
        root_path: Absolute path of the environment directory
    """
    name: str
    root_path: Path

    def phase_dir(self, phase: Optional[str]) -> Path:
        """Working directory for a phase; the environment root for the legacy unit."""
        if phase is None:
            return self.root_path
        return self.root_path / phase

    def label(self, phase: Optional[str]) -> str:
        """Human-readable unit name used in messages."""
        return f"{self.name}/{phase}" if phase else self.name
