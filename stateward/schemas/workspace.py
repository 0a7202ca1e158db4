"""
Workspace schema - a named state workspace inside one phase.

Lifecycle is owned by the provisioning engine.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Workspace:
    name: str
    phase: Optional[str] = None
    current: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "phase": self.phase, "current": self.current}
