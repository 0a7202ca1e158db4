"""
StateSnapshot schema - an immutable, timestamped copy of one phase's state.

On disk a snapshot is a directory:

    <backup_root>/<category>/<env>[/<phase>]/<timestamp>/
        terraform.tfstate
        metadata.json
        README.md

The snapshot id is "<env>-<timestamp>"; one backup call shares a single id
across all the phases it captured.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

METADATA_FILENAME = "metadata.json"
STATE_FILENAME = "terraform.tfstate"
README_FILENAME = "README.md"

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def snapshot_id_for(environment: str, timestamp: str) -> str:
    return f"{environment}-{timestamp}"


@dataclass(frozen=True)
class StateSnapshot:
    """
    Metadata record of one phase snapshot.

    Attributes:
        id: Snapshot id ("<env>-<timestamp>")
        environment: Environment name
        phase: Phase name, None for a legacy snapshot
        created_at: Creation time (UTC)
        resource_count: Resources in the captured state
        storage_path: Snapshot directory
        source_engine_version: Engine version that produced the state
        category: Backup category ("state-backups", "state-migration", "state-pre-restore")
        serial: State serial at capture time
        lineage: State lineage at capture time
        workspace: Engine workspace the state belongs to
        source: "engine" (read-state) or "local" (local state file copy)
    """
    id: str
    environment: str
    phase: Optional[str]
    created_at: datetime
    resource_count: int
    storage_path: Path
    source_engine_version: str
    category: str = "state-backups"
    serial: Optional[int] = None
    lineage: Optional[str] = None
    workspace: str = "default"
    source: str = "engine"

    @property
    def state_path(self) -> Path:
        return self.storage_path / STATE_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.storage_path / METADATA_FILENAME

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output and metadata.json."""
        return {
            "snapshot_id": self.id,
            "environment": self.environment,
            "phase": self.phase,
            "created_at": self.created_at.isoformat(),
            "resource_count": self.resource_count,
            "storage_path": str(self.storage_path),
            "engine_version": self.source_engine_version,
            "category": self.category,
            "serial": self.serial,
            "lineage": self.lineage,
            "workspace": self.workspace,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], storage_path: Optional[Path] = None) -> "StateSnapshot":
        """Deserialize from dictionary; storage_path overrides the recorded one."""
        return cls(
            id=data["snapshot_id"],
            environment=data["environment"],
            phase=data.get("phase"),
            created_at=datetime.fromisoformat(data["created_at"]),
            resource_count=int(data.get("resource_count", 0)),
            storage_path=Path(storage_path or data["storage_path"]),
            source_engine_version=data.get("engine_version", "unknown"),
            category=data.get("category", "state-backups"),
            serial=data.get("serial"),
            lineage=data.get("lineage"),
            workspace=data.get("workspace", "default"),
            source=data.get("source", "engine"),
        )
