"""
Request schema - the immutable description of one CLI invocation.

Built once from parsed arguments; every component receives what it needs
from here instead of reading flags or process state on its own.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class Request:
    """
    Attributes:
        command: Dotted command name (e.g. "state.migrate")
        environment: Environment name from --env
        phase: Single phase from --phase
        all_phases: True when --all-phases was given
        region: Region override from --region
        dry_run: Report intended actions only
        force: Skip confirmation prompts
        skip_backup: Migrate without a pre-migration snapshot
        output_format: table, json or yaml
        snapshot_id: Snapshot to restore
        workspace: Engine workspace name
        workspace_action: list, new, select or delete
        timeout: Per engine call timeout in seconds
    """
    command: str
    environment: str
    phase: Optional[str] = None
    all_phases: bool = False
    region: Optional[str] = None
    dry_run: bool = False
    force: bool = False
    skip_backup: bool = False
    output_format: str = "table"
    snapshot_id: Optional[str] = None
    workspace: Optional[str] = None
    workspace_action: Optional[str] = None
    timeout: Optional[float] = None

    def with_changes(self, **changes) -> "Request":
        return replace(self, **changes)
