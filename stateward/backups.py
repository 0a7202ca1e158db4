"""
Backup/Restore Manager.

Snapshots are written under

    <backup_root>/<category>/<env>[/<phase>]/<timestamp>/
        terraform.tfstate   state artifact, byte-for-byte as read
        metadata.json       StateSnapshot record
        README.md           restore instructions

and are never modified or deleted by stateward (retention is external).
Restore pushes a snapshot back through the engine's push-state operation,
after an explicit confirmation unless forced, and only once the live state
has itself been snapshotted under state-pre-restore.
"""

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from stateward.config import StatewardConfig
from stateward.engine import ProvisioningEngine
from stateward.errors import (
    ConfirmationDeclined,
    StatewardError,
    ValidationError,
    VerificationError,
)
from stateward.schemas import (
    Environment,
    OperationResult,
    OutcomeStatus,
    PhaseOutcome,
    PulledState,
    StateSnapshot,
)
from stateward.schemas.snapshot import (
    METADATA_FILENAME,
    README_FILENAME,
    STATE_FILENAME,
    TIMESTAMP_FORMAT,
    snapshot_id_for,
)
from stateward.utils import utcnow

logger = logging.getLogger(__name__)

BACKUP_CATEGORY = "state-backups"
MIGRATION_CATEGORY = "state-migration"
PRE_RESTORE_CATEGORY = "state-pre-restore"
CATEGORIES = (BACKUP_CATEGORY, MIGRATION_CATEGORY, PRE_RESTORE_CATEGORY)

ConfirmFn = Callable[[str], bool]


@dataclass
class BackupResult(OperationResult):
    """OperationResult plus the snapshots that were written."""
    snapshot_id: Optional[str] = None
    snapshots: list[StateSnapshot] = field(default_factory=list)

    def snapshot_for(self, phase: Optional[str]) -> Optional[StateSnapshot]:
        for snapshot in self.snapshots:
            if snapshot.phase == phase:
                return snapshot
        return None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["snapshot_id"] = self.snapshot_id
        data["snapshots"] = [s.to_dict() for s in self.snapshots]
        return data


@dataclass
class RestoreResult(OperationResult):
    """OperationResult plus the snapshot of the live state taken before pushing."""
    pre_restore: Optional[BackupResult] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.pre_restore is not None:
            data["pre_restore_snapshot_id"] = self.pre_restore.snapshot_id
        return data


def _readme(snapshot: StateSnapshot) -> str:
    phase_flag = f" --phase={snapshot.phase}" if snapshot.phase else ""
    workdir = f"environments/{snapshot.environment}" + (f"/{snapshot.phase}" if snapshot.phase else "")
    return f"""# State Backup: {snapshot.id}

**Environment:** {snapshot.environment}
**Phase:** {snapshot.phase or "(single state)"}
**Date:** {snapshot.created_at.isoformat()}
**Engine Version:** {snapshot.source_engine_version}
**Resources:** {snapshot.resource_count}

## Files

- `{STATE_FILENAME}` - Complete state backup
- `{METADATA_FILENAME}` - Backup metadata
- `{README_FILENAME}` - This file

## Restore Instructions

```bash
# Using stateward
stateward state restore --env={snapshot.environment} --snapshot={snapshot.id}{phase_flag}

# Or manually
cd {workdir}
terraform state push -force {snapshot.state_path}
```

## Verification

```bash
stateward state drift --env={snapshot.environment}{phase_flag or " --all-phases"}
stateward state show --env={snapshot.environment}{phase_flag or " --all-phases"}
```
"""


class BackupManager:
    """
    Creates and restores state snapshots.

    Args:
        config: stateward configuration (backup root, state file name)
        engine: Provisioning engine used to read and push state
    """

    def __init__(self, config: StatewardConfig, engine: ProvisioningEngine):
        self.config = config
        self.engine = engine

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def unit_root(self, category: str, environment: str, phase: Optional[str]) -> Path:
        root = self.config.backups_path / category / environment
        return root / phase if phase else root

    def _allocate_timestamp(self, environment: str) -> str:
        """A timestamp not used yet by any snapshot of the environment, in any category."""
        units = [None, *self.config.phases]
        base = utcnow().strftime(TIMESTAMP_FORMAT)
        candidate = base
        counter = 1
        while any(
            (self.unit_root(category, environment, unit) / candidate).exists()
            for category in CATEGORIES
            for unit in units
        ):
            counter += 1
            candidate = f"{base}-{counter:02d}"
        return candidate

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def _read_state(
        self,
        environment: Environment,
        phase: Optional[str],
        source: str,
        timeout: Optional[float],
    ) -> tuple[str, Optional[Path], str]:
        """Return (state text, local file copied or None, effective source)."""
        workdir = environment.phase_dir(phase)
        local_state = workdir / self.config.state_file
        if source == "local" and local_state.is_file():
            return local_state.read_text(), local_state, "local"
        self.engine.ensure_initialized(workdir, timeout=timeout)
        return self.engine.pull_state(workdir, timeout=timeout), None, "engine"

    def backup_phase(
        self,
        environment: Environment,
        phase: Optional[str],
        timestamp: str,
        *,
        category: str = BACKUP_CATEGORY,
        source: str = "engine",
        workspace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> StateSnapshot:
        """
        Snapshot one phase.

        Raises:
            EngineError / OperationTimeout: If the state cannot be read
            StateFormatError: If the state is not a decodable artifact
        """
        text, local_file, effective_source = self._read_state(environment, phase, source, timeout)
        state = PulledState.from_text(text)
        engine_version = self.engine.version()

        storage_path = self.unit_root(category, environment.name, phase) / timestamp
        storage_path.mkdir(parents=True, exist_ok=False)

        snapshot = StateSnapshot(
            id=snapshot_id_for(environment.name, timestamp),
            environment=environment.name,
            phase=phase,
            created_at=utcnow(),
            resource_count=state.resource_count,
            storage_path=storage_path,
            source_engine_version=engine_version,
            category=category,
            serial=state.serial,
            lineage=state.lineage,
            workspace=workspace or "default",
            source=effective_source,
        )

        if local_file is not None:
            shutil.copy2(local_file, snapshot.state_path)
        else:
            snapshot.state_path.write_text(text)
        snapshot.metadata_path.write_text(json.dumps(snapshot.to_dict(), indent=2) + "\n")
        (storage_path / README_FILENAME).write_text(_readme(snapshot))

        logger.info(
            f"Backed up {environment.label(phase)}: {snapshot.resource_count} resources -> {storage_path}",
            extra={"phase": phase, "event": "backup_created", "metadata": snapshot.to_dict()},
        )
        return snapshot

    def backup(
        self,
        environment: Environment,
        phases: Sequence[Optional[str]],
        *,
        category: str = BACKUP_CATEGORY,
        source: str = "engine",
        workspace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> BackupResult:
        """
        Snapshot every targeted phase under one snapshot id.

        A failing phase is recorded and the remaining phases are still
        backed up.
        """
        timestamp = self._allocate_timestamp(environment.name)
        result = BackupResult(
            operation="backup",
            environment=environment.name,
            snapshot_id=snapshot_id_for(environment.name, timestamp),
        )
        for phase in phases:
            try:
                snapshot = self.backup_phase(
                    environment,
                    phase,
                    timestamp,
                    category=category,
                    source=source,
                    workspace=workspace,
                    timeout=timeout,
                )
            except StatewardError as e:
                logger.error(
                    f"Backup failed for {environment.label(phase)}: {e}",
                    extra={"phase": phase, "event": "backup_failed"},
                )
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.FAILED,
                    message="backup failed",
                    error=str(e),
                    remediation=e.remediation,
                ))
                continue
            result.snapshots.append(snapshot)
            result.add(PhaseOutcome(
                phase=phase,
                message=f"snapshot {snapshot.id} ({snapshot.resource_count} resources)",
                data={
                    "snapshot_id": snapshot.id,
                    "resource_count": snapshot.resource_count,
                    "storage_path": str(snapshot.storage_path),
                },
            ))
        return result

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def parse_snapshot_id(self, environment: Environment, snapshot_id: str) -> str:
        """Return the timestamp part of ``snapshot_id``."""
        prefix = f"{environment.name}-"
        if not snapshot_id or not snapshot_id.startswith(prefix) or len(snapshot_id) == len(prefix):
            raise ValidationError(
                f"Invalid snapshot id {snapshot_id!r}: expected {prefix}<timestamp>"
            )
        timestamp = snapshot_id[len(prefix):]
        if "/" in timestamp or "\\" in timestamp or ".." in timestamp:
            raise ValidationError(f"Invalid snapshot id {snapshot_id!r}")
        return timestamp

    def _entry(self, category: str, environment: Environment, phase: Optional[str], timestamp: str) -> Optional[Path]:
        path = self.unit_root(category, environment.name, phase) / timestamp
        if (path / STATE_FILENAME).is_file() and (path / METADATA_FILENAME).is_file():
            return path
        return None

    def load_snapshot(self, path: Path) -> StateSnapshot:
        data = json.loads((path / METADATA_FILENAME).read_text())
        return StateSnapshot.from_dict(data, storage_path=path)

    def locate(
        self,
        environment: Environment,
        snapshot_id: str,
        phases: Sequence[Optional[str]],
    ) -> dict[Optional[str], StateSnapshot]:
        """
        Find the snapshot entries for every requested phase.

        Raises:
            ValidationError: If the snapshot does not exist, or lacks an entry
                             for any requested phase (partial snapshots are
                             rejected, never silently skipped)
        """
        timestamp = self.parse_snapshot_id(environment, snapshot_id)
        for category in CATEGORIES:
            entries = {
                phase: self._entry(category, environment, phase, timestamp)
                for phase in phases
            }
            if not any(entries.values()):
                continue
            missing = [phase or "(single state)" for phase, path in entries.items() if path is None]
            if missing:
                raise ValidationError(
                    f"Snapshot {snapshot_id} has no entry for phase(s): {', '.join(missing)}",
                    remediation=f"stateward state snapshots --env={environment.name}",
                )
            return {phase: self.load_snapshot(path) for phase, path in entries.items()}

        raise ValidationError(
            f"Snapshot not found: {snapshot_id}",
            remediation=f"stateward state snapshots --env={environment.name}",
        )

    def list_snapshots(self, environment: Environment) -> list[StateSnapshot]:
        """All snapshots of an environment, newest first."""
        snapshots = []
        for category in CATEGORIES:
            root = self.config.backups_path / category / environment.name
            if not root.is_dir():
                continue
            for metadata in root.rglob(METADATA_FILENAME):
                try:
                    snapshots.append(self.load_snapshot(metadata.parent))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping unreadable snapshot metadata {metadata}: {e}")
        snapshots.sort(key=lambda s: (s.created_at, s.phase or ""), reverse=True)
        return snapshots

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(
        self,
        environment: Environment,
        snapshot_id: str,
        phases: Sequence[Optional[str]],
        *,
        force: bool = False,
        confirm: Optional[ConfirmFn] = None,
        timeout: Optional[float] = None,
    ) -> RestoreResult:
        """
        Push a snapshot back as the live state of each targeted phase.

        The live state is snapshotted first (category ``state-pre-restore``);
        a phase whose pre-restore backup failed is not pushed.

        Raises:
            ValidationError: Unknown snapshot or missing phase entries (before any push)
            ConfirmationDeclined: Operator answered "no"
        """
        snapshots = self.locate(environment, snapshot_id, phases)

        if not force:
            labels = ", ".join(environment.label(p) for p in phases)
            question = f"Replace the live state of {labels} with snapshot {snapshot_id}?"
            if confirm is None or not confirm(question):
                raise ConfirmationDeclined(f"Restore of {snapshot_id} cancelled; state left unmodified")

        pre_restore = self.backup(environment, phases, category=PRE_RESTORE_CATEGORY, timeout=timeout)
        result = RestoreResult(operation="restore", environment=environment.name, pre_restore=pre_restore)

        for phase in phases:
            phase_flag = f" --phase={phase}" if phase else ""
            backed_up = pre_restore.outcome_for(phase)
            if backed_up is not None and backed_up.failed:
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.FAILED,
                    message="pre-restore backup failed; restore not attempted",
                    error=backed_up.error,
                    remediation=backed_up.remediation or "fix the error above and re-run the restore",
                ))
                continue

            snapshot = snapshots[phase]
            workdir = environment.phase_dir(phase)
            try:
                self.engine.ensure_initialized(workdir, timeout=timeout)
                logger.info(
                    f"Restoring {environment.label(phase)} from {snapshot.storage_path}",
                    extra={"phase": phase, "event": "restore_start"},
                )
                self.engine.push_state(workdir, snapshot.state_path, timeout=timeout)
                restored = PulledState.from_text(self.engine.pull_state(workdir, timeout=timeout))
                if restored.resource_count != snapshot.resource_count:
                    raise VerificationError(
                        f"Restored state has {restored.resource_count} resources, "
                        f"snapshot recorded {snapshot.resource_count}",
                        phase=phase,
                    )
            except StatewardError as e:
                logger.error(
                    f"Restore failed for {environment.label(phase)}: {e}",
                    extra={"phase": phase, "event": "restore_failed"},
                )
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.FAILED,
                    message="restore failed",
                    error=str(e),
                    remediation=e.remediation or (
                        f"stateward state restore --env={environment.name} --snapshot={snapshot_id}{phase_flag}"
                        f" (state before this restore: {pre_restore.snapshot_id})"
                    ),
                ))
                continue

            result.add(PhaseOutcome(
                phase=phase,
                message=f"restored {snapshot_id} ({restored.resource_count} resources)",
                data={
                    "snapshot_id": snapshot_id,
                    "resource_count": restored.resource_count,
                    "pre_restore_snapshot_id": pre_restore.snapshot_id,
                },
            ))
        return result
