"""
Migration Engine - moves local state into the remote backend.

Flow per invocation:
1. Pre-flight: every targeted phase must already carry a backend artifact
   (written by `stateward backend setup`).
2. Backup: unless skip_backup, snapshot every targeted phase first. A phase
   whose backup fails never reaches step 3 and its local state file is left
   untouched.
3. Re-initialize the engine against the new backend, copying existing state
   non-interactively.
4. Verify: read state back through the engine, check it decodes and is
   non-empty whenever the pre-migration state was non-empty.

Dry run stops after step 1 and returns the itemized intended actions.
Nothing is rolled back automatically; the report names the snapshot to
restore from.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from stateward.backups import MIGRATION_CATEGORY, BackupManager, BackupResult
from stateward.config import StatewardConfig
from stateward.engine import ProvisioningEngine
from stateward.errors import PrerequisiteError, StatewardError, VerificationError
from stateward.schemas import (
    Environment,
    OperationResult,
    OutcomeStatus,
    PhaseOutcome,
    PulledState,
)
from stateward.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationOptions:
    dry_run: bool = False
    force: bool = False
    skip_backup: bool = False
    timeout: Optional[float] = None


@dataclass
class MigrationResult(OperationResult):
    """OperationResult plus the backup taken before migrating."""
    dry_run: bool = False
    backup: Optional[BackupResult] = None
    report_path: Optional[Path] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["dry_run"] = self.dry_run
        if self.backup is not None:
            data["snapshot_id"] = self.backup.snapshot_id
        if self.report_path is not None:
            data["report_path"] = str(self.report_path)
        if self.warnings:
            data["warnings"] = self.warnings
        return data


class MigrationEngine:
    """
    Migrates phase state from the local backend to object storage.

    Args:
        config: stateward configuration
        engine: Provisioning engine
        backups: Backup manager used for the pre-migration snapshot
    """

    def __init__(
        self,
        config: StatewardConfig,
        engine: ProvisioningEngine,
        backups: BackupManager,
    ):
        self.config = config
        self.engine = engine
        self.backups = backups

    def _rollback_hint(self, environment: Environment, phase: Optional[str], snapshot_id: Optional[str]) -> str:
        if snapshot_id is None:
            return "no pre-migration snapshot was taken (--skip-backup); recover the local state file by hand"
        phase_flag = f" --phase={phase}" if phase else ""
        return f"stateward state restore --env={environment.name} --snapshot={snapshot_id}{phase_flag}"

    def check_backend_artifacts(self, environment: Environment, phases: Sequence[Optional[str]]) -> None:
        """
        Raises:
            PrerequisiteError: If any targeted phase has no backend artifact
        """
        missing = [
            environment.label(phase)
            for phase in phases
            if not (environment.phase_dir(phase) / self.config.backend_file).is_file()
        ]
        if missing:
            setup = f"stateward backend setup --env={environment.name}"
            if len(phases) > 1:
                setup += " --all-phases"
            elif phases[0] is not None:
                setup += f" --phase={phases[0]}"
            raise PrerequisiteError(
                f"Backend configuration ({self.config.backend_file}) not found for: {', '.join(missing)}",
                remediation=setup,
            )

    def planned_actions(self, environment: Environment, phase: Optional[str], options: MigrationOptions) -> list[str]:
        workdir = environment.phase_dir(phase)
        local_state = workdir / self.config.state_file
        actions = []
        if options.skip_backup:
            actions.append("skip pre-migration backup (--skip-backup)")
        else:
            source = local_state if local_state.is_file() else "engine read-state"
            actions.append(
                f"snapshot current state from {source} into "
                f"{self.backups.unit_root(MIGRATION_CATEGORY, environment.name, phase)}/<timestamp>"
            )
        actions.append(f"initialize engine in {workdir} with {self.config.backend_file} and copy existing state")
        actions.append("read state from the new backend and verify resource count")
        return actions

    def migrate(
        self,
        environment: Environment,
        phases: Sequence[Optional[str]],
        options: MigrationOptions = MigrationOptions(),
    ) -> MigrationResult:
        """
        Migrate every targeted phase, strictly in order.

        Raises:
            PrerequisiteError: If a backend artifact is missing (before any side effect)
        """
        self.check_backend_artifacts(environment, phases)
        result = MigrationResult(operation="migrate", environment=environment.name, dry_run=options.dry_run)

        if options.dry_run:
            for phase in phases:
                actions = self.planned_actions(environment, phase, options)
                for step, action in enumerate(actions, 1):
                    logger.info(f"DRY RUN [{environment.label(phase)}] {step}. {action}", extra={"phase": phase})
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.PLANNED,
                    message="dry run: no changes made",
                    data={"actions": actions},
                ))
            return result

        # Pre-migration counts: from the snapshot, or read from the local file
        pre_counts: dict[Optional[str], Optional[int]] = {}
        snapshot_id = None
        ready = list(phases)

        if options.skip_backup:
            logger.warning("Skipping pre-migration backup (--skip-backup)", extra={"event": "backup_skipped"})
            for phase in phases:
                pre_counts[phase] = self._local_resource_count(environment, phase)
        else:
            backup = self.backups.backup(
                environment,
                phases,
                category=MIGRATION_CATEGORY,
                source="local",
                timeout=options.timeout,
            )
            result.backup = backup
            snapshot_id = backup.snapshot_id
            ready = []
            for outcome in backup.outcomes:
                if outcome.failed:
                    result.add(PhaseOutcome(
                        phase=outcome.phase,
                        status=OutcomeStatus.FAILED,
                        message="backup failed; migration not attempted",
                        error=outcome.error,
                        remediation=outcome.remediation or "fix the error above and re-run the migration",
                    ))
                    continue
                snapshot = backup.snapshot_for(outcome.phase)
                pre_counts[outcome.phase] = snapshot.resource_count if snapshot else None
                ready.append(outcome.phase)

        for phase in ready:
            result.add(self._migrate_phase(environment, phase, pre_counts.get(phase), snapshot_id, options, result))

        # Keep the caller-visible order identical to the requested phase order
        order = {phase: index for index, phase in enumerate(phases)}
        result.outcomes.sort(key=lambda o: order.get(o.phase, len(order)))
        result.report_path = self.write_report(environment, result, snapshot_id)
        return result

    def _local_resource_count(self, environment: Environment, phase: Optional[str]) -> Optional[int]:
        local_state = environment.phase_dir(phase) / self.config.state_file
        if not local_state.is_file():
            return None
        try:
            return PulledState.from_text(local_state.read_text()).resource_count
        except StatewardError as e:
            logger.warning(f"Could not decode local state {local_state}: {e}")
            return None

    def _migrate_phase(
        self,
        environment: Environment,
        phase: Optional[str],
        pre_count: Optional[int],
        snapshot_id: Optional[str],
        options: MigrationOptions,
        result: MigrationResult,
    ) -> PhaseOutcome:
        workdir = environment.phase_dir(phase)
        label = environment.label(phase)
        try:
            logger.info(f"Initializing {label} with remote backend", extra={"phase": phase, "event": "migrate_init"})
            self.engine.init(workdir, migrate_state=True, timeout=options.timeout)

            logger.info(f"Verifying state migration for {label}", extra={"phase": phase, "event": "migrate_verify"})
            remote_text = self.engine.pull_state(workdir, timeout=options.timeout)
            try:
                remote = PulledState.from_text(remote_text)
            except StatewardError as e:
                raise VerificationError(f"Remote state for {label} is not parseable: {e}", phase=phase)

            if pre_count and remote.is_empty:
                raise VerificationError(
                    f"Remote state for {label} is empty but the local state had {pre_count} resources",
                    phase=phase,
                )
            if pre_count is not None and remote.resource_count != pre_count:
                warning = f"{label}: remote state has {remote.resource_count} resources, local had {pre_count}"
                logger.warning(warning, extra={"phase": phase})
                result.warnings.append(warning)
        except StatewardError as e:
            logger.error(f"Migration failed for {label}: {e}", extra={"phase": phase, "event": "migrate_failed"})
            return PhaseOutcome(
                phase=phase,
                status=OutcomeStatus.FAILED,
                message="migration failed",
                error=str(e),
                remediation=self._rollback_hint(environment, phase, snapshot_id),
            )

        logger.info(
            f"Resources in remote state for {label}: {remote.resource_count}",
            extra={"phase": phase, "event": "migrate_verified", "metadata": {"resource_count": remote.resource_count}},
        )

        local_state = workdir / self.config.state_file
        if local_state.is_file() and local_state.stat().st_size > 0:
            warning = (
                f"{label}: local state file still exists ({local_state}); "
                "remove it after confirming the remote state works"
            )
            logger.warning(warning, extra={"phase": phase})
            result.warnings.append(warning)

        return PhaseOutcome(
            phase=phase,
            message=f"migrated ({remote.resource_count} resources in remote state)",
            data={
                "resource_count": remote.resource_count,
                "pre_migration_count": pre_count,
                "serial": remote.serial,
                "lineage": remote.lineage,
            },
        )

    def write_report(
        self,
        environment: Environment,
        result: MigrationResult,
        snapshot_id: Optional[str],
    ) -> Path:
        """Write a Markdown migration report next to the migration snapshots."""
        now = utcnow()
        reports_dir = self.backups.config.backups_path / MIGRATION_CATEGORY / environment.name / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)
        path = reports_dir / f"migration-report-{now.strftime('%Y%m%d-%H%M%S-%f')}.md"

        lines = [
            "# State Migration Report",
            "",
            f"**Environment:** {environment.name}",
            f"**Date:** {now.isoformat()}",
            f"**Status:** {'COMPLETED' if result.success else 'FAILED'}",
            f"**Pre-migration snapshot:** {snapshot_id or 'none (--skip-backup)'}",
            "",
            "## Phases",
            "",
            "| Phase | Status | Details |",
            "|---|---|---|",
        ]
        for outcome in result.outcomes:
            details = outcome.error or outcome.message
            lines.append(f"| {outcome.phase or '(single state)'} | {outcome.status.value} | {details} |")

        if result.warnings:
            lines += ["", "## Warnings", ""]
            lines += [f"- {w}" for w in result.warnings]

        lines += [
            "",
            "## Verification",
            "",
            "```bash",
            f"stateward state show --env={environment.name}" + (" --all-phases" if any(o.phase for o in result.outcomes) else ""),
            f"stateward state drift --env={environment.name}" + (" --all-phases" if any(o.phase for o in result.outcomes) else ""),
            "```",
            "",
            "## Rollback",
            "",
            "Rollback is manual. Restore the pre-migration snapshot per phase:",
            "",
            "```bash",
        ]
        for outcome in result.outcomes:
            lines.append(self._rollback_hint(environment, outcome.phase, snapshot_id))
        lines += ["```", ""]

        path.write_text("\n".join(lines))
        logger.info(f"Migration report generated: {path}", extra={"event": "migration_report"})
        return path
