"""Tests for the Migration Engine."""

import pytest

from stateward.backups import MIGRATION_CATEGORY, BackupManager
from stateward.errors import EngineError, PrerequisiteError
from stateward.migration import MigrationEngine, MigrationOptions
from stateward.schemas import OutcomeStatus
from stateward.topology import discover_environment

from conftest import state_json


def prepare(environment, phase, resources=None):
    """Write backend.tf (and optionally a local state file) into a phase directory."""
    workdir = environment.phase_dir(phase)
    (workdir / "backend.tf").write_text('terraform {\n  backend "s3" {}\n}\n')
    if resources is not None:
        (workdir / "terraform.tfstate").write_text(state_json(resources))
    return workdir


@pytest.fixture
def dev(config):
    return discover_environment(config, "dev")


@pytest.fixture
def migrator(config, engine):
    return MigrationEngine(config, engine, BackupManager(config, engine))


class TestMigrate:
    """Tests for MigrationEngine.migrate()."""

    def test_all_phases(self, migrator, dev, engine, config):
        prepare(dev, "infra", resources=3)
        prepare(dev, "coder", resources=2)

        result = migrator.migrate(dev, ["infra", "coder"])

        assert result.success
        assert [o.phase for o in result.outcomes] == ["infra", "coder"]
        assert result.outcome_for("infra").data["resource_count"] == 3
        assert result.outcome_for("coder").data["resource_count"] == 2
        assert engine.operations("init") == [dev.phase_dir("infra"), dev.phase_dir("coder")]
        assert engine.remote[dev.phase_dir("infra")] == (dev.phase_dir("infra") / "terraform.tfstate").read_text()
        # Pre-migration snapshot in the migration category
        snapshot = result.backup.snapshot_for("infra")
        assert snapshot.category == MIGRATION_CATEGORY
        assert snapshot.storage_path.is_relative_to(config.backups_path / MIGRATION_CATEGORY / "dev" / "infra")

    def test_backup_precedes_init(self, migrator, dev, engine):
        prepare(dev, "infra", resources=1)
        migrator.migrate(dev, ["infra"])
        ops = [op for op, _ in engine.calls]
        # Local state is copied without engine calls; init is the first call
        assert ops[0] == "init"
        assert (dev.root_path.parent.parent / "backups" / MIGRATION_CATEGORY / "dev" / "infra").is_dir()

    def test_legacy_layout(self, config, engine):
        staging = discover_environment(config, "staging")
        prepare(staging, None, resources=4)
        migrator = MigrationEngine(config, engine, BackupManager(config, engine))

        result = migrator.migrate(staging, [None])

        assert result.success
        assert result.outcomes[0].phase is None
        assert engine.operations("init") == [staging.root_path]

    def test_missing_backend_artifact(self, migrator, dev, engine):
        prepare(dev, "infra", resources=1)

        with pytest.raises(PrerequisiteError, match="dev/coder") as exc_info:
            migrator.migrate(dev, ["infra", "coder"])

        assert exc_info.value.remediation == "stateward backend setup --env=dev --all-phases"
        assert engine.calls == []

    def test_dry_run(self, migrator, dev, engine, config):
        prepare(dev, "infra", resources=1)

        result = migrator.migrate(dev, ["infra"], MigrationOptions(dry_run=True))

        assert result.success
        outcome = result.outcomes[0]
        assert outcome.status is OutcomeStatus.PLANNED
        assert len(outcome.data["actions"]) == 3
        assert "snapshot current state" in outcome.data["actions"][0]
        assert engine.calls == []
        assert not config.backups_path.exists()

    def test_backup_failure_leaves_local_state_and_skips_init(self, migrator, dev, engine):
        infra = prepare(dev, "infra")
        (infra / "terraform.tfstate").write_text("{corrupt")
        prepare(dev, "coder", resources=2)

        result = migrator.migrate(dev, ["infra", "coder"])

        assert not result.success
        assert result.failed_phases == ["infra"]
        assert "backup failed" in result.outcome_for("infra").message
        assert (infra / "terraform.tfstate").read_text() == "{corrupt"
        assert dev.phase_dir("infra") not in engine.operations("init")
        assert result.outcome_for("coder").status is OutcomeStatus.OK

    def test_skip_backup(self, migrator, dev, engine, config):
        prepare(dev, "infra", resources=2)

        result = migrator.migrate(dev, ["infra"], MigrationOptions(skip_backup=True))

        assert result.success
        assert result.backup is None
        assert result.outcome_for("infra").data["pre_migration_count"] == 2
        assert not (config.backups_path / MIGRATION_CATEGORY / "dev" / "infra").exists()

    def test_empty_remote_after_nonempty_local_fails_verification(self, migrator, dev, engine):
        prepare(dev, "infra", resources=3)
        # Remote already holds an empty state; init will not copy over it
        engine.remote[dev.phase_dir("infra")] = state_json(0)

        result = migrator.migrate(dev, ["infra"])

        outcome = result.outcome_for("infra")
        assert outcome.failed
        assert "empty" in outcome.error
        assert outcome.remediation == (
            f"stateward state restore --env=dev --snapshot={result.backup.snapshot_id} --phase=infra"
        )

    def test_init_failure_names_snapshot(self, migrator, dev, engine):
        prepare(dev, "infra", resources=1)
        prepare(dev, "coder", resources=1)
        engine.fail[("init", dev.phase_dir("infra"))] = EngineError("Error: Failed to get existing workspaces")

        result = migrator.migrate(dev, ["infra", "coder"])

        infra = result.outcome_for("infra")
        assert infra.failed
        assert result.backup.snapshot_id in infra.remediation
        assert result.outcome_for("coder").status is OutcomeStatus.OK

    def test_rerun_is_idempotent(self, migrator, dev, engine):
        workdir = prepare(dev, "infra", resources=2)
        migrator.migrate(dev, ["infra"])
        (workdir / "terraform.tfstate").unlink()

        result = migrator.migrate(dev, ["infra"])

        assert result.success
        # Second pre-migration snapshot came from the remote state
        assert result.backup.snapshot_for("infra").source == "engine"
        assert result.outcome_for("infra").data["resource_count"] == 2

    def test_leftover_local_state_warning(self, migrator, dev):
        prepare(dev, "infra", resources=1)
        result = migrator.migrate(dev, ["infra"])
        assert any("local state file still exists" in w for w in result.warnings)


class TestReport:
    def test_report_written_with_rollback(self, migrator, dev, config):
        prepare(dev, "infra", resources=1)
        prepare(dev, "coder", resources=1)

        result = migrator.migrate(dev, ["infra", "coder"])

        report = result.report_path
        assert report.parent == config.backups_path / MIGRATION_CATEGORY / "dev" / "reports"
        text = report.read_text()
        assert "**Status:** COMPLETED" in text
        assert f"--snapshot={result.backup.snapshot_id} --phase=coder" in text
        assert "stateward state drift --env=dev --all-phases" in text

    def test_no_report_for_dry_run(self, migrator, dev):
        prepare(dev, "infra", resources=1)
        result = migrator.migrate(dev, ["infra"], MigrationOptions(dry_run=True))
        assert result.report_path is None
