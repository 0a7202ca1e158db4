"""Tests for the Backend Provisioner."""

from unittest.mock import MagicMock

import pytest

from stateward.errors import BackendError, PrerequisiteError, ValidationError
from stateward.provisioner import ArtifactStatus, BackendProvisioner, bucket_tags, write_artifact
from stateward.schemas import OutcomeStatus
from stateward.storage import BucketReport, BucketStatus, ObjectStorage
from stateward.topology import discover_environment


@pytest.fixture
def dev(config):
    return discover_environment(config, "dev")


@pytest.fixture
def storage(fake_s3):
    return ObjectStorage(fake_s3, "fr-par")


class TestEnsure:
    """Tests for BackendProvisioner.ensure()."""

    def test_all_phases(self, config, dev, storage, fake_s3):
        result = BackendProvisioner(config, storage).ensure(dev, ["infra", "coder"], region="fr-par")

        assert result.success
        assert fake_s3.created == ["state-dev"]
        infra = (dev.root_path / "infra" / "backend.tf").read_text()
        coder = (dev.root_path / "coder" / "backend.tf").read_text()
        assert 'key    = "dev/infra/state"' in infra
        assert 'key    = "dev/coder/state"' in coder
        assert [o.data["bucket"]["status"] for o in result.outcomes] == ["created", "exists"]
        assert [o.data["artifact_status"] for o in result.outcomes] == ["created", "created"]

    def test_bucket_tags(self, config, dev, storage, fake_s3):
        BackendProvisioner(config, storage).ensure(dev, ["infra"], region="fr-par")
        tags = {t["Key"]: t["Value"] for t in fake_s3.buckets["state-dev"]["tags"]}
        assert tags == bucket_tags("dev")

    def test_idempotent(self, config, dev, storage, fake_s3):
        provisioner = BackendProvisioner(config, storage)
        provisioner.ensure(dev, ["infra", "coder"], region="fr-par")
        before = (dev.root_path / "infra" / "backend.tf").read_bytes()

        result = provisioner.ensure(dev, ["infra", "coder"], region="fr-par")

        assert result.success
        assert fake_s3.created == ["state-dev"]
        assert (dev.root_path / "infra" / "backend.tf").read_bytes() == before
        assert all(o.data["artifact_status"] == "unchanged" for o in result.outcomes)

    def test_legacy_layout(self, config, storage):
        staging = discover_environment(config, "staging")

        result = BackendProvisioner(config, storage).ensure(staging, [None], region="fr-par")

        assert result.success
        assert 'key    = "staging/state"' in (staging.root_path / "backend.tf").read_text()

    def test_dry_run_has_no_side_effects(self, config, dev):
        storage = MagicMock()
        result = BackendProvisioner(config, storage).ensure(dev, ["infra", "coder"], region="fr-par", dry_run=True)

        assert result.success
        assert all(o.status is OutcomeStatus.PLANNED for o in result.outcomes)
        assert "ensure bucket state-dev" in result.outcomes[0].data["actions"][0]
        assert storage.method_calls == []
        assert not (dev.root_path / "infra" / "backend.tf").exists()

    def test_dry_run_without_storage_client(self, config, dev):
        result = BackendProvisioner(config).ensure(dev, ["infra"], region="nl-ams", dry_run=True)
        assert result.outcomes[0].data["descriptor"]["endpoint"] == "https://s3.nl-ams.scw.cloud"

    def test_requires_storage_for_real_run(self, config, dev):
        with pytest.raises(PrerequisiteError):
            BackendProvisioner(config).ensure(dev, ["infra"], region="fr-par")

    def test_invalid_region_before_any_call(self, config, dev):
        storage = MagicMock()
        with pytest.raises(ValidationError):
            BackendProvisioner(config, storage).ensure(dev, ["infra"], region="us-east-1")
        assert storage.method_calls == []

    def test_storage_error_is_isolated_per_phase(self, config, dev):
        storage = MagicMock()
        storage.ensure_bucket.side_effect = [
            BackendError("Object storage create_bucket failed for bucket state-dev: AccessDenied"),
            BucketReport(bucket="state-dev", status=BucketStatus.EXISTS),
        ]

        result = BackendProvisioner(config, storage).ensure(dev, ["infra", "coder"], region="fr-par")

        assert not result.success
        assert result.failed_phases == ["infra"]
        infra = result.outcome_for("infra")
        assert "AccessDenied" in infra.error
        assert infra.remediation == "stateward backend setup --env=dev --phase=infra"
        assert result.outcome_for("coder").status is OutcomeStatus.OK
        assert not (dev.root_path / "infra" / "backend.tf").exists()
        assert (dev.root_path / "coder" / "backend.tf").exists()


class TestWriteArtifact:
    def test_created_updated_unchanged(self, tmp_path):
        path = tmp_path / "backend.tf"
        assert write_artifact(path, "a") is ArtifactStatus.CREATED
        assert write_artifact(path, "a") is ArtifactStatus.UNCHANGED
        assert write_artifact(path, "b") is ArtifactStatus.UPDATED
        assert path.read_text() == "b"


def test_describe_is_pure(config, dev):
    provisioner = BackendProvisioner(config)
    first = provisioner.describe(dev, ["infra", "coder"], region="fr-par")
    second = provisioner.describe(dev, ["infra", "coder"], region="fr-par")
    assert first == second
    assert [d.key for _, d in first] == ["dev/infra/state", "dev/coder/state"]
