"""Tests for stateward schemas.

Tests cover:
- StateSnapshot to_dict/from_dict
- PulledState and ShowDocument decoders
- OperationResult aggregation
- Request immutability
"""

import dataclasses
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from stateward.errors import StateFormatError
from stateward.schemas import (
    BackendDescriptor,
    OperationResult,
    OutcomeStatus,
    PhaseOutcome,
    PulledState,
    Request,
    ShowDocument,
    StateSnapshot,
    Topology,
)
from stateward.schemas.snapshot import snapshot_id_for

from conftest import state_json


class TestStateSnapshot:
    def make(self, **overrides):
        fields = dict(
            id="dev-20240101-120000",
            environment="dev",
            phase="infra",
            created_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
            resource_count=4,
            storage_path=Path("/backups/state-backups/dev/infra/20240101-120000"),
            source_engine_version="1.6.3",
            serial=3,
            lineage="l-1",
        )
        fields.update(overrides)
        return StateSnapshot(**fields)

    def test_to_dict(self):
        data = self.make().to_dict()
        assert data["snapshot_id"] == "dev-20240101-120000"
        assert data["created_at"] == "2024-01-01T12:00:00+00:00"
        assert data["engine_version"] == "1.6.3"
        assert data["category"] == "state-backups"

    def test_from_dict(self):
        snapshot = self.make()
        assert StateSnapshot.from_dict(json.loads(json.dumps(snapshot.to_dict()))) == snapshot

    def test_storage_path_override(self, tmp_path):
        snapshot = StateSnapshot.from_dict(self.make().to_dict(), storage_path=tmp_path)
        assert snapshot.state_path == tmp_path / "terraform.tfstate"
        assert snapshot.metadata_path == tmp_path / "metadata.json"

    def test_is_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            self.make().resource_count = 5

    def test_snapshot_id(self):
        assert snapshot_id_for("prod", "20240101-000000") == "prod-20240101-000000"


class TestPulledState:
    def test_decode(self):
        state = PulledState.from_text(state_json(2, serial=9, lineage="xyz"))
        assert state.resource_count == 2
        assert state.serial == 9
        assert state.lineage == "xyz"
        assert state.resources[0].address == "scaleway_instance_server.srv0"
        assert state.resources[0].instance_count == 1

    def test_empty_pull(self):
        assert PulledState.from_text("").is_empty
        assert PulledState.from_text("   \n") == PulledState.empty()

    def test_module_and_data_addresses(self):
        state = PulledState.from_json({
            "version": 4,
            "resources": [
                {"mode": "data", "type": "scaleway_account_project", "name": "main", "module": "module.net"},
            ],
        })
        assert state.resources[0].address == "module.net.data.scaleway_account_project.main"

    @pytest.mark.parametrize("text", ["not json", "[]", '{"resources": []}', '{"version": 4, "resources": {}}'])
    def test_rejects_malformed(self, text):
        with pytest.raises(StateFormatError):
            PulledState.from_text(text)

    @pytest.mark.parametrize("resources", [{}, 0, ""])
    def test_rejects_falsy_non_list_resources(self, resources):
        with pytest.raises(StateFormatError, match="'resources' must be a list"):
            PulledState.from_json({"version": 4, "resources": resources})

    def test_null_resources_is_empty(self):
        assert PulledState.from_json({"version": 4, "resources": None}).is_empty

    def test_rejects_malformed_output_entry(self):
        with pytest.raises(StateFormatError, match="Malformed output 'endpoint'"):
            PulledState.from_json({"version": 4, "resources": [], "outputs": {"endpoint": "https://x"}})

    def test_rejects_resource_without_type(self):
        with pytest.raises(StateFormatError, match="Malformed resource"):
            PulledState.from_json({"version": 4, "resources": [{"name": "x"}]})


class TestShowDocument:
    def test_flattens_child_modules(self):
        doc = ShowDocument.from_json({
            "format_version": "1.0",
            "terraform_version": "1.6.3",
            "values": {
                "root_module": {
                    "resources": [
                        {"address": "scaleway_vpc.main", "mode": "managed", "type": "scaleway_vpc",
                         "name": "main", "provider_name": "scaleway"},
                    ],
                    "child_modules": [
                        {
                            "address": "module.k8s",
                            "resources": [
                                {"address": "module.k8s.scaleway_k8s_cluster.this", "mode": "managed",
                                 "type": "scaleway_k8s_cluster", "name": "this", "provider_name": "scaleway"},
                                {"address": "module.k8s.scaleway_k8s_pool.default", "mode": "managed",
                                 "type": "scaleway_k8s_pool", "name": "default", "provider_name": "scaleway"},
                            ],
                        }
                    ],
                }
            },
        })

        assert doc.resource_count == 3
        assert doc.resources[1].module == "module.k8s"
        assert doc.resources_by_type() == {
            "scaleway_k8s_cluster": 1,
            "scaleway_k8s_pool": 1,
            "scaleway_vpc": 1,
        }
        assert doc.providers() == {"scaleway": 3}

    def test_no_values(self):
        doc = ShowDocument.from_text('{"format_version": "1.0"}')
        assert doc.resource_count == 0

    def test_rejects_entry_without_address(self):
        with pytest.raises(StateFormatError):
            ShowDocument.from_json({"values": {"root_module": {"resources": [{"type": "x"}]}}})


class TestOperationResult:
    def test_reports_every_outcome(self):
        result = OperationResult(operation="migrate", environment="dev")
        result.add(PhaseOutcome(phase="infra", status=OutcomeStatus.FAILED, error="boom", remediation="retry"))
        result.add(PhaseOutcome(phase="coder", message="migrated"))

        assert not result.success
        assert result.failed_phases == ["infra"]
        data = result.to_dict()
        assert [o["phase"] for o in data["outcomes"]] == ["infra", "coder"]
        assert data["outcomes"][0]["remediation"] == "retry"
        assert "error" not in data["outcomes"][1]

    def test_empty_result_is_success(self):
        assert OperationResult(operation="backup", environment="dev").success


def test_request_is_immutable():
    request = Request(command="state.drift", environment="dev", all_phases=True)
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.environment = "prod"
    changed = request.with_changes(workspace="blue")
    assert changed.workspace == "blue"
    assert request.workspace is None


def test_descriptor_to_dict():
    descriptor = BackendDescriptor(bucket="state-dev", key="dev/state", region="fr-par",
                                   endpoint="https://s3.fr-par.scw.cloud")
    assert descriptor.to_dict() == {
        "bucket": "state-dev",
        "key": "dev/state",
        "region": "fr-par",
        "endpoint": "https://s3.fr-par.scw.cloud",
    }


def test_topology_to_dict():
    assert Topology.phased(("infra", "coder")).to_dict() == {"kind": "phased", "phases": ["infra", "coder"]}
