import json
from pathlib import Path
from typing import Optional

import pytest
from botocore.exceptions import ClientError

from stateward.config import config_from_dict
from stateward.engine import EngineResult, ProvisioningEngine
from stateward.errors import EngineError
from stateward.utils import reset_logging

PROVIDER = 'provider["registry.terraform.io/scaleway/scaleway"]'


def state_json(count: int, serial: int = 1, lineage: str = "lineage-1", outputs: Optional[dict] = None) -> str:
    """A raw state artifact with ``count`` resource blocks."""
    return json.dumps({
        "version": 4,
        "terraform_version": "1.6.3",
        "serial": serial,
        "lineage": lineage,
        "outputs": outputs or {},
        "resources": [
            {
                "mode": "managed",
                "type": "scaleway_instance_server",
                "name": f"srv{i}",
                "provider": PROVIDER,
                "instances": [{"attributes": {"id": f"fr-par-1/{i}", "name": f"srv{i}"}}],
            }
            for i in range(count)
        ],
    }, indent=2)


def build_project(root: Path, layouts: dict[str, str], phases=("infra", "coder")) -> Path:
    """
    Create environments/<name> for each entry: "phased" gets one directory
    per phase, "legacy" a root main.tf.
    """
    for name, layout in layouts.items():
        env_root = root / "environments" / name
        env_root.mkdir(parents=True)
        if layout == "phased":
            for phase in phases:
                (env_root / phase).mkdir()
                (env_root / phase / "main.tf").write_text(f"# {name}/{phase}\n")
        else:
            (env_root / "main.tf").write_text(f"# {name}\n")
    (root / "stateward.yaml").write_text(
        "logging:\n"
        "  console: false\n"
        "  file: null\n"
    )
    return root


class FakeEngine(ProvisioningEngine):
    """
    In-memory provisioning engine.

    Remote state lives in ``self.remote`` keyed by working directory. Set
    ``fail[(operation, workdir)]`` to an exception to make one call fail.
    """

    def __init__(self):
        self.remote: dict[Path, str] = {}
        self.initialized: set[Path] = set()
        self.plan_codes: dict[Path, int] = {}
        self.workspaces: dict[Path, list[str]] = {}
        self.current: dict[Path, str] = {}
        self.fail: dict[tuple[str, Path], Exception] = {}
        self.calls: list[tuple[str, Optional[Path]]] = []

    def _record(self, operation: str, workdir: Optional[Path] = None) -> Optional[Path]:
        key = Path(workdir).resolve() if workdir is not None else None
        self.calls.append((operation, key))
        error = self.fail.get((operation, key))
        if error is not None:
            raise error
        return key

    def operations(self, operation: str) -> list[Optional[Path]]:
        return [workdir for op, workdir in self.calls if op == operation]

    def preflight(self) -> None:
        self._record("preflight")

    def version(self) -> str:
        return "1.6.3"

    def is_initialized(self, workdir: Path) -> bool:
        return Path(workdir).resolve() in self.initialized

    def init(self, workdir, *, migrate_state=False, timeout=None):
        key = self._record("init", workdir)
        self.initialized.add(key)
        local = key / "terraform.tfstate"
        if migrate_state and local.is_file() and key not in self.remote:
            self.remote[key] = local.read_text()
        return EngineResult(command=("terraform", "init"), returncode=0)

    def pull_state(self, workdir, *, timeout=None):
        key = self._record("pull", workdir)
        return self.remote.get(key, "")

    def push_state(self, workdir, state_file, *, timeout=None):
        key = self._record("push", workdir)
        self.remote[key] = Path(state_file).read_text()
        return EngineResult(command=("terraform", "state", "push"), returncode=0)

    def plan(self, workdir, *, timeout=None):
        key = self._record("plan", workdir)
        code = self.plan_codes.get(key, 0)
        stdout = "No changes." if code == 0 else "Plan: 1 to add, 0 to change, 0 to destroy."
        return EngineResult(command=("terraform", "plan"), returncode=code, stdout=stdout)

    def show_json(self, workdir, *, timeout=None):
        key = self._record("show", workdir)
        raw = json.loads(self.remote.get(key) or '{"version": 4, "resources": []}')
        resources = []
        for block in raw.get("resources", []):
            address = f"{block['type']}.{block['name']}"
            resources.append({
                "address": address,
                "mode": block.get("mode", "managed"),
                "type": block["type"],
                "name": block["name"],
                "provider_name": "registry.terraform.io/scaleway/scaleway",
                "values": (block.get("instances") or [{}])[0].get("attributes", {}),
            })
        return json.dumps({
            "format_version": "1.0",
            "terraform_version": "1.6.3",
            "values": {"outputs": raw.get("outputs", {}), "root_module": {"resources": resources}},
        })

    def workspace_list(self, workdir):
        key = self._record("workspace_list", workdir)
        return list(self.workspaces.setdefault(key, ["default"])), self.current.get(key, "default")

    def workspace_new(self, workdir, name):
        key = self._record("workspace_new", workdir)
        names = self.workspaces.setdefault(key, ["default"])
        if name in names:
            raise EngineError(f'Workspace "{name}" already exists', returncode=1)
        names.append(name)
        self.current[key] = name
        return EngineResult(command=("terraform", "workspace", "new", name), returncode=0)

    def workspace_select(self, workdir, name):
        key = self._record("workspace_select", workdir)
        if name not in self.workspaces.setdefault(key, ["default"]):
            raise EngineError(f'Workspace "{name}" doesn\'t exist', returncode=1)
        self.current[key] = name
        return EngineResult(command=("terraform", "workspace", "select", name), returncode=0)

    def workspace_delete(self, workdir, name):
        key = self._record("workspace_delete", workdir)
        self.workspaces.setdefault(key, ["default"]).remove(name)
        return EngineResult(command=("terraform", "workspace", "delete", name), returncode=0)


def client_error(code: str, operation: str = "HeadBucket") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3:
    """Stateful stand-in for the boto3 S3 client bucket API."""

    def __init__(self):
        self.buckets: dict[str, dict] = {}
        self.created: list[str] = []

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise client_error("404")
        return {}

    def create_bucket(self, Bucket, CreateBucketConfiguration=None):
        self.buckets[Bucket] = {"location": CreateBucketConfiguration, "versioning": None, "lifecycle": None}
        self.created.append(Bucket)
        return {}

    def put_bucket_versioning(self, Bucket, VersioningConfiguration):
        self.buckets[Bucket]["versioning"] = VersioningConfiguration["Status"]
        return {}

    def get_bucket_versioning(self, Bucket):
        status = self.buckets[Bucket]["versioning"]
        return {"Status": status} if status else {}

    def put_bucket_lifecycle_configuration(self, Bucket, LifecycleConfiguration):
        self.buckets[Bucket]["lifecycle"] = LifecycleConfiguration
        return {}

    def get_bucket_lifecycle_configuration(self, Bucket):
        lifecycle = self.buckets[Bucket]["lifecycle"]
        if lifecycle is None:
            raise client_error("NoSuchLifecycleConfiguration", "GetBucketLifecycleConfiguration")
        return lifecycle

    def put_bucket_tagging(self, Bucket, Tagging):
        self.buckets[Bucket]["tags"] = Tagging["TagSet"]
        return {}


@pytest.fixture(autouse=True)
def clean_logging():
    """Drop handlers bound to streams of a finished CliRunner invocation."""
    yield
    reset_logging()


@pytest.fixture
def project(tmp_path):
    """Project with a phased "dev" and a legacy "staging" environment."""
    return build_project(tmp_path, {"dev": "phased", "staging": "legacy"})


@pytest.fixture
def config(project):
    return config_from_dict({"logging": {"console": False, "file": None}}, project)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def credentials_env(monkeypatch):
    monkeypatch.setenv("SCW_ACCESS_KEY", "SCWXXXXXXXXXXXXXXXXX")
    monkeypatch.setenv("SCW_SECRET_KEY", "secret-key")
    monkeypatch.setenv("SCW_DEFAULT_PROJECT_ID", "project-id")


@pytest.fixture(autouse=True)
def isolated_environ(monkeypatch):
    """Tests never see the operator's own credentials or overrides."""
    for name in (
        "SCW_ACCESS_KEY",
        "SCW_SECRET_KEY",
        "SCW_DEFAULT_PROJECT_ID",
        "SCW_DEFAULT_REGION",
        "STATEWARD_S3_ENDPOINT",
        "STATEWARD_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
