"""
Configuration management for stateward.

Loads and validates the stateward.yaml configuration file that sits at the
project root (next to the environments/ directory). A missing file means
"use defaults"; an unreadable or invalid one is a ConfigError.

Environment overrides (read once by the CLI and passed in as ``environ``):
    SCW_DEFAULT_REGION      -> storage.region
    STATEWARD_S3_ENDPOINT   -> storage.endpoint
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from stateward.errors import PrerequisiteError, ValidationError

CONFIG_FILENAME = "stateward.yaml"

DEFAULT_PHASES = ("infra", "coder")
DEFAULT_REGIONS = ("fr-par", "nl-ams", "pl-waw")
DEFAULT_ENDPOINT = "https://s3.{region}.scw.cloud"

REGION_PATTERN = re.compile(r"^[a-z]{2}-[a-z]{3}$")


class ConfigError(ValidationError):
    """Configuration validation error."""
    pass


@dataclass(frozen=True)
class StorageConfig:
    """Object storage settings."""
    region: str = "fr-par"
    allowed_regions: tuple[str, ...] = DEFAULT_REGIONS
    endpoint: str = DEFAULT_ENDPOINT
    retention_days: int = 90

    def endpoint_for(self, region: str) -> str:
        """Expand the endpoint template for a region."""
        return self.endpoint.replace("{region}", region)


@dataclass(frozen=True)
class EngineConfig:
    """Provisioning engine settings."""
    binary: str = "terraform"
    min_version: str = "1.6.0"
    timeout: Optional[float] = None


@dataclass(frozen=True)
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "structured"
    console: bool = True
    file: Optional[str] = "logs/stateward-{date}.log"


@dataclass(frozen=True)
class StatewardConfig:
    """
    Complete stateward configuration.

    Attributes:
        project_root: Directory holding environments/ and backups/
        environments_dir: Environments root, relative to project_root
        backup_root: Backup root, relative to project_root
        phases: Recognized phase names, in processing order
        root_config_file: File that marks a legacy (single state) layout
        backend_file: Name of the backend declaration written per phase
        state_file: Name of the engine's local state file
    """
    project_root: Path
    environments_dir: str = "environments"
    backup_root: str = "backups"
    phases: tuple[str, ...] = DEFAULT_PHASES
    root_config_file: str = "main.tf"
    backend_file: str = "backend.tf"
    state_file: str = "terraform.tfstate"
    storage: StorageConfig = field(default_factory=StorageConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def environments_path(self) -> Path:
        return self.project_root / self.environments_dir

    @property
    def backups_path(self) -> Path:
        return self.project_root / self.backup_root

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, or None when disabled."""
        if not self.logging.file:
            return None
        log_output = self.logging.file.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        path = Path(log_output)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    def validate_region(self, region: str) -> str:
        """Return region if it is well-formed and allowed, else raise ValidationError."""
        if not REGION_PATTERN.match(region or ""):
            raise ValidationError(
                f"Invalid region format: {region!r}. Expected format: xx-xxx (e.g., fr-par)"
            )
        if self.storage.allowed_regions and region not in self.storage.allowed_regions:
            raise ValidationError(
                f"Invalid region: {region}. Must be one of: {', '.join(self.storage.allowed_regions)}"
            )
        return region

    def validate(self) -> None:
        """Validate entire configuration."""
        if not self.phases:
            raise ConfigError("At least one phase name must be configured")
        if len(set(self.phases)) != len(self.phases):
            raise ConfigError(f"Duplicate phase names: {list(self.phases)}")
        for phase in self.phases:
            if not phase or "/" in phase or "\\" in phase:
                raise ConfigError(f"Invalid phase name: {phase!r}")
        if self.storage.retention_days <= 0:
            raise ConfigError("storage.retention_days must be positive")
        if self.engine.timeout is not None and self.engine.timeout <= 0:
            raise ConfigError("engine.timeout must be positive")
        if self.logging.format not in ("structured", "pretty"):
            raise ConfigError(
                f"logging.format must be 'structured' or 'pretty', got {self.logging.format!r}"
            )
        self.validate_region(self.storage.region)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a YAML-friendly dict (project_root omitted)."""
        data = asdict(self)
        data.pop("project_root")
        data["phases"] = list(self.phases)
        data["storage"]["allowed_regions"] = list(self.storage.allowed_regions)
        return data


def _section(raw: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _load_yaml(config_path: Path) -> dict[str, Any]:
    """Load and parse YAML configuration file."""
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")
    return config


def config_from_dict(
    raw: Mapping[str, Any],
    project_root: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> StatewardConfig:
    """
    Build a StatewardConfig from a raw mapping plus environment overrides.

    Args:
        raw: Parsed stateward.yaml content
        project_root: Project root directory
        environ: Environment mapping for overrides (defaults to none)

    Raises:
        ConfigError: If a value has the wrong type or fails validation
    """
    environ = environ or {}
    storage_raw = _section(raw, "storage")
    engine_raw = _section(raw, "engine")
    logging_raw = _section(raw, "logging")

    try:
        storage = StorageConfig(
            region=environ.get("SCW_DEFAULT_REGION") or storage_raw.get("region", "fr-par"),
            allowed_regions=tuple(storage_raw.get("allowed_regions", DEFAULT_REGIONS)),
            endpoint=environ.get("STATEWARD_S3_ENDPOINT") or storage_raw.get("endpoint", DEFAULT_ENDPOINT),
            retention_days=int(storage_raw.get("retention_days", 90)),
        )
        timeout = engine_raw.get("timeout")
        engine = EngineConfig(
            binary=str(engine_raw.get("binary", "terraform")),
            min_version=str(engine_raw.get("min_version", "1.6.0")),
            timeout=float(timeout) if timeout is not None else None,
        )
        logging_cfg = LoggingConfig(
            level=str(logging_raw.get("level", "INFO")).upper(),
            format=str(logging_raw.get("format", "structured")),
            console=bool(logging_raw.get("console", True)),
            file=logging_raw.get("file", LoggingConfig.file),
        )
        config = StatewardConfig(
            project_root=Path(project_root),
            environments_dir=str(raw.get("environments_dir", "environments")),
            backup_root=str(raw.get("backup_root", "backups")),
            phases=tuple(str(p) for p in raw.get("phases", DEFAULT_PHASES)),
            root_config_file=str(raw.get("root_config_file", "main.tf")),
            backend_file=str(raw.get("backend_file", "backend.tf")),
            state_file=str(raw.get("state_file", "terraform.tfstate")),
            storage=storage,
            engine=engine,
            logging=logging_cfg,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    config.validate()
    return config


def load_config(
    config_path: Optional[Path] = None,
    project_root: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> StatewardConfig:
    """
    Load stateward configuration.

    Args:
        config_path: Path to config file. Defaults to <project_root>/stateward.yaml
        project_root: Project root. Defaults to the config file's directory,
                      or the current directory when neither is given
        environ: Environment mapping for overrides

    Returns:
        StatewardConfig instance

    Raises:
        ConfigError: If config is invalid, or an explicit config_path is missing
    """
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        if project_root is None:
            project_root = config_path.resolve().parent
    else:
        if project_root is None:
            project_root = Path.cwd()
        config_path = Path(project_root) / CONFIG_FILENAME

    raw = _load_yaml(config_path) if config_path.exists() else {}
    return config_from_dict(raw, Path(project_root), environ)


def default_config_dict() -> dict[str, Any]:
    """Default stateward.yaml content written by ``stateward init``."""
    return StatewardConfig(project_root=Path(".")).to_dict()


CREDENTIAL_VARS = ("SCW_ACCESS_KEY", "SCW_SECRET_KEY", "SCW_DEFAULT_PROJECT_ID")


@dataclass(frozen=True)
class Credentials:
    """Object storage credentials, read once from the process environment."""
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    project_id: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "Credentials":
        return cls(
            access_key=environ.get("SCW_ACCESS_KEY") or None,
            secret_key=environ.get("SCW_SECRET_KEY") or None,
            project_id=environ.get("SCW_DEFAULT_PROJECT_ID") or None,
        )

    def missing(self) -> list[str]:
        values = (self.access_key, self.secret_key, self.project_id)
        return [name for name, value in zip(CREDENTIAL_VARS, values) if not value]

    def require(self) -> "Credentials":
        """Return self, or raise PrerequisiteError naming the unset variables."""
        missing = self.missing()
        if missing:
            raise PrerequisiteError(
                "Missing object storage credentials: " + ", ".join(missing),
                remediation="export " + " ".join(f"{name}=..." for name in missing),
            )
        return self

    def engine_env(self) -> dict[str, str]:
        """Variables the engine's S3 backend reads its credentials from."""
        env = {}
        if self.access_key:
            env["AWS_ACCESS_KEY_ID"] = self.access_key
        if self.secret_key:
            env["AWS_SECRET_ACCESS_KEY"] = self.secret_key
        return env

    def __repr__(self) -> str:
        return f"Credentials(missing={self.missing()})"
