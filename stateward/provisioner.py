"""
Backend Provisioner - makes sure the object storage backend exists and each
phase directory declares it.

Per phase, in configured order:
1. build the backend descriptor
2. ensure the bucket (create + versioning + retention on first use only)
3. write the backend artifact when its content changed

Dry run reports the same steps without touching storage or the filesystem.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from stateward.config import StatewardConfig
from stateward.descriptor import build_descriptor, render_backend_config
from stateward.errors import BackendError, PrerequisiteError
from stateward.schemas import BackendDescriptor, Environment, OperationResult, OutcomeStatus, PhaseOutcome
from stateward.storage import ObjectStorage

logger = logging.getLogger(__name__)


class ArtifactStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def bucket_tags(environment: str) -> dict[str, str]:
    return {
        "Environment": environment,
        "Purpose": "terraform-state",
        "ManagedBy": "stateward",
    }


def write_artifact(path: Path, content: str) -> ArtifactStatus:
    """Write ``content`` to ``path`` unless it already holds exactly that."""
    if path.is_file():
        if path.read_text() == content:
            return ArtifactStatus.UNCHANGED
        path.write_text(content)
        return ArtifactStatus.UPDATED
    path.write_text(content)
    return ArtifactStatus.CREATED


class BackendProvisioner:
    """
    Ensures buckets and backend artifacts for an environment.

    Args:
        config: stateward configuration
        storage: Object storage client; may be None for dry runs
    """

    def __init__(self, config: StatewardConfig, storage: Optional[ObjectStorage] = None):
        self.config = config
        self.storage = storage

    def describe(
        self,
        environment: Environment,
        phases: Sequence[Optional[str]],
        *,
        region: str,
        endpoint: Optional[str] = None,
    ) -> list[tuple[Optional[str], BackendDescriptor]]:
        """Descriptors for every targeted phase, without side effects."""
        endpoint = endpoint or self.config.storage.endpoint_for(region)
        return [
            (phase, build_descriptor(environment.name, phase, region=region, endpoint=endpoint))
            for phase in phases
        ]

    def ensure(
        self,
        environment: Environment,
        phases: Sequence[Optional[str]],
        *,
        region: str,
        endpoint: Optional[str] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """
        Provision the backend for every targeted phase.

        Raises:
            ValidationError: If the region or a name is invalid (before any call)
            PrerequisiteError: Missing credentials or storage client
        """
        self.config.validate_region(region)
        descriptors = self.describe(environment, phases, region=region, endpoint=endpoint)
        result = OperationResult(operation="backend-setup", environment=environment.name)

        if not dry_run and self.storage is None:
            raise PrerequisiteError(
                "Object storage client is not configured",
                remediation="export SCW_ACCESS_KEY, SCW_SECRET_KEY and SCW_DEFAULT_PROJECT_ID",
            )

        for phase, descriptor in descriptors:
            artifact = environment.phase_dir(phase) / self.config.backend_file
            if dry_run:
                actions = [
                    f"ensure bucket {descriptor.bucket} in {descriptor.region} "
                    f"(versioning, {self.config.storage.retention_days}-day retention)",
                    f"write {artifact} (key {descriptor.key})",
                ]
                for action in actions:
                    logger.info(f"DRY RUN [{environment.label(phase)}] {action}", extra={"phase": phase})
                result.add(PhaseOutcome(
                    phase=phase,
                    status=OutcomeStatus.PLANNED,
                    message="dry run: no changes made",
                    data={"actions": actions, "descriptor": descriptor.to_dict()},
                ))
                continue
            result.add(self._ensure_phase(environment, phase, descriptor, artifact))
        return result

    def _ensure_phase(
        self,
        environment: Environment,
        phase: Optional[str],
        descriptor: BackendDescriptor,
        artifact: Path,
    ) -> PhaseOutcome:
        label = environment.label(phase)
        try:
            report = self.storage.ensure_bucket(
                descriptor.bucket,
                self.config.storage.retention_days,
                tags=bucket_tags(environment.name),
            )
        except BackendError as e:
            logger.error(f"Backend setup failed for {label}: {e}", extra={"phase": phase, "event": "setup_failed"})
            remediation = f"stateward backend setup --env={environment.name}"
            if phase:
                remediation += f" --phase={phase}"
            return PhaseOutcome(
                phase=phase,
                status=OutcomeStatus.FAILED,
                message="bucket setup failed",
                error=str(e),
                remediation=remediation,
            )

        status = write_artifact(artifact, render_backend_config(descriptor, environment.name, phase))
        logger.info(
            f"Backend for {label}: bucket {descriptor.bucket} {report.status.value}, "
            f"{self.config.backend_file} {status.value}",
            extra={"phase": phase, "event": "setup_phase", "metadata": descriptor.to_dict()},
        )
        return PhaseOutcome(
            phase=phase,
            message=f"bucket {report.status.value}, {self.config.backend_file} {status.value}",
            data={
                "descriptor": descriptor.to_dict(),
                "bucket": report.to_dict(),
                "artifact": str(artifact),
                "artifact_status": status.value,
            },
        )
