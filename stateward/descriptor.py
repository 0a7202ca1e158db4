"""
Backend Descriptor Builder.

Pure functions: no network or filesystem access. The same inputs always give
byte-identical descriptors and backend artifacts.
"""

from typing import Optional

from stateward.config import DEFAULT_ENDPOINT
from stateward.errors import ValidationError
from stateward.schemas import BackendDescriptor
from stateward.topology import validate_name

BUCKET_PREFIX = "state-"


def bucket_name(environment: str) -> str:
    return f"{BUCKET_PREFIX}{environment}"


def state_key(environment: str, phase: Optional[str] = None) -> str:
    if phase is None:
        return f"{environment}/state"
    return f"{environment}/{phase}/state"


def build_descriptor(
    environment: str,
    phase: Optional[str] = None,
    *,
    region: str,
    endpoint: Optional[str] = None,
    endpoint_template: str = DEFAULT_ENDPOINT,
) -> BackendDescriptor:
    """
    Derive the storage location of one (environment, phase) state.

    Args:
        environment: Environment name
        phase: Phase name, None for the legacy unit
        region: Storage region
        endpoint: Explicit endpoint URL (overrides the template)
        endpoint_template: Endpoint with a "{region}" placeholder

    Raises:
        ValidationError: If a name contains path separators or the region is empty
    """
    validate_name(environment, "environment")
    if phase is not None:
        validate_name(phase, "phase")
    if not region:
        raise ValidationError("Region is required to build a backend descriptor")

    return BackendDescriptor(
        bucket=bucket_name(environment),
        key=state_key(environment, phase),
        region=region,
        endpoint=endpoint or endpoint_template.replace("{region}", region),
    )


BACKEND_TEMPLATE = """\
# Terraform backend configuration for {unit}
# Managed by stateward; re-run `stateward backend setup` instead of editing.
#
# The object storage backend has no state locking. Serialize terraform and
# stateward runs against this environment (CI concurrency groups or by hand).

terraform {{
  backend "s3" {{
    bucket = "{bucket}"
    key    = "{key}"
    region = "{region}"

    endpoints = {{
      s3 = "{endpoint}"
    }}

    # Required flags for S3-compatible storage
    skip_credentials_validation = true
    skip_region_validation      = true
    skip_requesting_account_id  = true
    skip_s3_checksum            = true
  }}
}}
"""


def render_backend_config(
    descriptor: BackendDescriptor,
    environment: str,
    phase: Optional[str] = None,
) -> str:
    """Render the engine-native backend block for a descriptor."""
    unit = f"environment {environment}, phase {phase}" if phase else f"environment {environment}"
    return BACKEND_TEMPLATE.format(
        unit=unit,
        bucket=descriptor.bucket,
        key=descriptor.key,
        region=descriptor.region,
        endpoint=descriptor.endpoint,
    )
