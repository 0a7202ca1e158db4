"""
BackendDescriptor schema - addresses one phase's durable state.
"""

from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class BackendDescriptor:
    """
    Location of one (environment, phase) state artifact in object storage.

    Attributes:
        bucket: Bucket name, always "state-<env>"
        key: "<env>/<phase>/state" (phased) or "<env>/state" (legacy)
        region: Storage region (e.g. "fr-par")
        endpoint: S3-compatible endpoint URL
    """
    bucket: str
    key: str
    region: str
    endpoint: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)
