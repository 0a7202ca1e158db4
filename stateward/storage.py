"""
Object storage client - IO boundary for the S3-compatible state backend.

Only bucket-level operations live here (existence, creation, versioning,
lifecycle, tags). State objects themselves are always read and written by
the provisioning engine, never by stateward.

Error classification:
- NoCredentialsError / PartialCredentialsError -> PrerequisiteError
- ClientError / BotoCoreError -> BackendError (not retried)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from stateward.config import Credentials
from stateward.errors import BackendError, PrerequisiteError

logger = logging.getLogger(__name__)

LIFECYCLE_RULE_ID = "state-retention"
NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound"}


class BucketStatus(str, Enum):
    CREATED = "created"
    EXISTS = "exists"
    EXISTS_MISMATCH = "exists-mismatch"
    REPAIRED = "repaired"


@dataclass
class BucketReport:
    """What ensure_bucket found or did."""
    bucket: str
    status: BucketStatus
    warnings: list[str] = field(default_factory=list)
    repaired: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = {"bucket": self.bucket, "status": self.status.value}
        if self.repaired:
            data["repaired"] = self.repaired
        if self.warnings:
            data["warnings"] = self.warnings
        return data


def lifecycle_configuration(retention_days: int) -> dict[str, Any]:
    """Default retention rule: expire non-current state versions."""
    return {
        "Rules": [
            {
                "ID": LIFECYCLE_RULE_ID,
                "Status": "Enabled",
                "Filter": {"Prefix": ""},
                "NoncurrentVersionExpiration": {"NoncurrentDays": retention_days},
                "AbortIncompleteMultipartUpload": {"DaysAfterInitiation": 7},
            }
        ]
    }


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class ObjectStorage:
    """
    Bucket operations against an S3-compatible endpoint.

    Args:
        client: boto3 S3 client (or a stand-in with the same methods)
        region: Region used for bucket creation
    """

    def __init__(self, client: Any, region: str):
        self.client = client
        self.region = region

    @classmethod
    def connect(
        cls,
        credentials: Credentials,
        region: str,
        endpoint: str,
    ) -> "ObjectStorage":
        """
        Build a client for ``endpoint``.

        Raises:
            PrerequisiteError: If credentials are missing
        """
        credentials.require()
        client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint,
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
        )
        return cls(client, region)

    def _call(self, operation: str, bucket: str, **kwargs) -> Any:
        try:
            return getattr(self.client, operation)(Bucket=bucket, **kwargs)
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise PrerequisiteError(f"Object storage rejected credentials: {e}")
        except ClientError as e:
            raise BackendError(
                f"Object storage {operation} failed for bucket {bucket}: "
                f"{_error_code(e) or 'error'} {e}",
                remediation="re-run: stateward backend setup",
            )
        except BotoCoreError as e:
            raise BackendError(
                f"Object storage {operation} failed for bucket {bucket}: {e}",
                remediation="re-run: stateward backend setup",
            )

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.client.head_bucket(Bucket=bucket)
            return True
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return False
            raise BackendError(
                f"Could not check bucket {bucket}: {_error_code(e)} {e}",
                remediation="check credentials and region, then re-run: stateward backend setup",
            )
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise PrerequisiteError(f"Object storage rejected credentials: {e}")
        except BotoCoreError as e:
            raise BackendError(f"Could not check bucket {bucket}: {e}")

    def ensure_bucket(
        self,
        bucket: str,
        retention_days: int,
        tags: Optional[dict[str, str]] = None,
    ) -> BucketReport:
        """
        Make sure ``bucket`` exists with versioning and the retention rule.

        Idempotent: an existing bucket is never recreated. Versioning and the
        retention rule are added when missing (e.g. after a setup that failed
        half-way); a retention period that differs from the configured one is
        only reported.
        """
        if self.bucket_exists(bucket):
            repaired = self._repair_configuration(bucket, retention_days)
            warnings = self._check_configuration(bucket, retention_days)
            if repaired:
                status = BucketStatus.REPAIRED
            elif warnings:
                status = BucketStatus.EXISTS_MISMATCH
            else:
                status = BucketStatus.EXISTS
            for warning in warnings:
                logger.warning(warning, extra={"event": "bucket_mismatch", "metadata": {"bucket": bucket}})
            logger.info(f"Bucket {bucket} already exists", extra={"event": "bucket_exists"})
            return BucketReport(bucket=bucket, status=status, warnings=warnings, repaired=repaired)

        logger.info(f"Creating bucket {bucket} in {self.region}", extra={"event": "bucket_create"})
        self._call(
            "create_bucket",
            bucket,
            CreateBucketConfiguration={"LocationConstraint": self.region},
        )
        self._call(
            "put_bucket_versioning",
            bucket,
            VersioningConfiguration={"Status": "Enabled"},
        )
        self._call(
            "put_bucket_lifecycle_configuration",
            bucket,
            LifecycleConfiguration=lifecycle_configuration(retention_days),
        )
        if tags:
            self._call(
                "put_bucket_tagging",
                bucket,
                Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in sorted(tags.items())]},
            )
        return BucketReport(bucket=bucket, status=BucketStatus.CREATED)

    def _lifecycle_rules(self, bucket: str) -> list[dict[str, Any]]:
        try:
            lifecycle = self.client.get_bucket_lifecycle_configuration(Bucket=bucket)
        except ClientError as e:
            if _error_code(e) == "NoSuchLifecycleConfiguration":
                return []
            raise BackendError(f"Could not read lifecycle of bucket {bucket}: {e}")
        return list(lifecycle.get("Rules", []))

    def _repair_configuration(self, bucket: str, retention_days: int) -> list[str]:
        """Enable versioning and add the retention rule where missing."""
        repaired = []
        versioning = self._call("get_bucket_versioning", bucket)
        if versioning.get("Status") != "Enabled":
            self._call(
                "put_bucket_versioning",
                bucket,
                VersioningConfiguration={"Status": "Enabled"},
            )
            repaired.append("versioning enabled")

        rules = self._lifecycle_rules(bucket)
        if not any(r.get("ID") == LIFECYCLE_RULE_ID for r in rules):
            # Rules set by someone else are kept
            rules.extend(lifecycle_configuration(retention_days)["Rules"])
            self._call(
                "put_bucket_lifecycle_configuration",
                bucket,
                LifecycleConfiguration={"Rules": rules},
            )
            repaired.append(f"retention rule '{LIFECYCLE_RULE_ID}' added")

        for action in repaired:
            logger.info(f"Bucket {bucket}: {action}", extra={"event": "bucket_repaired", "metadata": {"bucket": bucket}})
        return repaired

    def _check_configuration(self, bucket: str, retention_days: int) -> list[str]:
        warnings = []
        versioning = self._call("get_bucket_versioning", bucket)
        if versioning.get("Status") != "Enabled":
            warnings.append(f"Bucket {bucket}: versioning is not enabled")

        rules = {r.get("ID"): r for r in self._lifecycle_rules(bucket)}
        rule = rules.get(LIFECYCLE_RULE_ID)
        if rule is None:
            warnings.append(f"Bucket {bucket}: retention rule '{LIFECYCLE_RULE_ID}' is missing")
        else:
            days = (rule.get("NoncurrentVersionExpiration") or {}).get("NoncurrentDays")
            if days != retention_days:
                warnings.append(
                    f"Bucket {bucket}: retention is {days} days, configured {retention_days}"
                )
        return warnings
