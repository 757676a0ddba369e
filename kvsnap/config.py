# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Configuration - Immutable backup spec and runtime settings.

All configuration is frozen (immutable) after creation so a running
schedule can never observe a half-updated spec. A changed spec is applied
by building a new one and re-activating it through the dispatcher.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List
import re

MiB = 1024 * 1024

# Root of every storage key; bumped only for key-layout migrations
DEFAULT_NAMESPACE_VERSION = "v1"

# Per-block upload limit
DEFAULT_CHUNK_SIZE = 100 * MiB

# Schedules are never allowed to fire more often than this
DEFAULT_MIN_INTERVAL_SECONDS = 60.0


class StorageType(str, Enum):
    """Supported object-storage backends."""

    ABS = "ABS"  # Azure Blob Storage
    S3 = "S3"  # S3-compatible storage (AWS, MinIO, Wasabi, ...)


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_container_name(container: str) -> bool:
    """
    Validate an Azure Blob container name.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive hyphens
    """
    if not container or len(container) < 3 or len(container) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$", container):
        return False

    return "--" not in container


def _validate_prefix(prefix: str) -> bool:
    """A logical prefix may not contain empty path segments or '..'."""
    if not prefix:
        return True
    segments = prefix.strip("/").split("/")
    return all(seg and seg != ".." for seg in segments)


@dataclass(frozen=True)
class ABSSpec:
    """Azure Blob Storage target for backups."""

    container: str
    account_name: str
    account_key: str | None = None
    # Pre-issued container SAS; preferred over the account key when both are set
    sas_token: str | None = None
    prefix: str = ""
    # Override for sovereign clouds or Azurite
    endpoint_url: str | None = None

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not _validate_container_name(self.container):
            errors.append(f"Invalid container name: {self.container}")
        if not self.account_name:
            errors.append("account_name is required for ABS storage")
        if not self.account_key and not self.sas_token:
            from kvsnap.errors import explain_missing_abs_credentials

            errors.append(explain_missing_abs_credentials())
        if not _validate_prefix(self.prefix):
            errors.append(f"Invalid prefix: {self.prefix!r}")
        return errors


@dataclass(frozen=True)
class S3Spec:
    """S3-compatible storage target for backups."""

    bucket: str
    prefix: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None
    # When unset, the default botocore credential chain applies
    access_key_id: str | None = None
    secret_access_key: str | None = None

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")
        if bool(self.access_key_id) != bool(self.secret_access_key):
            errors.append("access_key_id and secret_access_key must be set together")
        if not _validate_prefix(self.prefix):
            errors.append(f"Invalid prefix: {self.prefix!r}")
        return errors


@dataclass(frozen=True)
class ScheduleSpec:
    """
    Recurring backup policy.

    A schedule with max_backups == 0 never recurs: the spec is handled as a
    one-shot backup with no retention.
    """

    interval_seconds: int = 0
    max_backups: int = 0

    @property
    def recurring(self) -> bool:
        return self.max_backups > 0 and self.interval_seconds >= 0


@dataclass(frozen=True)
class BackupSpec:
    """
    Declarative description of one backup target.

    storage_type selects the backend; the matching section (abs or s3) must
    be present. The storage type is kept as given so that unknown values are
    reported by the dispatcher as configuration errors.
    """

    name: str
    storage_type: StorageType | str
    abs: ABSSpec | None = None
    s3: S3Spec | None = None
    schedule: ScheduleSpec | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.name:
            errors.append("name is required")

        if self.abs is not None:
            errors.extend(self.abs.validate())
        if self.s3 is not None:
            errors.extend(self.s3.validate())

        if self.schedule is not None:
            if self.schedule.interval_seconds < 0:
                errors.append(
                    f"interval_seconds must be >= 0, got {self.schedule.interval_seconds}"
                )
            if self.schedule.max_backups < 0:
                errors.append(
                    f"max_backups must be >= 0, got {self.schedule.max_backups}"
                )

        if errors:
            from kvsnap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Backup spec validation failed",
                details={"name": self.name, "errors": errors},
            )

    @property
    def prefix(self) -> str:
        section = self.abs if self.abs is not None else self.s3
        return section.prefix if section is not None else ""

    @property
    def max_backups(self) -> int:
        return self.schedule.max_backups if self.schedule else 0


@dataclass(frozen=True)
class Settings:
    """
    Process-wide knobs shared by every schedule.

    These are operator settings rather than per-backup parameters, so they
    live apart from BackupSpec.
    """

    namespace_version: str = DEFAULT_NAMESPACE_VERSION

    # Upper bound for a single uploaded block; clamped to the backend limit
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Floor applied to every schedule interval
    min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS

    # Deadline for one full cycle (upload + purge)
    cycle_timeout_seconds: float = 30 * 60

    # Attempts per cycle for transient backend failures (1 disables retries)
    retry_attempts: int = 3

    # Base of the exponential backoff between attempts
    retry_backoff_seconds: float = 1.0

    # Stream snapshots through zstd before upload
    compress: bool = False
    zstd_level: int = 3

    def __post_init__(self) -> None:
        errors: List[str] = []

        if not self.namespace_version or "/" in self.namespace_version:
            errors.append(f"Invalid namespace_version: {self.namespace_version!r}")
        if self.chunk_size < 1:
            errors.append(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.min_interval_seconds < 0:
            errors.append(
                f"min_interval_seconds must be >= 0, got {self.min_interval_seconds}"
            )
        if self.cycle_timeout_seconds <= 0:
            errors.append(
                f"cycle_timeout_seconds must be > 0, got {self.cycle_timeout_seconds}"
            )
        if self.retry_attempts < 1:
            errors.append(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if not 1 <= self.zstd_level <= 22:
            errors.append(f"zstd_level must be 1-22, got {self.zstd_level}")

        if errors:
            from kvsnap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Settings validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "Settings":
        """
        Create new settings with updated values.

        Since settings are frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return Settings(**current)
