# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Builder - Functional builder pattern for backup specs.

This module provides pure functions for building BackupSpec objects.
Each function takes a spec dict and returns a new dict with the
modification applied (immutable updates).
"""

from typing import Any, Callable, Dict

from kvsnap.config import ABSSpec, BackupSpec, S3Spec, ScheduleSpec, StorageType
from kvsnap.exceptions import ConfigurationError


# Type alias for builder functions
SpecDict = Dict[str, Any]
BuilderFunc = Callable[[SpecDict], SpecDict]


def create_empty_spec() -> SpecDict:
    """
    Create an initial empty spec dictionary.

    Returns:
        Dict with default values for all spec fields
    """
    return {
        "name": "",
        "storage_type": None,
        "abs": None,
        "s3": None,
        "interval_seconds": 0,
        "max_backups": 0,
    }


def with_name(spec: SpecDict, name: str) -> SpecDict:
    """
    Set the backup name.

    The name identifies the schedule; activating a second spec with the
    same name replaces the first.
    """
    return {**spec, "name": name}


def use_abs(
    spec: SpecDict,
    container: str,
    account_name: str,
    *,
    account_key: str | None = None,
    sas_token: str | None = None,
    prefix: str = "",
    endpoint_url: str | None = None,
) -> SpecDict:
    """
    Target Azure Blob Storage.

    Args:
        spec: Current spec dictionary
        container: Container holding the backups
        account_name: Storage account name
        account_key: Shared key (or pass sas_token)
        sas_token: Pre-issued container SAS token
        prefix: Logical prefix, e.g. the cluster name
        endpoint_url: Account URL override

    Returns:
        New spec dictionary targeting ABS
    """
    section = ABSSpec(
        container=container,
        account_name=account_name,
        account_key=account_key,
        sas_token=sas_token,
        prefix=prefix,
        endpoint_url=endpoint_url,
    )
    return {**spec, "storage_type": StorageType.ABS, "abs": section, "s3": None}


def use_s3(
    spec: SpecDict,
    bucket: str,
    *,
    prefix: str = "",
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
) -> SpecDict:
    """
    Target S3-compatible storage.

    Args:
        spec: Current spec dictionary
        bucket: Bucket holding the backups
        prefix: Logical prefix, e.g. the cluster name
        region: AWS region (default: us-east-1)
        endpoint_url: Endpoint override for MinIO and friends
        access_key_id: Static credentials (default: botocore chain)
        secret_access_key: Static credentials

    Returns:
        New spec dictionary targeting S3
    """
    section = S3Spec(
        bucket=bucket,
        prefix=prefix,
        region=region,
        endpoint_url=endpoint_url,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
    )
    return {**spec, "storage_type": StorageType.S3, "s3": section, "abs": None}


def every(spec: SpecDict, seconds: int) -> SpecDict:
    """
    Set the backup interval in seconds.

    Intervals below the process-wide floor are clamped when the schedule
    starts.
    """
    if seconds < 0:
        raise ValueError(f"interval must be >= 0, got {seconds}")
    return {**spec, "interval_seconds": seconds}


def keep_last(spec: SpecDict, count: int) -> SpecDict:
    """
    Keep the newest count backups.

    0 means a one-shot backup with no retention and no schedule.
    """
    if count < 0:
        raise ValueError(f"max_backups must be >= 0, got {count}")
    return {**spec, "max_backups": count}


def build_spec(spec_dict: SpecDict) -> BackupSpec:
    """
    Validate and build an immutable BackupSpec from a spec dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    if not spec_dict.get("storage_type"):
        raise ConfigurationError("a storage backend is required; call use_abs() or use_s3()")

    schedule = None
    if spec_dict.get("interval_seconds") or spec_dict.get("max_backups"):
        schedule = ScheduleSpec(
            interval_seconds=spec_dict["interval_seconds"],
            max_backups=spec_dict["max_backups"],
        )

    return BackupSpec(
        name=spec_dict["name"],
        storage_type=spec_dict["storage_type"],
        abs=spec_dict["abs"],
        s3=spec_dict["s3"],
        schedule=schedule,
    )


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        spec = build_spec(pipe(
            lambda s: with_name(s, "prod"),
            lambda s: use_s3(s, "backups", prefix="prod"),
            lambda s: every(s, 3600),
            lambda s: keep_last(s, 24),
        )(create_empty_spec()))
    """

    def composed(spec: SpecDict) -> SpecDict:
        result = spec
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupSpec:
    """
    Build a spec by applying a sequence of builder functions.

    This is a convenience function that combines pipe() and build_spec().
    """
    return build_spec(pipe(*steps)(create_empty_spec()))


def create_spec(
    name: str,
    storage_type: StorageType | str,
    *,
    abs: ABSSpec | Dict[str, Any] | None = None,
    s3: S3Spec | Dict[str, Any] | None = None,
    interval_seconds: int = 0,
    max_backups: int = 0,
) -> BackupSpec:
    """
    Create a backup spec from simple parameters.

    This is the recommended user-facing API. Backend sections may be given
    as spec objects or as plain dicts of their fields.

    Args:
        name: Backup name (schedule identity)
        storage_type: "ABS" or "S3"
        abs: Azure Blob Storage section
        s3: S3 section
        interval_seconds: Seconds between backups (0 uses the floor)
        max_backups: Backups to keep; 0 makes the spec one-shot

    Returns:
        Validated, immutable BackupSpec

    Example:
        spec = create_spec(
            "prod-cluster",
            "S3",
            s3={"bucket": "kv-backups", "prefix": "prod"},
            interval_seconds=3600,
            max_backups=24,
        )
    """
    if isinstance(abs, dict):
        abs = ABSSpec(**abs)
    if isinstance(s3, dict):
        s3 = S3Spec(**s3)

    schedule = None
    if interval_seconds or max_backups:
        schedule = ScheduleSpec(interval_seconds=interval_seconds, max_backups=max_backups)

    return BackupSpec(
        name=name,
        storage_type=storage_type,
        abs=abs,
        s3=s3,
        schedule=schedule,
    )
