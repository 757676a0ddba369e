# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

These helpers are small wrappers around create_spec() and Settings that
build a backup spec and the process settings from environment variables,
the way the process is usually configured in a container.
"""

from __future__ import annotations

import os
from typing import Any, Dict

from kvsnap.builder import create_spec
from kvsnap.config import (
    ABSSpec,
    BackupSpec,
    MiB,
    S3Spec,
    Settings,
    StorageType,
)
from kvsnap.errors import (
    explain_invalid_bool_env,
    explain_invalid_int_env,
    explain_missing_env,
    explain_unknown_storage_type,
)
from kvsnap.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(explain_missing_env(name))
    return value


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value)) from exc
    if number < 0:
        raise ConfigurationError(explain_invalid_int_env(name, value))
    return number


def _parse_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def _parse_storage_type(value: str | None) -> StorageType:
    if not value:
        raise ConfigurationError(explain_missing_env("KVSNAP_STORAGE_TYPE"))
    try:
        return StorageType(value.upper())
    except ValueError as exc:
        raise ConfigurationError(explain_unknown_storage_type(value)) from exc


def abs_spec_from_env(prefix: str = "") -> ABSSpec:
    """
    Build an ABSSpec from ABS_* variables.

    Required: ABS_CONTAINER, ABS_ACCOUNT_NAME and one of ABS_ACCOUNT_KEY /
    ABS_SAS_TOKEN. Optional: ABS_ENDPOINT_URL.
    """
    return ABSSpec(
        container=_require("ABS_CONTAINER"),
        account_name=_require("ABS_ACCOUNT_NAME"),
        account_key=os.getenv("ABS_ACCOUNT_KEY") or None,
        sas_token=os.getenv("ABS_SAS_TOKEN") or None,
        prefix=prefix,
        endpoint_url=os.getenv("ABS_ENDPOINT_URL") or None,
    )


def s3_spec_from_env(prefix: str = "") -> S3Spec:
    """
    Build an S3Spec from S3_* / AWS_* variables.

    Required: S3_BUCKET. Optional: AWS_REGION, S3_ENDPOINT_URL,
    AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY.
    """
    return S3Spec(
        bucket=_require("S3_BUCKET"),
        prefix=prefix,
        region=os.getenv("AWS_REGION", "us-east-1"),
        endpoint_url=os.getenv("S3_ENDPOINT_URL") or None,
        access_key_id=os.getenv("AWS_ACCESS_KEY_ID") or None,
        secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY") or None,
    )


def create_spec_from_env() -> BackupSpec:
    """
    Create a BackupSpec from environment variables.

    Required:
        - KVSNAP_STORAGE_TYPE: 'ABS' | 'S3'
        - The backend variables (see abs_spec_from_env / s3_spec_from_env)

    Optional environment variables:
        - KVSNAP_BACKUP_NAME: Schedule name (default: "default")
        - KVSNAP_PREFIX: Logical prefix, e.g. the cluster name
        - KVSNAP_BACKUP_INTERVAL_SECONDS: Non-negative integer (default: 0)
        - KVSNAP_MAX_BACKUPS: Non-negative integer (default: 0, one-shot)
    """
    storage_type = _parse_storage_type(os.getenv("KVSNAP_STORAGE_TYPE"))
    prefix = os.getenv("KVSNAP_PREFIX", "")

    abs_section = abs_spec_from_env(prefix) if storage_type == StorageType.ABS else None
    s3_section = s3_spec_from_env(prefix) if storage_type == StorageType.S3 else None

    return create_spec(
        os.getenv("KVSNAP_BACKUP_NAME", "default"),
        storage_type,
        abs=abs_section,
        s3=s3_section,
        interval_seconds=_parse_int("KVSNAP_BACKUP_INTERVAL_SECONDS", 0),
        max_backups=_parse_int("KVSNAP_MAX_BACKUPS", 0),
    )


def settings_from_env(base: Settings | None = None) -> Settings:
    """
    Apply KVSNAP_* process settings on top of base (default: Settings()).

    Optional environment variables:
        - KVSNAP_MIN_INTERVAL_SECONDS: Interval floor in seconds
        - KVSNAP_CHUNK_SIZE_MB: Block size in MiB
        - KVSNAP_CYCLE_TIMEOUT_SECONDS: Deadline of one cycle
        - KVSNAP_RETRY_ATTEMPTS: Attempts per cycle
        - KVSNAP_COMPRESS: Stream snapshots through zstd (true/false)
    """
    base = base or Settings()
    updates: Dict[str, Any] = {}

    if os.getenv("KVSNAP_MIN_INTERVAL_SECONDS"):
        updates["min_interval_seconds"] = float(_parse_int("KVSNAP_MIN_INTERVAL_SECONDS", 0))
    if os.getenv("KVSNAP_CHUNK_SIZE_MB"):
        updates["chunk_size"] = _parse_int("KVSNAP_CHUNK_SIZE_MB", 0) * MiB
    if os.getenv("KVSNAP_CYCLE_TIMEOUT_SECONDS"):
        updates["cycle_timeout_seconds"] = float(_parse_int("KVSNAP_CYCLE_TIMEOUT_SECONDS", 0))
    if os.getenv("KVSNAP_RETRY_ATTEMPTS"):
        updates["retry_attempts"] = _parse_int("KVSNAP_RETRY_ATTEMPTS", 0)
    if os.getenv("KVSNAP_COMPRESS"):
        updates["compress"] = _parse_bool("KVSNAP_COMPRESS", base.compress)

    return base.with_updates(**updates) if updates else base
