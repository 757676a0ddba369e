# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for kvsnap.

These helpers centralize wording for common configuration errors so that
the environment loader, the builder and the CLI present consistent,
actionable messages.
"""


def explain_unknown_storage_type(value: str | None) -> str:
    """
    Explain that a storage type is not one of the supported backends.
    """

    return (
        f"Unknown storage type: {value!r}. "
        "Expected 'ABS' (Azure Blob Storage) or 'S3' (S3-compatible storage)."
    )


def explain_missing_storage_section(storage_type: str) -> str:
    """
    Explain that the backend section matching the storage type is absent.
    """

    section = "abs" if storage_type.upper() == "ABS" else "s3"
    return (
        f"storage_type is {storage_type!r} but no {section!r} section was provided. "
        f"Pass {section}=... to create_spec() or set the matching environment variables."
    )


def explain_missing_abs_credentials() -> str:
    """
    Explain that an ABS spec has neither an account key nor a SAS token.
    """

    return (
        "Azure Blob Storage credentials are missing. "
        "Set ABS_ACCOUNT_KEY or ABS_SAS_TOKEN (or pass account_key=... / sas_token=...)."
    )


def explain_missing_env(name: str) -> str:
    """
    Explain that a required environment variable is not set.
    """

    return f"{name} is not configured. Set the {name} environment variable."


def explain_invalid_int_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable is malformed or negative.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative integer."
    )


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is malformed.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 1, 0, true, false, yes, no."
    )
