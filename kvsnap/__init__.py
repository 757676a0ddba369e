# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap - Periodic backups of key-value store snapshots to object storage.

Streams snapshots into Azure Blob Storage or S3-compatible storage in
bounded chunks, commits them atomically, keeps the newest N per prefix and
repeats on a fixed interval until cancelled.
"""

__version__ = "0.1.0"

# Spec creation (user-facing API)
from kvsnap.builder import create_spec
from kvsnap.config import Settings, StorageType

# Orchestration
from kvsnap.core import BackupResult, run_backup_cycle
from kvsnap.dispatcher import Dispatcher

# Environment-based configuration
from kvsnap.env import create_spec_from_env, settings_from_env

# Snapshot sources
from kvsnap.snapshot import BytesSnapshotSource, FileSnapshotSource

__all__ = [
    # Version
    "__version__",
    # Spec creation
    "create_spec",
    "create_spec_from_env",
    "settings_from_env",
    "Settings",
    "StorageType",
    # Orchestration
    "BackupResult",
    "Dispatcher",
    "run_backup_cycle",
    # Snapshot sources
    "BytesSnapshotSource",
    "FileSnapshotSource",
]
