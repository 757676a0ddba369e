# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Core - One backup cycle.

A cycle makes sure the container exists, streams a fresh snapshot into a
new backup key through the chunked upload engine and, once the upload is
committed, applies retention to the same prefix. Errors are not handled
here; they bubble up to the scheduler, which is the unit of reporting.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import List

import structlog

from kvsnap.compression import ZSTD_SUFFIX, ZstdStreamReader
from kvsnap.config import Settings
from kvsnap.exceptions import KVSnapError, PurgePartial
from kvsnap.keyspace import KeySpace, new_backup_id
from kvsnap.retention import purge
from kvsnap.snapshot import SnapshotSource
from kvsnap.storage import StorageBackend
from kvsnap.upload import upload_stream

logger = structlog.get_logger()


@dataclass
class BackupResult:
    """Result of a successful backup cycle."""

    name: str
    backup_id: str
    key: str
    size: int
    block_count: int
    started_at: datetime
    duration_seconds: float
    purged: List[str] = field(default_factory=list)


async def run_backup_cycle(
    backend: StorageBackend,
    keyspace: KeySpace,
    source: SnapshotSource,
    *,
    prefix: str,
    max_backups: int,
    settings: Settings,
    name: str = "",
) -> BackupResult:
    """
    Run a complete backup cycle.

    1. Ensure the container exists (creating it if needed)
    2. Upload the snapshot under a new, time-ordered backup id
    3. Purge backups beyond max_backups under the same prefix

    Args:
        backend: Storage backend to write to
        keyspace: Key layout
        source: Snapshot source, opened once for this cycle
        prefix: Logical prefix for the backup
        max_backups: Retention count (<= 0 disables purging)
        settings: Chunking and compression settings
        name: Schedule name, for logs

    Returns:
        BackupResult for the new backup

    Raises:
        KVSnapError subclasses from the backend, upload engine or purge.
        Once the upload is committed, any purge failure is raised as
        PurgePartial carrying the new backup's key in its details, so the
        cycle is never retried into a second backup.
    """
    started_at = datetime.now(UTC)
    log = logger.bind(schedule=name, backend=backend.name, prefix=prefix)
    log.info("backup_cycle_started")

    await backend.ensure_container()

    suffix = ZSTD_SUFFIX if settings.compress else ""
    backup_id = new_backup_id(suffix)
    key = keyspace.key_for(prefix, backup_id)

    async with source.open() as reader:
        stream = ZstdStreamReader(reader, settings.zstd_level) if settings.compress else reader
        upload = await upload_stream(backend, key, stream, chunk_size=settings.chunk_size)

    try:
        purged = await purge(backend, keyspace, prefix, max_backups)
    except PurgePartial as e:
        e.details["backup_key"] = key
        raise
    except KVSnapError as e:
        # The backup is committed; retrying the cycle would write another one
        log.error("purge_failed", key=key, error=str(e))
        raise PurgePartial(
            f"Purge of {prefix!r} failed after writing {backup_id}: {e.message}",
            deleted=[],
            remaining=[],
            details={
                "prefix": prefix,
                "backend": backend.name,
                "cause": e.kind.value,
                "backup_key": key,
            },
        ) from e

    duration = (datetime.now(UTC) - started_at).total_seconds()
    result = BackupResult(
        name=name,
        backup_id=backup_id,
        key=key,
        size=upload.size,
        block_count=upload.block_count,
        started_at=started_at,
        duration_seconds=duration,
        purged=purged.deleted,
    )

    log.info(
        "backup_cycle_completed",
        key=key,
        size=upload.size,
        blocks=upload.block_count,
        purged=len(purged.deleted),
        duration=duration,
    )
    return result
