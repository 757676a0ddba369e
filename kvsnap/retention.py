# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Retention - Count-based purge of old backups.

Retention is evaluated per logical prefix from a single listing snapshot:
backups are sorted by id (oldest first, independent of the order the
backend returned them in) and everything beyond the newest max_backups is
deleted, oldest first. The first failed delete stops the purge; what was
and was not removed is reported, and the next cycle picks up the rest.
"""

from dataclasses import dataclass, field
from typing import List

import structlog

from kvsnap.exceptions import KVSnapError, PurgePartial
from kvsnap.keyspace import BackupEntry, KeySpace, list_backups
from kvsnap.storage import StorageBackend

logger = structlog.get_logger()


@dataclass
class PurgeResult:
    """Result of a completed purge."""

    prefix: str
    max_backups: int
    deleted: List[str] = field(default_factory=list)
    retained: List[str] = field(default_factory=list)


def select_expired(entries: List[BackupEntry], max_backups: int) -> List[BackupEntry]:
    """
    Return the entries to delete, oldest first.

    max_backups <= 0 disables retention and selects nothing.
    """
    if max_backups <= 0:
        return []
    ordered = sorted(entries, key=lambda e: e.name)
    excess = len(ordered) - max_backups
    if excess <= 0:
        return []
    return ordered[:excess]


async def purge(
    backend: StorageBackend,
    keyspace: KeySpace,
    prefix: str,
    max_backups: int,
) -> PurgeResult:
    """
    Delete the oldest backups under prefix beyond max_backups.

    Args:
        backend: Storage backend bound to the target container
        keyspace: Key layout
        prefix: Logical prefix whose backups are retained
        max_backups: Number of newest backups to keep (<= 0 keeps all)

    Returns:
        PurgeResult listing deleted and retained backup ids

    Raises:
        PurgePartial: a delete failed; carries the ids removed so far and the
            ids that still should be removed
    """
    result = PurgeResult(prefix=prefix, max_backups=max_backups)

    if max_backups <= 0:
        logger.debug("purge_disabled", prefix=prefix, max_backups=max_backups)
        return result

    entries = await list_backups(backend, keyspace, prefix)
    expired = select_expired(entries, max_backups)
    expired_names = {e.name for e in expired}
    result.retained = [e.name for e in entries if e.name not in expired_names]

    for position, entry in enumerate(expired):
        try:
            await backend.delete(entry.key)
        except KVSnapError as e:
            remaining = [x.name for x in expired[position:]]
            logger.error(
                "purge_partial",
                prefix=prefix,
                failed=entry.name,
                deleted=len(result.deleted),
                remaining=len(remaining),
                error=str(e),
            )
            raise PurgePartial(
                f"Purge of {prefix!r} stopped at {entry.name}: {e.message}",
                deleted=result.deleted,
                remaining=remaining,
                details={"prefix": prefix, "backend": backend.name, "cause": e.kind.value},
            ) from e
        result.deleted.append(entry.name)

    if result.deleted:
        logger.info(
            "purge_completed",
            prefix=prefix,
            deleted=len(result.deleted),
            retained=len(result.retained),
        )
    return result
