# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Key Space - Storage key layout for backups.

Every backup lives under ``<namespace-version>/<logical-prefix>/<backup-id>``.
The namespace version is a fixed literal reserved for future layout
migrations; the logical prefix scopes backups per cluster or tenant; the
backup id is a ULID so that lexical order equals creation order.

Prefix matching always includes the trailing delimiter: listing prefix
"foo" never returns backups stored under "foobar". Only direct children
of a prefix are backups of it: "prod/east/<id>" belongs to "prod/east",
not to "prod".
"""

import time
from dataclasses import dataclass
from typing import List

import structlog
from ulid import ULID

from kvsnap.config import DEFAULT_NAMESPACE_VERSION
from kvsnap.storage import StorageBackend

logger = structlog.get_logger()

DELIMITER = "/"

# Length of the canonical ULID string
ULID_LENGTH = 26


@dataclass(frozen=True)
class BackupEntry:
    """A backup as seen by callers: logical id plus size."""

    name: str  # Backup id relative to the prefix
    size: int  # Bytes
    key: str  # Full storage key


_last_issued_ms = 0


def new_backup_id(suffix: str = "", *, timestamp_ms: int | None = None) -> str:
    """
    Return a fresh, lexically time-ordered backup identifier.

    Ids issued by this process without an explicit timestamp are strictly
    increasing, even when two are requested within the same millisecond.
    """
    global _last_issued_ms
    if timestamp_ms is None:
        timestamp_ms = max(int(time.time() * 1000), _last_issued_ms + 1)
        _last_issued_ms = timestamp_ms
    # ULID.from_timestamp reads ints as milliseconds
    return f"{ULID.from_timestamp(timestamp_ms)}{suffix}"


@dataclass(frozen=True)
class KeySpace:
    """Composes and decomposes storage keys for one namespace version."""

    namespace_version: str = DEFAULT_NAMESPACE_VERSION

    def prefix_path(self, prefix: str) -> str:
        """
        Return the storage-key prefix for a logical prefix.

        The result always ends with the delimiter, which is what makes
        listing prefix-exact.
        """
        logical = prefix.strip(DELIMITER)
        if not logical:
            return f"{self.namespace_version}{DELIMITER}"
        return f"{self.namespace_version}{DELIMITER}{logical}{DELIMITER}"

    def key_for(self, prefix: str, backup_id: str) -> str:
        if not backup_id or backup_id.startswith(DELIMITER):
            raise ValueError(f"Invalid backup id: {backup_id!r}")
        return self.prefix_path(prefix) + backup_id

    def relative(self, prefix: str, key: str) -> str:
        """Strip namespace and prefix from a storage key."""
        base = self.prefix_path(prefix)
        if not key.startswith(base):
            raise ValueError(f"Key {key!r} is not under {base!r}")
        return key[len(base) :]


async def list_backups(
    backend: StorageBackend,
    keyspace: KeySpace,
    prefix: str,
) -> List[BackupEntry]:
    """
    List backups under a logical prefix, oldest first.

    Args:
        backend: Storage backend bound to the target container
        keyspace: Key layout
        prefix: Logical prefix (e.g. cluster name)

    Returns:
        Entries sorted ascending by backup id
    """
    base = keyspace.prefix_path(prefix)
    objects = await backend.list_keys(base)

    entries = [
        BackupEntry(name=obj.key[len(base) :], size=obj.size, key=obj.key)
        for obj in objects
        # Backends filter by raw prefix; keep the boundary check local too
        if obj.key.startswith(base) and len(obj.key) > len(base)
    ]
    # Only direct children; "prod/east" backups never count toward "prod"
    entries = [e for e in entries if DELIMITER not in e.name]
    entries.sort(key=lambda e: e.name)
    return entries


async def total_size(
    backend: StorageBackend,
    keyspace: KeySpace,
    prefix: str,
) -> int:
    """Sum of the sizes of every backup under a logical prefix."""
    entries = await list_backups(backend, keyspace, prefix)
    return sum(e.size for e in entries)


async def copy_prefix(
    backend: StorageBackend,
    keyspace: KeySpace,
    from_prefix: str,
    to_prefix: str,
    *,
    regenerate_ids: bool = False,
) -> List[str]:
    """
    Copy every backup under from_prefix to to_prefix in the same container.

    By default backup ids are preserved, so copied backups keep their place
    in the retention order. With regenerate_ids=True each copy gets a fresh
    id, issued in source order so relative order is kept.

    Returns:
        Storage keys written under to_prefix
    """
    global _last_issued_ms
    if keyspace.prefix_path(from_prefix) == keyspace.prefix_path(to_prefix):
        raise ValueError("from_prefix and to_prefix must differ")

    entries = await list_backups(backend, keyspace, from_prefix)
    written: List[str] = []
    base_ms = max(int(time.time() * 1000), _last_issued_ms + 1)
    if regenerate_ids:
        # Later backups must sort after every copy
        _last_issued_ms = max(_last_issued_ms, base_ms + len(entries))

    for i, entry in enumerate(entries):
        if regenerate_ids:
            # One millisecond apart keeps ids strictly ordered
            suffix = entry.name[ULID_LENGTH:]
            backup_id = new_backup_id(suffix, timestamp_ms=base_ms + i)
        else:
            backup_id = entry.name
        dest_key = keyspace.key_for(to_prefix, backup_id)
        await backend.copy(entry.key, dest_key)
        written.append(dest_key)
        logger.debug("backup_copied", source_key=entry.key, dest_key=dest_key)

    logger.info(
        "prefix_copied",
        from_prefix=from_prefix,
        to_prefix=to_prefix,
        count=len(written),
        regenerate_ids=regenerate_ids,
    )
    return written
