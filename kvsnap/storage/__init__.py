# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Storage Backends - Capability contract every object store must satisfy.

A backend is bound to one account and one container (bucket). It exposes
the container, listing, delete and copy primitives plus the three block
operations the chunked upload engine drives: stage a block, commit an
ordered block list, abort an upload.

Backends never retry and never cache listings. Vendor exceptions are
translated into BackendUnavailable / BackendAuthFailed at this boundary.
"""

from dataclasses import dataclass
from typing import List, Protocol, Sequence


@dataclass(frozen=True)
class StoredObject:
    """A single object as returned by a backend listing."""

    key: str
    size: int


class StorageBackend(Protocol):
    """Protocol for backup storage backends."""

    # Short backend label used in logs and error details ("abs", "s3")
    name: str

    # Container (or bucket) this backend writes to
    container: str

    # Largest block the backend accepts in a single stage_block call
    max_block_size: int

    # Smallest block the backend accepts, except for the last block
    min_block_size: int

    async def ensure_container(self, name: str | None = None) -> None:
        """Create the container if absent. An existing container is success."""
        ...

    async def container_exists(self, name: str | None = None) -> bool: ...

    async def list_keys(self, prefix: str) -> List[StoredObject]:
        """List every object whose key starts with prefix, sorted by key."""
        ...

    async def delete(self, key: str) -> None: ...

    async def copy(self, source_key: str, dest_key: str) -> None:
        """Server-side copy within the bound container."""
        ...

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None: ...

    async def commit_blocks(self, key: str, block_ids: Sequence[str]) -> None:
        """Atomically publish key as the ordered concatenation of block_ids."""
        ...

    async def abort_upload(self, key: str) -> None:
        """Drop any staged-but-uncommitted state for key."""
        ...

    async def close(self) -> None: ...


__all__ = [
    "StoredObject",
    "StorageBackend",
]
