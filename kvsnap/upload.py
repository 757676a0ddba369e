# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Upload Engine - Chunked, all-or-nothing upload of a byte stream.

The stream is read one bounded chunk at a time; each chunk is staged as a
block with a fresh random id, and once every block is staged the ordered
block list is committed as the final object. Nothing is visible to readers
until that commit succeeds.

The engine does not retry. A failing block aborts the upload and is
reported with its index so the caller can decide what to do next.
"""

import base64
import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, List

import structlog

from kvsnap.exceptions import ConfigurationError, UploadIncomplete, error_kind
from kvsnap.storage import StorageBackend

logger = structlog.get_logger()


@dataclass
class UploadResult:
    """Outcome of a committed upload."""

    key: str
    size: int
    block_ids: List[str] = field(default_factory=list)

    @property
    def block_count(self) -> int:
        return len(self.block_ids)


def new_block_id() -> str:
    """
    Return a random block id.

    Base64 of a UUID hex string: every id has the same length, which
    Azure requires for all blocks of one blob.
    """
    return base64.b64encode(uuid.uuid4().hex.encode("ascii")).decode("ascii")


def effective_chunk_size(backend: StorageBackend, chunk_size: int) -> int:
    """Clamp the configured chunk size to what the backend accepts."""
    size = min(chunk_size, backend.max_block_size)
    if size < backend.min_block_size:
        raise ConfigurationError(
            f"chunk_size {chunk_size} is below the {backend.name} minimum of {backend.min_block_size}",
            details={"backend": backend.name, "chunk_size": chunk_size},
        )
    return size


async def read_chunk(reader: Any, size: int) -> bytes:
    """
    Read up to size bytes, looping over short reads.

    Returns fewer than size bytes only at end of stream. Works with both
    awaitable and plain read(n) methods.
    """
    parts: List[bytes] = []
    remaining = size
    while remaining > 0:
        data = reader.read(remaining)
        if inspect.isawaitable(data):
            data = await data
        if not data:
            break
        parts.append(data)
        remaining -= len(data)

    if len(parts) == 1:
        return bytes(parts[0])
    return b"".join(parts)


async def _abort_quietly(backend: StorageBackend, key: str) -> None:
    try:
        await backend.abort_upload(key)
    except Exception as e:
        # The original failure is what gets reported
        logger.warning("upload_abort_failed", backend=backend.name, key=key, error=str(e))


async def upload_stream(
    backend: StorageBackend,
    key: str,
    reader: Any,
    *,
    chunk_size: int,
) -> UploadResult:
    """
    Upload a stream of unknown length as one object.

    Args:
        backend: Target storage backend
        key: Full storage key of the object to create
        reader: Object with read(n); awaitable or not
        chunk_size: Maximum block size (clamped to the backend limit)

    Returns:
        UploadResult with total size and committed block ids in order

    Raises:
        UploadIncomplete: a read, block upload or commit failed; nothing was
            committed
        ConfigurationError: the chunk size cannot work with this backend
    """
    size = effective_chunk_size(backend, chunk_size)
    block_ids: List[str] = []
    total = 0

    try:
        while True:
            index = len(block_ids)
            try:
                chunk = await read_chunk(reader, size)
            except Exception as e:
                raise UploadIncomplete(
                    f"Reading snapshot failed before block {index}: {e}",
                    key=key,
                    block_index=index,
                    details={"backend": backend.name, "stage": "read"},
                ) from e

            # Never stage an empty block
            if not chunk:
                break

            block_id = new_block_id()
            try:
                await backend.stage_block(key, block_id, chunk)
            except ConfigurationError:
                raise
            except Exception as e:
                raise UploadIncomplete(
                    f"Block {index} of {key} failed: {e}",
                    key=key,
                    block_index=index,
                    details={
                        "backend": backend.name,
                        "stage": "stage_block",
                        "cause": error_kind(e).value,
                    },
                ) from e

            block_ids.append(block_id)
            total += len(chunk)
            logger.debug("block_staged", key=key, block_index=index, size=len(chunk))

            # A short chunk only happens at end of stream
            if len(chunk) < size:
                break

        try:
            await backend.commit_blocks(key, block_ids)
        except Exception as e:
            raise UploadIncomplete(
                f"Committing {len(block_ids)} blocks of {key} failed: {e}",
                key=key,
                block_index=None,
                details={
                    "backend": backend.name,
                    "stage": "commit",
                    "cause": error_kind(e).value,
                },
            ) from e

    except BaseException:
        await _abort_quietly(backend, key)
        raise

    logger.info(
        "upload_committed",
        backend=backend.name,
        key=key,
        size=total,
        blocks=len(block_ids),
    )
    return UploadResult(key=key, size=total, block_ids=block_ids)
