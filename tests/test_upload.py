# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Chunked upload engine tests.

These tests verify the upload guarantees:
1. Block count is ceil(length / chunk) and never includes an empty block
2. Blocks are committed in read order and reproduce the stream
3. A failed block or commit aborts the upload and nothing is published
"""

import io
import math
import os

import pytest
import zstandard as zstd

from kvsnap.compression import ZstdStreamReader
from kvsnap.config import MiB
from kvsnap.exceptions import ConfigurationError, UploadIncomplete
from kvsnap.upload import new_block_id, read_chunk, upload_stream

from conftest import InMemoryBackend, TrickleReader, ZeroReader

KEY = "v1/prod/01HZXTEST"


# ============================================================================
# Block accounting
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "length,chunk",
    [(1, 4), (3, 4), (4, 4), (5, 4), (8, 4), (9, 4), (13, 5), (100, 7)],
)
async def test_block_count_is_ceil_of_length_over_chunk(
    backend: InMemoryBackend, length: int, chunk: int
):
    data = os.urandom(length)

    result = await upload_stream(backend, KEY, io.BytesIO(data), chunk_size=chunk)

    assert result.block_count == math.ceil(length / chunk)
    assert result.size == length
    assert all(size > 0 for size in backend.stage_sizes)
    assert backend.objects[KEY] == data


@pytest.mark.asyncio
async def test_exact_multiple_has_no_trailing_empty_block(backend: InMemoryBackend):
    result = await upload_stream(backend, KEY, io.BytesIO(b"a" * 12), chunk_size=4)

    assert result.block_count == 3
    assert backend.stage_sizes == [4, 4, 4]


@pytest.mark.asyncio
async def test_empty_stream_commits_empty_manifest(backend: InMemoryBackend):
    result = await upload_stream(backend, KEY, io.BytesIO(b""), chunk_size=4)

    assert result.block_count == 0
    assert result.size == 0
    assert backend.stage_sizes == []
    assert backend.commits == [(KEY, [])]
    assert backend.objects[KEY] == b""


@pytest.mark.asyncio
async def test_250_mib_stream_is_three_blocks_in_order():
    backend = InMemoryBackend(keep_data=False)

    result = await upload_stream(
        backend, KEY, ZeroReader(250 * MiB), chunk_size=100 * MiB
    )

    assert backend.stage_sizes == [100 * MiB, 100 * MiB, 50 * MiB]
    assert result.size == 250 * MiB
    assert backend.commits == [(KEY, result.block_ids)]


@pytest.mark.asyncio
async def test_commit_order_matches_read_order(backend: InMemoryBackend):
    data = b"AAAABBBBCCCCDD"

    result = await upload_stream(backend, KEY, io.BytesIO(data), chunk_size=4)

    key, committed = backend.commits[0]
    assert committed == result.block_ids
    assert backend.objects[key] == data


@pytest.mark.asyncio
async def test_short_reads_are_coalesced_into_full_blocks(backend: InMemoryBackend):
    data = os.urandom(20)

    await upload_stream(backend, KEY, TrickleReader(data, step=3), chunk_size=8)

    assert backend.stage_sizes == [8, 8, 4]
    assert backend.objects[KEY] == data


@pytest.mark.asyncio
async def test_chunk_size_is_clamped_to_backend_limit():
    backend = InMemoryBackend(max_block_size=4)

    await upload_stream(backend, KEY, io.BytesIO(b"x" * 10), chunk_size=100)

    assert backend.stage_sizes == [4, 4, 2]


@pytest.mark.asyncio
async def test_chunk_size_below_backend_minimum_is_rejected():
    backend = InMemoryBackend(min_block_size=5)

    with pytest.raises(ConfigurationError):
        await upload_stream(backend, KEY, io.BytesIO(b"x" * 10), chunk_size=4)

    assert backend.stage_sizes == []


# ============================================================================
# Failures
# ============================================================================

@pytest.mark.asyncio
async def test_failed_block_reports_index_and_publishes_nothing(backend: InMemoryBackend):
    backend.fail_stage_at = 1

    with pytest.raises(UploadIncomplete) as exc_info:
        await upload_stream(backend, KEY, io.BytesIO(b"x" * 12), chunk_size=4)

    err = exc_info.value
    assert err.block_index == 1
    assert err.key == KEY
    assert err.details["cause"] == "backend_unavailable"
    assert backend.commits == []
    assert KEY not in backend.objects
    assert backend.aborted == [KEY]


@pytest.mark.asyncio
async def test_failed_commit_aborts_upload(backend: InMemoryBackend):
    backend.fail_ops["commit_blocks"] = 1

    with pytest.raises(UploadIncomplete) as exc_info:
        await upload_stream(backend, KEY, io.BytesIO(b"x" * 6), chunk_size=4)

    assert exc_info.value.block_index is None
    assert exc_info.value.details["stage"] == "commit"
    assert KEY not in backend.objects
    assert backend.aborted == [KEY]


@pytest.mark.asyncio
async def test_read_failure_is_reported_as_incomplete_upload(backend: InMemoryBackend):
    class BrokenReader:
        def __init__(self):
            self.calls = 0

        async def read(self, size=-1):
            self.calls += 1
            if self.calls > 1:
                raise OSError("snapshot stream reset")
            return b"x" * size

    with pytest.raises(UploadIncomplete) as exc_info:
        await upload_stream(backend, KEY, BrokenReader(), chunk_size=4)

    assert exc_info.value.block_index == 1
    assert exc_info.value.details["stage"] == "read"
    assert backend.commits == []


# ============================================================================
# Helpers
# ============================================================================

def test_block_ids_are_unique_and_same_length():
    ids = {new_block_id() for _ in range(1000)}

    assert len(ids) == 1000
    assert {len(i) for i in ids} == {44}


@pytest.mark.asyncio
async def test_read_chunk_supports_sync_readers():
    reader = io.BytesIO(b"abcdef")

    assert await read_chunk(reader, 4) == b"abcd"
    assert await read_chunk(reader, 4) == b"ef"
    assert await read_chunk(reader, 4) == b""


@pytest.mark.asyncio
async def test_compressed_stream_round_trips(backend: InMemoryBackend):
    data = b"kv-snapshot " * 5000
    reader = ZstdStreamReader(io.BytesIO(data))

    result = await upload_stream(backend, KEY, reader, chunk_size=1024)

    stored = backend.objects[KEY]
    assert result.size == len(stored) < len(data)
    assert zstd.ZstdDecompressor().decompressobj().decompress(stored) == data
    assert reader.bytes_in == len(data)
