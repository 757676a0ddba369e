# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Compression - Streaming zstd wrapper for snapshot readers.

Compresses a snapshot on the fly so the upload engine still sees a plain
reader and memory stays bounded to one chunk plus the compressor window.
"""

import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor

import structlog
import zstandard as zstd

logger = structlog.get_logger()

# Thread pool for CPU-bound compression
_executor = ThreadPoolExecutor(max_workers=2)

# Suffix appended to backup ids whose content is zstd-compressed
ZSTD_SUFFIX = ".zst"

# Bytes pulled from the source per compression step
READ_SIZE = 4 * 1024 * 1024

DEFAULT_ZSTD_LEVEL = 3


class ZstdStreamReader:
    """
    Reader that yields the zstd-compressed form of another reader.

    Supports both awaitable and plain read(n) sources.
    """

    def __init__(self, source, level: int = DEFAULT_ZSTD_LEVEL) -> None:
        self._source = source
        self._compressor = zstd.ZstdCompressor(level=level).compressobj()
        self._buffer = bytearray()
        self._eof = False
        self.bytes_in = 0
        self.bytes_out = 0

    async def _pull(self) -> None:
        data = self._source.read(READ_SIZE)
        if inspect.isawaitable(data):
            data = await data

        loop = asyncio.get_running_loop()
        if data:
            self.bytes_in += len(data)
            out = await loop.run_in_executor(_executor, self._compressor.compress, data)
        else:
            out = self._compressor.flush()
            self._eof = True
            logger.debug(
                "snapshot_compressed",
                bytes_in=self.bytes_in,
                bytes_out=self.bytes_out + len(out) + len(self._buffer),
            )
        self._buffer.extend(out)

    async def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            while not self._eof:
                await self._pull()
            size = len(self._buffer)

        while len(self._buffer) < size and not self._eof:
            await self._pull()

        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        self.bytes_out += len(chunk)
        return chunk
