# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapshot sources - the boundary to whatever produces snapshot bytes.

Taking a consistent snapshot of the cluster is somebody else's job. This
module only fixes the shape of what the backup writer consumes: a source
that can be opened (once per attempt) into a reader with ``read(n)``.
"""

import io
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Protocol

import aiofiles


class SnapshotReader(Protocol):
    """Anything with an awaitable read(n) returning b"" at end of stream."""

    async def read(self, size: int = -1) -> bytes: ...


class SnapshotSource(Protocol):
    """Produces a fresh snapshot stream each time it is opened."""

    def open(self) -> AsyncContextManager[SnapshotReader]: ...


class FileSnapshotSource:
    """Snapshot already written to local disk (e.g. by etcdctl snapshot save)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def open(self) -> AsyncContextManager[SnapshotReader]:
        return aiofiles.open(self.path, "rb")

    def __repr__(self) -> str:
        return f"FileSnapshotSource({str(self.path)!r})"


class _BytesReader:
    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


class BytesSnapshotSource:
    """Snapshot held in memory; convenient for small stores and tests."""

    def __init__(self, data: bytes) -> None:
        self.data = data

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[SnapshotReader]:
        yield _BytesReader(self.data)

    def open(self) -> AsyncContextManager[SnapshotReader]:
        return self._open()
