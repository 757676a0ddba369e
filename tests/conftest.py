# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for kvsnap tests.

Provides an in-memory storage backend with failure injection, snapshot
readers and test configuration helpers.
"""

import os
from typing import Dict, List, Set, Tuple, Type

import pytest

from kvsnap.config import MiB, Settings
from kvsnap.exceptions import BackendUnavailable, KVSnapError
from kvsnap.keyspace import KeySpace, new_backup_id
from kvsnap.storage import StoredObject

# Set test environment variables
os.environ["KVSNAP_ADMIN_API_KEY"] = "test-api-key-12345"

# 2020-09-13; well before any id generated during a test run
SEED_TIMESTAMP_MS = 1_600_000_000_000

ENV_VARS = (
    "KVSNAP_BACKUP_NAME",
    "KVSNAP_STORAGE_TYPE",
    "KVSNAP_PREFIX",
    "KVSNAP_BACKUP_INTERVAL_SECONDS",
    "KVSNAP_MAX_BACKUPS",
    "KVSNAP_MIN_INTERVAL_SECONDS",
    "KVSNAP_CHUNK_SIZE_MB",
    "KVSNAP_CYCLE_TIMEOUT_SECONDS",
    "KVSNAP_RETRY_ATTEMPTS",
    "KVSNAP_COMPRESS",
    "ABS_CONTAINER",
    "ABS_ACCOUNT_NAME",
    "ABS_ACCOUNT_KEY",
    "ABS_SAS_TOKEN",
    "ABS_ENDPOINT_URL",
    "S3_BUCKET",
    "S3_ENDPOINT_URL",
    "AWS_REGION",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
)


class InMemoryBackend:
    """
    Storage backend keeping everything in dicts.

    Failure injection:
        fail_ops[op] = n     -> the next n calls of op raise failure_cls
        fail_stage_at = i    -> staging block i of any upload fails
        fail_delete_keys     -> deleting one of these keys fails
        list_reversed        -> listings come back newest first
    """

    name = "memory"

    def __init__(
        self,
        container: str = "backups",
        *,
        max_block_size: int = 100 * MiB,
        min_block_size: int = 1,
        keep_data: bool = True,
    ) -> None:
        self.container = container
        self.max_block_size = max_block_size
        self.min_block_size = min_block_size
        self.keep_data = keep_data

        self.containers: Set[str] = set()
        self.objects: Dict[str, bytes] = {}
        self.staged: Dict[str, Dict[str, bytes]] = {}
        self.stage_sizes: List[int] = []
        self.commits: List[Tuple[str, List[str]]] = []
        self.aborted: List[str] = []
        self.deleted: List[str] = []
        self.closed = False

        self.fail_ops: Dict[str, int] = {}
        self.failure_cls: Type[KVSnapError] = BackendUnavailable
        self.fail_stage_at: int | None = None
        self.fail_delete_keys: Set[str] = set()
        self.list_reversed = False

    def _maybe_fail(self, op: str) -> None:
        remaining = self.fail_ops.get(op, 0)
        if remaining:
            self.fail_ops[op] = remaining - 1
            raise self.failure_cls(
                f"injected {op} failure",
                details={"backend": self.name, "operation": op},
            )

    def put(self, key: str, data: bytes = b"x") -> None:
        self.objects[key] = data

    async def ensure_container(self, name: str | None = None) -> None:
        self._maybe_fail("ensure_container")
        self.containers.add(name or self.container)

    async def container_exists(self, name: str | None = None) -> bool:
        self._maybe_fail("container_exists")
        return (name or self.container) in self.containers

    async def list_keys(self, prefix: str) -> List[StoredObject]:
        self._maybe_fail("list_keys")
        objects = [
            StoredObject(key=k, size=len(v))
            for k, v in sorted(self.objects.items())
            if k.startswith(prefix)
        ]
        if self.list_reversed:
            objects.reverse()
        return objects

    async def delete(self, key: str) -> None:
        self._maybe_fail("delete")
        if key in self.fail_delete_keys:
            raise BackendUnavailable(f"injected delete failure for {key}", details={"key": key})
        self.objects.pop(key, None)
        self.deleted.append(key)

    async def copy(self, source_key: str, dest_key: str) -> None:
        self._maybe_fail("copy")
        self.objects[dest_key] = self.objects[source_key]

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        self._maybe_fail("stage_block")
        blocks = self.staged.setdefault(key, {})
        if self.fail_stage_at is not None and len(blocks) == self.fail_stage_at:
            raise BackendUnavailable(f"injected failure staging block {len(blocks)}")
        blocks[block_id] = bytes(data) if self.keep_data else b""
        self.stage_sizes.append(len(data))

    async def commit_blocks(self, key: str, block_ids) -> None:
        self._maybe_fail("commit_blocks")
        blocks = self.staged.pop(key, {})
        self.objects[key] = b"".join(blocks[b] for b in block_ids)
        self.commits.append((key, list(block_ids)))

    async def abort_upload(self, key: str) -> None:
        self.staged.pop(key, None)
        self.aborted.append(key)

    async def close(self) -> None:
        self.closed = True


class ZeroReader:
    """Lazily produces `total` zero bytes; never holds more than one read."""

    def __init__(self, total: int) -> None:
        self.remaining = total

    async def read(self, size: int = -1) -> bytes:
        n = self.remaining if size < 0 else min(size, self.remaining)
        self.remaining -= n
        return bytes(n)


class TrickleReader:
    """Returns at most `step` bytes per read, like a slow socket."""

    def __init__(self, data: bytes, step: int) -> None:
        self.data = data
        self.step = step
        self.pos = 0

    async def read(self, size: int = -1) -> bytes:
        n = self.step if size < 0 else min(size, self.step)
        chunk = self.data[self.pos : self.pos + n]
        self.pos += len(chunk)
        return chunk


def seed_backups(
    backend: InMemoryBackend,
    keyspace: KeySpace,
    prefix: str,
    count: int,
    *,
    start_ms: int = SEED_TIMESTAMP_MS,
    size: int = 3,
) -> List[str]:
    """Store count backups one second apart; returns their ids, oldest first."""
    names = []
    for i in range(count):
        name = new_backup_id(timestamp_ms=start_ms + i * 1000)
        backend.put(keyspace.key_for(prefix, name), b"s" * size)
        names.append(name)
    return names


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def keyspace() -> KeySpace:
    return KeySpace()


@pytest.fixture
def settings() -> Settings:
    """Fast settings: tiny chunks, no interval floor, no retries."""
    return Settings(
        chunk_size=4,
        min_interval_seconds=0.0,
        cycle_timeout_seconds=5.0,
        retry_attempts=1,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every variable kvsnap reads from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
