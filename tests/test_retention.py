# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retention tests.

These tests verify the purge guarantees:
1. Exactly count - max_backups backups are deleted, oldest first
2. The newest max_backups are kept whatever order the backend lists in
3. max_backups <= 0 deletes nothing
4. A failed delete stops the purge and reports what is left
"""

import random

import pytest

from kvsnap.exceptions import PurgePartial
from kvsnap.keyspace import BackupEntry, KeySpace, list_backups
from kvsnap.retention import purge, select_expired

from conftest import InMemoryBackend, SEED_TIMESTAMP_MS, seed_backups


def _entries(names):
    return [BackupEntry(name=n, size=1, key=f"v1/p/{n}") for n in names]


# ============================================================================
# Selection
# ============================================================================

def test_select_expired_ignores_input_order():
    names = [f"{i:03d}" for i in range(10)]
    shuffled = names[:]
    random.Random(7).shuffle(shuffled)

    expired = select_expired(_entries(shuffled), 4)

    assert [e.name for e in expired] == names[:6]


@pytest.mark.parametrize("max_backups", [0, -1, -100])
def test_select_expired_disabled(max_backups: int):
    assert select_expired(_entries(["a", "b", "c"]), max_backups) == []


def test_select_expired_under_limit():
    assert select_expired(_entries(["a", "b"]), 2) == []
    assert select_expired(_entries(["a", "b"]), 5) == []


# ============================================================================
# Purge
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("count,max_backups", [(5, 2), (10, 1), (3, 3), (4, 10)])
async def test_purge_keeps_newest(
    backend: InMemoryBackend, keyspace: KeySpace, count: int, max_backups: int
):
    names = seed_backups(backend, keyspace, "prod", count)

    result = await purge(backend, keyspace, "prod", max_backups)

    excess = max(count - max_backups, 0)
    assert result.deleted == names[:excess]
    assert result.retained == names[excess:]
    remaining = [e.name for e in await list_backups(backend, keyspace, "prod")]
    assert remaining == names[excess:]


@pytest.mark.asyncio
async def test_purge_does_not_trust_backend_order(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "prod", 6)
    backend.list_reversed = True

    result = await purge(backend, keyspace, "prod", 2)

    assert result.deleted == names[:4]
    assert set(backend.objects) == {keyspace.key_for("prod", n) for n in names[4:]}


@pytest.mark.asyncio
@pytest.mark.parametrize("max_backups", [0, -3])
async def test_purge_disabled_deletes_nothing(
    backend: InMemoryBackend, keyspace: KeySpace, max_backups: int
):
    seed_backups(backend, keyspace, "prod", 4)

    result = await purge(backend, keyspace, "prod", max_backups)

    assert result.deleted == []
    assert backend.deleted == []
    assert len(backend.objects) == 4


@pytest.mark.asyncio
async def test_purge_only_touches_its_prefix(backend: InMemoryBackend, keyspace: KeySpace):
    seed_backups(backend, keyspace, "prod", 3)
    other = seed_backups(backend, keyspace, "production", 3)

    await purge(backend, keyspace, "prod", 1)

    remaining = [e.name for e in await list_backups(backend, keyspace, "production")]
    assert remaining == other


@pytest.mark.asyncio
async def test_purge_leaves_nested_prefix_alone(backend: InMemoryBackend, keyspace: KeySpace):
    own = seed_backups(backend, keyspace, "prod", 3)
    nested = seed_backups(backend, keyspace, "prod/east", 5, start_ms=SEED_TIMESTAMP_MS + 60_000)

    result = await purge(backend, keyspace, "prod", 3)

    assert result.deleted == []
    assert result.retained == own
    remaining = [e.name for e in await list_backups(backend, keyspace, "prod/east")]
    assert remaining == nested


@pytest.mark.asyncio
async def test_purge_of_empty_prefix_only_counts_top_level(
    backend: InMemoryBackend, keyspace: KeySpace
):
    top = seed_backups(backend, keyspace, "", 3)
    tenant = seed_backups(backend, keyspace, "prod", 4, start_ms=SEED_TIMESTAMP_MS + 60_000)

    result = await purge(backend, keyspace, "", 2)

    assert result.deleted == top[:1]
    assert [e.name for e in await list_backups(backend, keyspace, "prod")] == tenant


@pytest.mark.asyncio
async def test_failed_delete_reports_partial_purge(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "prod", 5)
    backend.fail_delete_keys.add(keyspace.key_for("prod", names[1]))

    with pytest.raises(PurgePartial) as exc_info:
        await purge(backend, keyspace, "prod", 1)

    err = exc_info.value
    assert err.deleted == names[:1]
    assert err.remaining == names[1:4]
    assert err.details["cause"] == "backend_unavailable"
    # Newest always survives; nothing past the failure was attempted
    assert backend.deleted == [keyspace.key_for("prod", names[0])]
    assert keyspace.key_for("prod", names[4]) in backend.objects


@pytest.mark.asyncio
async def test_next_purge_finishes_the_job(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "prod", 4)
    failing = keyspace.key_for("prod", names[0])
    backend.fail_delete_keys.add(failing)

    with pytest.raises(PurgePartial):
        await purge(backend, keyspace, "prod", 2)

    backend.fail_delete_keys.clear()
    result = await purge(backend, keyspace, "prod", 2)

    assert result.deleted == names[:2]
    assert result.retained == names[2:]
