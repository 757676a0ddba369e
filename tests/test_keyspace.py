# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Key space tests: key layout, prefix-exact listing, sizes and prefix copies.
"""

import pytest

from kvsnap.keyspace import (
    KeySpace,
    copy_prefix,
    list_backups,
    new_backup_id,
    total_size,
)

from conftest import InMemoryBackend, SEED_TIMESTAMP_MS, seed_backups


# ============================================================================
# Key layout
# ============================================================================

def test_prefix_path_always_ends_with_delimiter(keyspace: KeySpace):
    assert keyspace.prefix_path("foo") == "v1/foo/"
    assert keyspace.prefix_path("/foo/") == "v1/foo/"
    assert keyspace.prefix_path("team/foo") == "v1/team/foo/"
    assert keyspace.prefix_path("") == "v1/"


def test_key_for_and_relative_are_inverse(keyspace: KeySpace):
    key = keyspace.key_for("prod", "01HZX")

    assert key == "v1/prod/01HZX"
    assert keyspace.relative("prod", key) == "01HZX"


@pytest.mark.parametrize("backup_id", ["", "/abc"])
def test_key_for_rejects_invalid_ids(keyspace: KeySpace, backup_id: str):
    with pytest.raises(ValueError):
        keyspace.key_for("prod", backup_id)


def test_relative_rejects_foreign_keys(keyspace: KeySpace):
    with pytest.raises(ValueError):
        keyspace.relative("foo", "v1/foobar/x")


def test_custom_namespace_version():
    assert KeySpace("v2").key_for("prod", "id") == "v2/prod/id"


def test_backup_ids_sort_by_creation_time():
    ids = [new_backup_id(timestamp_ms=SEED_TIMESTAMP_MS + i) for i in range(50)]

    assert sorted(ids) == ids
    assert len(set(ids)) == 50


def test_backup_ids_issued_in_a_burst_never_tie():
    ids = [new_backup_id() for _ in range(200)]

    assert sorted(ids) == ids
    assert len(set(ids)) == 200


def test_backup_id_suffix():
    assert new_backup_id(".zst").endswith(".zst")


# ============================================================================
# Listing
# ============================================================================

@pytest.mark.asyncio
async def test_listing_is_prefix_exact(backend: InMemoryBackend, keyspace: KeySpace):
    backend.put("v1/foo/A")
    backend.put("v1/foobar/x")
    backend.put("v1/foo")

    entries = await list_backups(backend, keyspace, "foo")

    assert [e.name for e in entries] == ["A"]
    assert entries[0].key == "v1/foo/A"


@pytest.mark.asyncio
async def test_listing_skips_nested_prefixes(backend: InMemoryBackend, keyspace: KeySpace):
    own = seed_backups(backend, keyspace, "prod", 2)
    nested = seed_backups(backend, keyspace, "prod/east", 3)

    assert [e.name for e in await list_backups(backend, keyspace, "prod")] == own
    assert [e.name for e in await list_backups(backend, keyspace, "prod/east")] == nested
    assert await total_size(backend, keyspace, "prod") == 6


@pytest.mark.asyncio
async def test_empty_prefix_lists_only_top_level(backend: InMemoryBackend, keyspace: KeySpace):
    top = seed_backups(backend, keyspace, "", 2)
    seed_backups(backend, keyspace, "prod", 2)

    assert [e.name for e in await list_backups(backend, keyspace, "")] == top


@pytest.mark.asyncio
async def test_listing_is_sorted_oldest_first(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "prod", 5)
    backend.list_reversed = True

    entries = await list_backups(backend, keyspace, "prod")

    assert [e.name for e in entries] == names


@pytest.mark.asyncio
async def test_listing_empty_prefix(backend: InMemoryBackend, keyspace: KeySpace):
    assert await list_backups(backend, keyspace, "nothing-here") == []


@pytest.mark.asyncio
async def test_total_size(backend: InMemoryBackend, keyspace: KeySpace):
    backend.put("v1/prod/a", b"12345")
    backend.put("v1/prod/b", b"123")
    backend.put("v1/production/c", b"1234567")

    assert await total_size(backend, keyspace, "prod") == 8


# ============================================================================
# Prefix copies
# ============================================================================

@pytest.mark.asyncio
async def test_copy_prefix_preserves_ids(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "old", 3)

    written = await copy_prefix(backend, keyspace, "old", "new")

    assert written == [keyspace.key_for("new", n) for n in names]
    assert [e.name for e in await list_backups(backend, keyspace, "new")] == names
    # Source untouched
    assert len(await list_backups(backend, keyspace, "old")) == 3


@pytest.mark.asyncio
async def test_copy_prefix_can_regenerate_ids(backend: InMemoryBackend, keyspace: KeySpace):
    names = seed_backups(backend, keyspace, "old", 3)
    zst = new_backup_id(".zst", timestamp_ms=SEED_TIMESTAMP_MS + 10_000)
    backend.put(keyspace.key_for("old", zst), b"z")

    await copy_prefix(backend, keyspace, "old", "new", regenerate_ids=True)

    copied = [e.name for e in await list_backups(backend, keyspace, "new")]
    assert len(copied) == 4
    assert not set(copied) & set(names + [zst])
    # Order kept; the newest copy is the compressed one
    assert copied[-1].endswith(".zst")
    assert backend.objects[keyspace.key_for("new", copied[-1])] == b"z"


@pytest.mark.asyncio
async def test_backup_after_regenerated_copy_sorts_last(
    backend: InMemoryBackend, keyspace: KeySpace
):
    seed_backups(backend, keyspace, "old", 500)

    written = await copy_prefix(backend, keyspace, "old", "new", regenerate_ids=True)
    next_id = new_backup_id()

    copied = [keyspace.relative("new", k) for k in written]
    assert max(copied) < next_id


@pytest.mark.asyncio
async def test_copy_prefix_to_itself_is_rejected(backend: InMemoryBackend, keyspace: KeySpace):
    with pytest.raises(ValueError):
        await copy_prefix(backend, keyspace, "prod", "/prod/")
