# tests/test_storage.py
import json
import stat

import pytest

from staking_pools.aggregator import rebuild
from staking_pools.interfaces.storage import SnapshotFile, atomic_write_text

FIXED_NOW = 1_800_000_000


@pytest.mark.asyncio
async def test_save_then_load(tmp_path):
    path = tmp_path / "delegators.json"
    storage = SnapshotFile(path)
    snapshot = rebuild(
        {"a.poolv1.near": {"alice.near", "bob.near"}, "b.poolv1.near": {"bob.near"}},
        FIXED_NOW,
    )

    await storage.save(snapshot)
    loaded = await storage.load()

    assert loaded.timestamp == FIXED_NOW
    assert loaded.forward == snapshot.forward
    assert loaded.inverse == snapshot.inverse


@pytest.mark.asyncio
async def test_saved_document_format(tmp_path):
    path = tmp_path / "delegators.json"
    snapshot = rebuild({"b.near": {"alice.near"}, "a.near": {"alice.near"}}, FIXED_NOW)

    await SnapshotFile(path).save(snapshot)

    content = path.read_text()
    assert json.loads(content) == {
        "timestamp": FIXED_NOW,
        "delegators": {"alice.near": ["a.near", "b.near"]},
    }
    assert '\n  "delegators"' in content
    assert [p.name for p in tmp_path.iterdir()] == ["delegators.json"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    ["", "   \n", "{not json", '{"timestamp": "yesterday"}', "[1, 2, 3]"],
)
async def test_unusable_file_loads_default(tmp_path, content):
    path = tmp_path / "delegators.json"
    path.write_text(content)

    snapshot = await SnapshotFile(path).load()

    assert snapshot.timestamp == 0
    assert snapshot.forward == {}
    assert snapshot.inverse == {}


@pytest.mark.asyncio
async def test_missing_file_loads_default(tmp_path):
    snapshot = await SnapshotFile(tmp_path / "nope" / "delegators.json").load()
    assert snapshot.timestamp == 0


def test_atomic_write_replaces_existing_file(tmp_path):
    path = tmp_path / "delegators.json"
    path.write_text("x" * 10_000)

    atomic_write_text(path, '{"timestamp": 1}')

    assert path.read_text() == '{"timestamp": 1}'
    assert [p.name for p in tmp_path.iterdir()] == ["delegators.json"]


def test_atomic_write_creates_parent_directory(tmp_path):
    path = tmp_path / "cache" / "delegators.json"
    atomic_write_text(path, "{}")
    assert path.read_text() == "{}"


def test_atomic_write_leaves_file_world_readable(tmp_path):
    path = tmp_path / "delegators.json"

    atomic_write_text(path, "{}")

    assert stat.S_IMODE(path.stat().st_mode) == 0o644
