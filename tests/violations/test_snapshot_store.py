import json

import pytest

from wardcord.datatypes.discord_datatypes import UserID
from wardcord.datatypes.violation_datatypes import FeatureRestriction
from wardcord.violations.snapshot_store import SNAPSHOT_VERSION, RestrictionSnapshot, SnapshotStore


@pytest.mark.asyncio
async def test_save_then_load(tmp_path):
    store = SnapshotStore(tmp_path / "nested" / "snapshot.json")
    snapshot = RestrictionSnapshot(
        restrictions={
            UserID(1): frozenset({FeatureRestriction.MESSAGE_LINK, FeatureRestriction.RATE_LIMIT}),
            UserID(2): frozenset(),
        }
    )

    assert await store.save(snapshot) is True

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert on_disk["version"] == SNAPSHOT_VERSION
    assert on_disk["restrictions"] == {"1": ["MESSAGE_LINK", "RATE_LIMIT"]}
    assert "savedAt" in on_disk

    loaded = await store.load()
    assert loaded is not None
    assert loaded.restrictions == {UserID(1): {FeatureRestriction.MESSAGE_LINK, FeatureRestriction.RATE_LIMIT}}
    assert loaded.saved_at is not None


@pytest.mark.asyncio
async def test_save_leaves_no_temp_files(tmp_path):
    store = SnapshotStore(tmp_path / "snapshot.json")
    await store.save(RestrictionSnapshot(restrictions={UserID(1): frozenset({FeatureRestriction.MESSAGE_LINK})}))
    await store.save(RestrictionSnapshot(restrictions={UserID(2): frozenset({FeatureRestriction.MESSAGE_EMBED})}))
    assert [p.name for p in tmp_path.iterdir()] == ["snapshot.json"]


@pytest.mark.asyncio
async def test_missing_file_loads_none(tmp_path):
    assert await SnapshotStore(tmp_path / "absent.json").load() is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"version": 2, "restrictions": {}}),
        json.dumps({"version": 1, "restrictions": ["MESSAGE_LINK"]}),
        json.dumps({"version": 1, "restrictions": {"not-a-user": ["MESSAGE_LINK"]}}),
    ],
)
async def test_corrupt_snapshot_loads_none(tmp_path, content):
    path = tmp_path / "snapshot.json"
    path.write_text(content, encoding="utf-8")
    assert await SnapshotStore(path).load() is None


@pytest.mark.asyncio
async def test_unknown_restrictions_skipped(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps({"version": 1, "restrictions": {"1": ["MESSAGE_LINK", "LEVITATE"], "2": ["LEVITATE"]}, "savedAt": "garbage"}),
        encoding="utf-8",
    )
    loaded = await SnapshotStore(path).load()
    assert loaded is not None
    assert loaded.restrictions == {UserID(1): {FeatureRestriction.MESSAGE_LINK}}
    assert loaded.saved_at is None


@pytest.mark.asyncio
async def test_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = SnapshotStore(blocker / "snapshot.json")
    assert await store.save(RestrictionSnapshot()) is False
