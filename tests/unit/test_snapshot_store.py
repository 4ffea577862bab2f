"""Unit tests for the snapshot persistence adapters."""

from __future__ import annotations

from pathlib import Path

import pytest

from capx.infra.result import CacheCorruptionError
from capx.services.snapshot_store import InMemorySnapshotStore, JsonFileSnapshotStore

SNAPSHOT = {
    "code_index": {"36": {"code": 36, "name": "Comunicação", "level": 1, "root_code": 36}},
    "adjacency": {"36": []},
    "language": "pt",
    "timestamp": 1_700_000_000_000,
}


@pytest.mark.unit
def test_in_memory_store_round_trip_and_isolation() -> None:
    store = InMemorySnapshotStore()
    payload = dict(SNAPSHOT)
    store.save("capx-unified-cache", payload)
    payload["language"] = "en"

    loaded = store.load("capx-unified-cache")
    assert loaded == SNAPSHOT
    assert "capx-unified-cache" in store

    store.delete("capx-unified-cache")
    assert store.load("capx-unified-cache") is None
    store.delete("capx-unified-cache")


@pytest.mark.unit
def test_json_file_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path / "snapshots")
    assert store.load("capx-unified-cache") is None

    store.save("capx-unified-cache", SNAPSHOT)
    assert store.load("capx-unified-cache") == SNAPSHOT
    assert store.path_for("capx-unified-cache").name == "capx-unified-cache.json"
    # No temporary files are left behind.
    assert [p.name for p in (tmp_path / "snapshots").iterdir()] == ["capx-unified-cache.json"]

    store.delete("capx-unified-cache")
    assert store.load("capx-unified-cache") is None


@pytest.mark.unit
def test_json_file_store_replaces_previous_snapshot(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    store.save("k", SNAPSHOT)
    store.save("k", {**SNAPSHOT, "language": "en"})
    assert store.load("k")["language"] == "en"  # type: ignore[index]


@pytest.mark.unit
def test_json_file_store_sanitizes_keys(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    path = store.path_for("../../etc/passwd")
    assert path.parent == tmp_path


@pytest.mark.unit
@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_json_file_store_reports_corruption(tmp_path: Path, content: str) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    store.path_for("k").write_text(content, encoding="utf-8")
    with pytest.raises(CacheCorruptionError):
        store.load("k")
