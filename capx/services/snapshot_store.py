"""Persistence port for committed capacity trees, with in-memory and JSON-file adapters."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Mapping, Protocol, cast

import structlog

from capx.infra.result import CacheCorruptionError

LOGGER = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]+")


class SnapshotStore(Protocol):
    def load(self, key: str) -> Mapping[str, Any] | None: ...

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySnapshotStore:
    """Process-local snapshot store; the default when no snapshot directory is configured."""

    def __init__(self) -> None:
        self._snapshots: dict[str, str] = {}

    def load(self, key: str) -> Mapping[str, Any] | None:
        raw = self._snapshots.get(key)
        if raw is None:
            return None
        return cast(Mapping[str, Any], json.loads(raw))

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None:
        # Stored serialized so callers never share mutable state with the store.
        self._snapshots[key] = json.dumps(snapshot)

    def delete(self, key: str) -> None:
        self._snapshots.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._snapshots


class JsonFileSnapshotStore:
    """One ``<key>.json`` file per snapshot key, fully replaced on each save.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a reader never sees a half-written file.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        safe = _SAFE_KEY.sub("_", key).strip("._") or "snapshot"
        return self._directory / f"{safe}.json"

    def load(self, key: str) -> Mapping[str, Any] | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CacheCorruptionError(
                "Snapshot file is unreadable",
                context={"path": str(path)},
                cause=exc,
            ) from exc
        if not isinstance(data, dict):
            raise CacheCorruptionError(
                "Snapshot file does not hold a JSON object",
                context={"path": str(path), "payload_type": type(data).__name__},
            )
        return cast(Mapping[str, Any], data)

    def save(self, key: str, snapshot: Mapping[str, Any]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".tmp", dir=self._directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(snapshot, handle, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("snapshot_store.saved", path=str(path))

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


__all__ = ["InMemorySnapshotStore", "JsonFileSnapshotStore", "SnapshotStore"]
