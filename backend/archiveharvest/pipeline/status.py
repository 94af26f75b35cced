from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from archiveharvest.pipeline.io import utc_now_iso, write_json_atomic
from archiveharvest.pipeline.types import JobStatus, StatusEntry

logger = logging.getLogger(__name__)


class StatusMap:
    """Per-item transcription ledger persisted as one JSON object.

    Every ``record`` rewrites the whole file through an atomic rename while
    holding a lock, so concurrent job completions are applied one at a time
    and the file on disk is always a complete snapshot.
    """

    def __init__(self, path: Path, entries: dict[str, StatusEntry] | None = None) -> None:
        self._path = path
        self._entries: dict[str, StatusEntry] = dict(entries or {})
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @classmethod
    def load(cls, path: Path) -> StatusMap:
        if not path.exists():
            return cls(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Status file {path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ValueError(f"Status file {path} must contain a JSON object")
        entries: dict[str, StatusEntry] = {}
        for item_id, data in raw.items():
            if not isinstance(data, dict):
                logger.warning("Ignoring malformed status entry for %s", item_id)
                continue
            try:
                entries[item_id] = StatusEntry.from_dict(data)
            except ValueError as e:
                logger.warning("Ignoring status entry for %s: %s", item_id, e)
        return cls(path, entries)

    def get(self, item_id: str) -> StatusEntry | None:
        return self._entries.get(item_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {item_id: entry.to_dict() for item_id, entry in sorted(self._entries.items())}

    async def record(self, item_id: str, status: JobStatus, error: str | None = None) -> StatusEntry:
        entry = StatusEntry(status=status, updated_at=utc_now_iso(), error=error)
        async with self._lock:
            self._entries[item_id] = entry
            write_json_atomic(self._path, self.to_dict())
        return entry
