from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from .security import is_stored_name_for


logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AccessRecord:
    id: str
    stored_name: str
    original_name: str
    token: str
    expires_at: int  # epoch milliseconds

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: object, key: Optional[str] = None) -> Optional["AccessRecord"]:
        """Parse a persisted entry. Returns None for anything malformed.

        When `key` is given it must match the record's own id.
        """
        if not isinstance(raw, dict):
            return None
        try:
            record = cls(
                id=str(raw["id"]),
                stored_name=str(raw["stored_name"]),
                original_name=str(raw.get("original_name") or ""),
                token=str(raw["token"]),
                expires_at=int(raw["expires_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
        if not record.id or not record.token:
            return None
        if key is not None and key != record.id:
            return None
        if not is_stored_name_for(record.id, record.stored_name):
            return None
        return record


class MetadataRegistry:
    """In-memory table of access records plus its persisted copy.

    The table maps artifact id -> AccessRecord, or None for an entry that
    failed to parse (the sweeper removes those). Every mutation rewrites the
    whole file atomically. `lock` serializes mutations and their flushes.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.lock = threading.RLock()
        self._records: dict[str, Optional[AccessRecord]] = {}

    def load(self) -> int:
        """Load the persisted table, replacing the in-memory one.

        A missing or unreadable file loads as an empty table.
        Returns the number of entries loaded.
        """
        with self.lock:
            self._records = {}
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            except FileNotFoundError:
                return 0
            except (OSError, ValueError):
                logger.warning("Metadata table %s is unreadable; starting empty", self.path)
                return 0
            if not isinstance(raw, dict):
                logger.warning("Metadata table %s is not a mapping; starting empty", self.path)
                return 0
            for key, value in raw.items():
                self._records[str(key)] = AccessRecord.from_dict(value, key=str(key))
            return len(self._records)

    def get(self, artifact_id: str) -> Optional[AccessRecord]:
        with self.lock:
            return self._records.get(artifact_id)

    def __contains__(self, artifact_id: object) -> bool:
        with self.lock:
            return artifact_id in self._records

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)

    def scan_all(self) -> list[tuple[str, Optional[AccessRecord]]]:
        """Snapshot of every entry, malformed ones included."""
        with self.lock:
            return list(self._records.items())

    def upsert_and_flush(self, record: AccessRecord) -> None:
        """Insert a record and persist. On a failed flush the insert is undone."""
        with self.lock:
            had_previous = record.id in self._records
            previous = self._records.get(record.id)
            self._records[record.id] = record
            try:
                self.flush()
            except BaseException:
                if had_previous:
                    self._records[record.id] = previous
                else:
                    self._records.pop(record.id, None)
                raise

    def delete_and_flush(self, artifact_id: str) -> bool:
        return self.remove_many_and_flush([artifact_id]) > 0

    def remove_many_and_flush(self, artifact_ids: Iterable[str]) -> int:
        """Remove entries and persist once. Nothing is written if nothing was removed."""
        with self.lock:
            removed = 0
            for artifact_id in artifact_ids:
                if artifact_id in self._records:
                    del self._records[artifact_id]
                    removed += 1
            if removed:
                self.flush()
            return removed

    def flush(self) -> None:
        with self.lock:
            payload = {
                key: (record.to_dict() if record is not None else None)
                for key, record in self._records.items()
            }
            _atomic_write_text(self.path, json.dumps(payload, indent=2, sort_keys=True))


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
