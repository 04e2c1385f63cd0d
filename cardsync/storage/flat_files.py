"""Flat-file fallback record store for cardsync.

Used when SQLite is unavailable. Everything lives in one JSON document:
``{"records": [...], "meta": {...}}``, rewritten atomically on each change.

Read-modify-write operations are serialized by an in-process lock. The
document has no cross-process lock, so only one process should use a
fallback file at a time.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from cardsync.types import Record, record_from_dict, record_to_dict

from .sqlite import MetaUpdate

logger = logging.getLogger(__name__)


class FlatFileRecordStore:
    """JSON-document record store."""

    name = "flat_file"

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"records": [], "meta": {}}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, list):
            # Older documents held only the record list
            data = {"records": data, "meta": {}}
        data.setdefault("records", [])
        data.setdefault("meta", {})
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        os.chmod(self.path, 0o600)

    def close(self):
        pass

    # === Records ===

    def _find(self, data: Dict[str, Any], record_id: str) -> Optional[int]:
        for i, d in enumerate(data["records"]):
            if d.get("id") == record_id:
                return i
        return None

    def _store(self, data: Dict[str, Any], record: Record) -> None:
        serialized = record_to_dict(record)
        index = self._find(data, record.id)
        if index is None:
            data["records"].append(serialized)
        else:
            data["records"][index] = serialized
        self._save(data)

    def get_all(self) -> List[Record]:
        return [record_from_dict(d) for d in self._load()["records"]]

    def get_by_id(self, record_id: str) -> Optional[Record]:
        data = self._load()
        index = self._find(data, record_id)
        return record_from_dict(data["records"][index]) if index is not None else None

    def put(self, record: Record) -> None:
        with self._lock:
            self._store(self._load(), record)

    def compare_and_put(self, record: Record, expected: Optional[Record]) -> bool:
        """Write ``record`` only if the stored copy still equals ``expected``."""
        with self._lock:
            data = self._load()
            index = self._find(data, record.id)
            current = record_from_dict(data["records"][index]) if index is not None else None
            if current != expected:
                return False
            self._store(data, record)
            return True

    def mark_clean(self, record: Record) -> bool:
        with self._lock:
            data = self._load()
            index = self._find(data, record.id)
            if index is None:
                return False
            current = record_from_dict(data["records"][index])
            if (current.sync_version, current.updated_at, current.deleted) != (
                record.sync_version,
                record.updated_at,
                record.deleted,
            ):
                return False
            data["records"][index]["dirty"] = False
            self._save(data)
            return True

    def delete(self, record_id: str) -> None:
        with self._lock:
            data = self._load()
            data["records"] = [d for d in data["records"] if d.get("id") != record_id]
            self._save(data)

    def clear(self) -> None:
        with self._lock:
            data = self._load()
            data["records"] = []
            self._save(data)

    # === Durable key-value entries ===

    def get_meta(self, key: str) -> Optional[str]:
        return self._load()["meta"].get(key)

    def set_meta(self, key: str, value: str) -> None:
        self.set_meta_many({key: value})

    def set_meta_many(self, values: Dict[str, str]) -> None:
        with self._lock:
            data = self._load()
            data["meta"].update(values)
            self._save(data)

    def update_meta(self, keys: Iterable[str], update: MetaUpdate) -> None:
        with self._lock:
            data = self._load()
            changes = update({key: data["meta"].get(key) for key in keys})
            if changes:
                data["meta"].update(changes)
                self._save(data)
