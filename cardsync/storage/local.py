"""Local record store facade.

Chooses the backing once, at construction: SQLite when it opens, the
flat-file store otherwise. A later failure of the chosen backing raises
``LocalStoreError``; it never switches to the other backing, which would
hide the ledger, the cursor and the records written so far.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from cardsync.errors import LocalStoreError
from cardsync.types import Record

from .flat_files import FlatFileRecordStore
from .sqlite import MetaUpdate, SQLiteRecordStore

logger = logging.getLogger(__name__)

PRIMARY_ERRORS = (sqlite3.Error, OSError)
FALLBACK_ERRORS = (OSError, ValueError, KeyError, TypeError)


class LocalRecordStore:
    """Per-device record store over SQLite or, failing that, a flat file.

    Args:
        db_path: SQLite database file.
        fallback_path: JSON document used when SQLite cannot be opened.
        primary: Pre-built primary store (tests); skips SQLite construction.
        fallback: Pre-built fallback store (tests).
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        fallback_path: Optional[Path] = None,
        *,
        primary: Optional[Any] = None,
        fallback: Optional[Any] = None,
    ):
        if fallback is None:
            if fallback_path is None:
                raise ValueError("fallback_path or fallback is required")
            fallback = FlatFileRecordStore(fallback_path)
        self._fallback = fallback
        self._primary = primary
        if self._primary is None and db_path is not None:
            try:
                self._primary = SQLiteRecordStore(db_path)
            except PRIMARY_ERRORS as e:
                logger.warning(f"SQLite store unavailable ({e}), using flat-file fallback")
                self._primary = None

    @property
    def backend_name(self) -> str:
        return getattr(self._active, "name", type(self._active).__name__)

    @property
    def using_fallback(self) -> bool:
        return self._primary is None

    @property
    def _active(self):
        return self._primary if self._primary is not None else self._fallback

    def _call(self, method: str, *args):
        errors = PRIMARY_ERRORS if self._primary is not None else FALLBACK_ERRORS
        try:
            return getattr(self._active, method)(*args)
        except errors as e:
            raise LocalStoreError(f"Local store {method} failed on {self.backend_name}: {e}") from e

    def get_all(self) -> List[Record]:
        return self._call("get_all")

    def get_by_id(self, record_id: str) -> Optional[Record]:
        return self._call("get_by_id", record_id)

    def put(self, record: Record) -> None:
        self._call("put", record)

    def compare_and_put(self, record: Record, expected: Optional[Record]) -> bool:
        """Write ``record`` unless the stored copy no longer equals ``expected``."""
        return self._call("compare_and_put", record, expected)

    def mark_clean(self, record: Record) -> bool:
        """Clear the dirty flag unless the record changed since ``record`` was read."""
        return self._call("mark_clean", record)

    def delete(self, record_id: str) -> None:
        self._call("delete", record_id)

    def clear(self) -> None:
        self._call("clear")

    def get_meta(self, key: str) -> Optional[str]:
        return self._call("get_meta", key)

    def set_meta(self, key: str, value: str) -> None:
        self._call("set_meta", key, value)

    def set_meta_many(self, values: Dict[str, str]) -> None:
        self._call("set_meta_many", values)

    def update_meta(self, keys: Iterable[str], update: MetaUpdate) -> None:
        """Atomic read-modify-write of meta entries; see ``SQLiteRecordStore.update_meta``."""
        self._call("update_meta", list(keys), update)

    def close(self) -> None:
        self._active.close()
