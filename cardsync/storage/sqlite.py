"""SQLite record store for cardsync.

Primary local backing: one SQLite file holding records and the durable
key-value entries used by the tombstone ledger and the sync cursor.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from cardsync.types import Record, now_ms

from .schema import RECORD_COLUMNS, init_db

logger = logging.getLogger(__name__)

# Receives the current meta values, returns the entries to write (or None)
MetaUpdate = Callable[[Dict[str, Optional[str]]], Optional[Dict[str, str]]]


class SQLiteRecordStore:
    """SQLite-based local record store.

    Connections are opened per operation; ``_connect`` commits on success,
    rolls back on error and always closes.
    """

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            init_db(conn)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def _immediate(self):
        """Read-modify-write transaction holding the database write lock.

        ``BEGIN IMMEDIATE`` takes the lock before the first read, so another
        writer (thread or process) waits on the busy timeout instead of
        interleaving between our read and our write.
        """
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def close(self):
        """Connections are per-operation; kept for API symmetry."""
        pass

    # === Records ===

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        return Record(
            id=row["id"],
            category=row["category"],
            primary_text=row["primary_text"] or "",
            secondary_text=row["secondary_text"],
            generated_text=row["generated_text"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            mastery_level=row["mastery_level"],
            deleted=bool(row["deleted"]),
            deleted_at=row["deleted_at"],
            purge_after=row["purge_after"],
            sync_version=row["sync_version"],
            dirty=bool(row["dirty"]),
        )

    def _insert(self, conn: sqlite3.Connection, record: Record) -> None:
        values = (
            record.id,
            record.category.value,
            record.primary_text,
            record.secondary_text,
            record.generated_text,
            record.created_at,
            record.updated_at,
            int(record.mastery_level),
            1 if record.deleted else 0,
            record.deleted_at,
            record.purge_after,
            record.sync_version,
            1 if record.dirty else 0,
        )
        placeholders = ", ".join("?" * len(RECORD_COLUMNS))
        conn.execute(
            f"INSERT OR REPLACE INTO records ({', '.join(RECORD_COLUMNS)}) "
            f"VALUES ({placeholders})",
            values,
        )

    def get_all(self) -> List[Record]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM records ORDER BY created_at").fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_by_id(self, record_id: str) -> Optional[Record]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def put(self, record: Record) -> None:
        with self._connect() as conn:
            self._insert(conn, record)

    def compare_and_put(self, record: Record, expected: Optional[Record]) -> bool:
        """Write ``record`` only if the stored copy still equals ``expected``.

        Args:
            record: Replacement copy.
            expected: The copy the caller read, or None when the id must be absent.

        Returns:
            False, with nothing written, if another writer changed the record.
        """
        with self._immediate() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record.id,)).fetchone()
            current = self._row_to_record(row) if row else None
            if current != expected:
                return False
            self._insert(conn, record)
        return True

    def mark_clean(self, record: Record) -> bool:
        """Clear the dirty flag if the stored revision is still ``record``'s."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE records SET dirty = 0 "
                "WHERE id = ? AND sync_version = ? AND updated_at = ? AND deleted = ?",
                (record.id, record.sync_version, record.updated_at, 1 if record.deleted else 0),
            )
            return cursor.rowcount > 0

    def delete(self, record_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM records WHERE id = ?", (record_id,))

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM records")

    # === Durable key-value entries ===

    def get_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self.set_meta_many({key: value})

    def _write_meta(self, conn: sqlite3.Connection, values: Dict[str, str]) -> None:
        now = now_ms()
        conn.executemany(
            "INSERT OR REPLACE INTO meta (key, value, updated_at) VALUES (?, ?, ?)",
            [(key, value, now) for key, value in values.items()],
        )

    def set_meta_many(self, values: Dict[str, str]) -> None:
        """Write several entries in one transaction."""
        with self._connect() as conn:
            self._write_meta(conn, values)

    def update_meta(self, keys: Iterable[str], update: MetaUpdate) -> None:
        """Atomically read ``keys``, pass them to ``update`` and write what it returns.

        ``update`` gets a dict of the current values (None when unset) and
        returns the entries to write, or None to leave them unchanged. No
        other writer can change the entries in between.
        """
        with self._immediate() as conn:
            current: Dict[str, Optional[str]] = {}
            for key in keys:
                row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
                current[key] = row["value"] if row else None
            changes = update(current)
            if changes:
                self._write_meta(conn, changes)
