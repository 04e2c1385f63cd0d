"""Tombstone ledger: ids deleted locally whose deletion has not been confirmed remotely.

The ledger is the source of truth for pending deletions. It is stored as two
durable key-value entries in the local store: the JSON list of ids and the
JSON map of id to deletion timestamp (ms). Mutations read and rewrite both
entries in one ``update_meta`` transaction before returning, so concurrent
writers (the sync thread, another process) cannot drop each other's ids.
"""

import json
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from cardsync.types import now_ms

logger = logging.getLogger(__name__)

DELETED_IDS_KEY = "deleted_ids"
DELETION_TIMESTAMPS_KEY = "deletion_timestamps"
LEDGER_KEYS = (DELETED_IDS_KEY, DELETION_TIMESTAMPS_KEY)

Ledger = Tuple[List[str], Dict[str, int]]


def _parse(ids_raw: Optional[str], ts_raw: Optional[str]) -> Ledger:
    """Decode both ledger entries. Raises ValueError/TypeError on corrupt content."""
    ids = json.loads(ids_raw) if ids_raw else []
    timestamps = json.loads(ts_raw) if ts_raw else {}
    if not isinstance(ids, list) or not isinstance(timestamps, dict):
        raise ValueError("tombstone ledger entries have unexpected shape")
    return [str(i) for i in ids], {str(k): int(v) for k, v in timestamps.items()}


def _parse_or_empty(ids_raw: Optional[str], ts_raw: Optional[str]) -> Ledger:
    try:
        return _parse(ids_raw, ts_raw)
    except (ValueError, TypeError) as e:
        logger.warning(f"Tombstone ledger unreadable, treating as empty: {e}")
        return [], {}


def _encode(ids: List[str], timestamps: Dict[str, int]) -> Dict[str, str]:
    return {
        DELETED_IDS_KEY: json.dumps(ids),
        DELETION_TIMESTAMPS_KEY: json.dumps(timestamps),
    }


class TombstoneTracker:
    """Durable set of locally deleted record ids with deletion timestamps.

    Args:
        store: Object exposing ``get_meta``/``update_meta`` (a LocalRecordStore).
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(self, store, clock: Callable[[], int] = now_ms):
        self._store = store
        self._clock = clock

    def _read_or_empty(self) -> Ledger:
        """Current ledger; corrupt content reads as empty, store errors propagate."""
        return _parse_or_empty(
            self._store.get_meta(DELETED_IDS_KEY),
            self._store.get_meta(DELETION_TIMESTAMPS_KEY),
        )

    def mark_deleted(self, record_id: str, deleted_at: Optional[int] = None) -> int:
        """Track ``record_id`` as deleted. Idempotent.

        Args:
            record_id: Id to track.
            deleted_at: Deletion time in ms; defaults to now. Ignored when the
                id is already tracked (the first timestamp is kept).

        Returns:
            The tracked deletion timestamp.

        Raises:
            LocalStoreError: the ledger could not be read or written.
        """
        tracked: List[int] = []

        def _add(current: Dict[str, Optional[str]]) -> Optional[Dict[str, str]]:
            ids, timestamps = _parse_or_empty(
                current[DELETED_IDS_KEY], current[DELETION_TIMESTAMPS_KEY]
            )
            if record_id in ids:
                tracked.append(timestamps.get(record_id, 0))
                return None
            ts = deleted_at if deleted_at is not None else self._clock()
            ids.append(record_id)
            timestamps[record_id] = ts
            tracked.append(ts)
            return _encode(ids, timestamps)

        self._store.update_meta(LEDGER_KEYS, _add)
        logger.debug(f"Tombstoned {record_id} at {tracked[-1]}")
        return tracked[-1]

    def list_deleted(self) -> Set[str]:
        """Currently tombstoned ids. Corrupt ledger content reads as empty."""
        ids, _ = self._read_or_empty()
        return set(ids)

    def is_deleted(self, record_id: str) -> bool:
        return record_id in self.list_deleted()

    def timestamp_of(self, record_id: str) -> int:
        """Deletion timestamp of ``record_id``, or 0 when not tracked."""
        _, timestamps = self._read_or_empty()
        return timestamps.get(record_id, 0)

    def clear(self, record_ids: Iterable[str]) -> None:
        """Stop tracking ``record_ids``. Absent ids are ignored.

        Ids tracked by other writers since the caller last read the ledger
        are kept.
        """
        to_clear = set(record_ids)
        if not to_clear:
            return
        cleared: List[int] = []

        def _remove(current: Dict[str, Optional[str]]) -> Optional[Dict[str, str]]:
            ids, timestamps = _parse_or_empty(
                current[DELETED_IDS_KEY], current[DELETION_TIMESTAMPS_KEY]
            )
            remaining = [i for i in ids if i not in to_clear]
            if len(remaining) == len(ids) and not (to_clear & timestamps.keys()):
                return None
            for record_id in to_clear:
                timestamps.pop(record_id, None)
            cleared.append(len(ids) - len(remaining))
            return _encode(remaining, timestamps)

        self._store.update_meta(LEDGER_KEYS, _remove)
        if cleared:
            logger.debug(f"Cleared {cleared[0]} tombstones")

    def __len__(self) -> int:
        return len(self.list_deleted())
