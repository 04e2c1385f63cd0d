"""In-memory remote row store and a deterministic clock.

Used as the injected fake in tests.
``last_synced_at`` is assigned by the store itself, strictly increasing, the
way a server-side default would.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set

from cardsync.errors import RemoteStoreError
from cardsync.types import now_ms

logger = logging.getLogger(__name__)


class FakeClock:
    """Millisecond clock that advances by ``step`` on every read."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1):
        self.now = start
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            self.now += self.step
            return self.now

    def advance(self, ms: int) -> None:
        with self._lock:
            self.now += ms


class InMemoryRemoteStore:
    """RemoteStore keeping rows in a dict.

    Failure injection:
        offline: every call raises RemoteStoreError.
        fail_operations: operation names ("upsert", "select", ...) that raise.
        fail_ids: ids whose upsert raises.
    """

    def __init__(self, clock=now_ms):
        self._clock = clock
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._last_stamp = 0
        self._lock = threading.Lock()
        self.offline = False
        self.fail_operations: Set[str] = set()
        self.fail_ids: Set[str] = set()
        self.calls: List[tuple] = []

    def _check(self, operation: str, record_id: Optional[str] = None) -> None:
        self.calls.append((operation, record_id))
        if self.offline:
            raise RemoteStoreError(operation, "ConnectError: remote unreachable")
        if operation in self.fail_operations:
            raise RemoteStoreError(operation, "injected failure")
        if record_id is not None and record_id in self.fail_ids:
            raise RemoteStoreError(operation, f"injected failure for {record_id}")

    def _stamp(self) -> int:
        self._last_stamp = max(self._clock(), self._last_stamp + 1)
        return self._last_stamp

    def upsert(self, row: Dict[str, Any]) -> None:
        self._check("upsert", row.get("id"))
        with self._lock:
            stored = copy.deepcopy(row)
            stored["last_synced_at"] = self._stamp()
            self._rows[row["id"]] = stored

    def select_since(self, cursor: int) -> List[Dict[str, Any]]:
        self._check("select")
        with self._lock:
            rows = [r for r in self._rows.values() if (r.get("last_synced_at") or 0) > cursor]
        return copy.deepcopy(sorted(rows, key=lambda r: r["last_synced_at"]))

    def fetch_by_ids(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        self._check("fetch")
        with self._lock:
            return [copy.deepcopy(self._rows[i]) for i in ids if i in self._rows]

    def delete_by_id(self, record_id: str) -> None:
        self._check("delete", record_id)
        with self._lock:
            self._rows.pop(record_id, None)

    def ping(self) -> bool:
        return not self.offline

    # === Test helpers ===

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._rows.get(record_id)
        return copy.deepcopy(row) if row is not None else None

    def put_raw(self, row: Dict[str, Any], last_synced_at: Optional[int] = None) -> None:
        """Store a row as-is, bypassing failure injection (seeding other devices' writes)."""
        with self._lock:
            stored = copy.deepcopy(row)
            stored["last_synced_at"] = last_synced_at or self._stamp()
            self._rows[row["id"]] = stored

    def __len__(self) -> int:
        return len(self._rows)
