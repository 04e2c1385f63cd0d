"""
Pytest fixtures and test configuration for cardsync tests.
"""

from dataclasses import dataclass

import pytest

from cardsync.config import Settings
from cardsync.entries import EntryService
from cardsync.storage import LocalRecordStore, SyncEngine, TombstoneTracker
from cardsync.testing import FakeClock, InMemoryRemoteStore
from cardsync.types import DAY_MS, Category, MasteryLevel, Record

PURGE_WINDOW_MS = 30 * DAY_MS


@pytest.fixture
def clock():
    """Deterministic millisecond clock shared by devices and the remote."""
    return FakeClock()


@pytest.fixture
def remote(clock):
    """In-memory remote row store."""
    return InMemoryRemoteStore(clock=clock)


@pytest.fixture
def local(tmp_path):
    """SQLite-backed local store with a flat-file fallback."""
    store = LocalRecordStore(tmp_path / "entries.db", tmp_path / "entries.json")
    yield store
    store.close()


@pytest.fixture
def tracker(local, clock):
    return TombstoneTracker(local, clock=clock)


@pytest.fixture
def engine(local, tracker, remote, clock):
    return SyncEngine(local, tracker, remote, clock=clock, purge_window_ms=PURGE_WINDOW_MS)


@pytest.fixture
def entries(local, tracker, clock):
    return EntryService(local, tracker, clock=clock, purge_window_ms=PURGE_WINDOW_MS)


@dataclass
class Device:
    """One simulated device: its own local store, ledger and engine."""

    name: str
    local: LocalRecordStore
    tombstones: TombstoneTracker
    engine: SyncEngine
    entries: EntryService

    def sync(self):
        return self.engine.run_cycle()

    def get(self, record_id):
        return self.local.get_by_id(record_id)


def make_device(tmp_path, name, remote, clock) -> Device:
    base = tmp_path / name
    local = LocalRecordStore(base / "entries.db", base / "entries.json")
    tombstones = TombstoneTracker(local, clock=clock)
    engine = SyncEngine(local, tombstones, remote, clock=clock, purge_window_ms=PURGE_WINDOW_MS)
    entries = EntryService(local, tombstones, clock=clock, purge_window_ms=PURGE_WINDOW_MS)
    return Device(name, local, tombstones, engine, entries)


@pytest.fixture
def device_a(tmp_path, remote, clock):
    return make_device(tmp_path, "a", remote, clock)


@pytest.fixture
def device_b(tmp_path, remote, clock):
    return make_device(tmp_path, "b", remote, clock)


@pytest.fixture
def make_record(clock):
    """Factory for records stamped with the fake clock."""

    def _make(record_id="r1", **overrides):
        ts = clock()
        fields = {
            "id": record_id,
            "category": Category.VOCABULARY,
            "primary_text": f"word {record_id}",
            "generated_text": f"definition of {record_id}",
            "created_at": ts,
            "updated_at": ts,
            "mastery_level": MasteryLevel.UNREVIEWED,
            "sync_version": 1,
            "dirty": True,
        }
        fields.update(overrides)
        return Record(**fields)

    return _make


@pytest.fixture
def settings(tmp_path):
    """Settings isolated to a temp home with no remote and no env file."""
    return Settings(_env_file=None, home=tmp_path / "home")
