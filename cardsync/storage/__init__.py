"""Cardsync storage.

Local-first storage: a SQLite record store with a flat-file fallback, the
tombstone ledger, the remote row store and the sync engine reconciling them.
"""

from .flat_files import FlatFileRecordStore
from .local import LocalRecordStore
from .remote import RemoteStore, SupabaseRemoteStore, create_remote_store
from .sqlite import SQLiteRecordStore
from .sync_engine import CURSOR_KEY, SyncEngine
from .tombstones import TombstoneTracker

__all__ = [
    "CURSOR_KEY",
    "FlatFileRecordStore",
    "LocalRecordStore",
    "RemoteStore",
    "SQLiteRecordStore",
    "SupabaseRemoteStore",
    "SyncEngine",
    "TombstoneTracker",
    "create_remote_store",
]
