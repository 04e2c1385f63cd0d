"""
Cardsync - offline-first flashcard storage with multi-device sync.
"""

from .context import AppContext
from .types import Category, MasteryLevel, Record, SyncResult

try:
    from importlib.metadata import version

    __version__ = version("cardsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["AppContext", "Category", "MasteryLevel", "Record", "SyncResult"]
