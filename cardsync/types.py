"""
Shared types for cardsync.

Records are the unit of storage and sync. The local stores persist them with
``record_to_dict``/``record_from_dict``; the remote row store speaks the
snake_case row schema produced by ``record_to_row`` and parsed by
``record_from_row``.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from cardsync.errors import MalformedRowError

# Purge window for remote tombstone markers
PURGE_WINDOW_DAYS = 30
DAY_MS = 24 * 60 * 60 * 1000
PURGE_WINDOW_MS = PURGE_WINDOW_DAYS * DAY_MS

# Legacy deletion sentinels, recognized on read-back only
LEGACY_DELETED_CATEGORY = "deleted"
LEGACY_DELETED_MASTERY = -99


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_record_id() -> str:
    return uuid.uuid4().hex


class Category(str, Enum):
    """Closed set of entry categories."""

    VOCABULARY = "vocabulary"
    PHRASES = "phrases"
    DEFINITIONS = "definitions"
    QUESTIONS = "questions"
    BUSINESS = "business"
    OTHER = "other"


VALID_CATEGORY_VALUES = frozenset(c.value for c in Category)


class MasteryLevel(IntEnum):
    """Review outcome for an entry."""

    UNREVIEWED = -1
    FAIL = 0
    PARTIAL = 1
    PASS = 2


VALID_MASTERY_VALUES = frozenset(m.value for m in MasteryLevel)


@dataclass
class Record:
    """A single flashcard / fact entry.

    ``deleted``, ``deleted_at`` and ``purge_after`` are a local projection of
    the tombstone ledger. ``dirty`` is local-only and never sent remotely: it
    marks a mutation that has not been confirmed by the remote store yet.
    """

    id: str
    category: Category
    primary_text: str
    secondary_text: Optional[str] = None
    generated_text: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: Optional[int] = None
    mastery_level: MasteryLevel = MasteryLevel.UNREVIEWED
    deleted: bool = False
    deleted_at: Optional[int] = None
    purge_after: Optional[int] = None
    sync_version: int = 1
    dirty: bool = False

    def __post_init__(self):
        self.category = Category(self.category)
        self.mastery_level = MasteryLevel(self.mastery_level)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def timestamp(self) -> int:
        """Timestamp used for last-writer-wins tie breaks."""
        return self.updated_at or self.created_at

    def summary(self, width: int = 50) -> str:
        text = self.primary_text or ""
        return text[:width] + "..." if len(text) > width else text


def record_to_dict(record: Record) -> Dict[str, Any]:
    """Serialize a record for the local stores."""
    d = asdict(record)
    d["category"] = record.category.value
    d["mastery_level"] = int(record.mastery_level)
    return d


def record_from_dict(d: Dict[str, Any]) -> Record:
    """Rebuild a record written by ``record_to_dict``."""
    return Record(
        id=d["id"],
        category=d["category"],
        primary_text=d.get("primary_text") or "",
        secondary_text=d.get("secondary_text"),
        generated_text=d.get("generated_text"),
        created_at=int(d.get("created_at") or 0),
        updated_at=d.get("updated_at"),
        mastery_level=d.get("mastery_level", MasteryLevel.UNREVIEWED),
        deleted=bool(d.get("deleted", False)),
        deleted_at=d.get("deleted_at"),
        purge_after=d.get("purge_after"),
        sync_version=int(d.get("sync_version") or 1),
        dirty=bool(d.get("dirty", False)),
    )


# === Remote row codec ===


def record_to_row(record: Record, last_synced_at: Optional[int] = None) -> Dict[str, Any]:
    """Build a remote row for a record.

    Deleted records become explicit tombstone rows (``is_tombstone``);
    sentinel values are never written.
    """
    return {
        "id": record.id,
        "category": record.category.value,
        "primary_text": record.primary_text,
        "secondary_text": record.secondary_text,
        "generated_text": record.generated_text,
        "created_at": record.created_at,
        "updated_at": record.timestamp,
        "mastery_level": int(record.mastery_level),
        "sync_version": record.sync_version,
        "is_tombstone": bool(record.deleted),
        "deleted_at": record.deleted_at if record.deleted else None,
        "purge_after": record.purge_after if record.deleted else None,
        "last_synced_at": last_synced_at,
    }


def tombstone_row(
    record_id: str, deleted_at: int, purge_window_ms: int = PURGE_WINDOW_MS
) -> Dict[str, Any]:
    """Minimal tombstone row for an id whose local record is gone."""
    return {
        "id": record_id,
        "category": Category.OTHER.value,
        "primary_text": "",
        "secondary_text": None,
        "generated_text": None,
        "created_at": deleted_at,
        "updated_at": deleted_at,
        "mastery_level": int(MasteryLevel.UNREVIEWED),
        "sync_version": 1,
        "is_tombstone": True,
        "deleted_at": deleted_at,
        "purge_after": deleted_at + purge_window_ms,
        "last_synced_at": None,
    }


def is_tombstone_row(row: Dict[str, Any]) -> bool:
    """True for explicit tombstone rows and for both legacy sentinel forms."""
    if row.get("is_tombstone"):
        return True
    if row.get("category") == LEGACY_DELETED_CATEGORY:
        return True
    if row.get("mastery_level") == LEGACY_DELETED_MASTERY:
        return True
    return row.get("deleted_at") is not None


def _as_int(row: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = row.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRowError(row.get("id"), f"{key} is not an integer: {value!r}") from None


def record_from_row(row: Dict[str, Any]) -> Record:
    """Parse a remote row into a Record.

    Tombstone rows (explicit or legacy) produce a deleted projection.

    Raises:
        MalformedRowError: if the row cannot describe a record.
    """
    if not isinstance(row, dict):
        raise MalformedRowError(None, "row is not a mapping")
    record_id = row.get("id")
    if not record_id or not isinstance(record_id, str):
        raise MalformedRowError(record_id, "missing id")

    tombstone = is_tombstone_row(row)
    category = row.get("category")
    mastery = _as_int(row, "mastery_level", int(MasteryLevel.UNREVIEWED))

    if tombstone:
        if category not in VALID_CATEGORY_VALUES:
            category = Category.OTHER.value
        if mastery not in VALID_MASTERY_VALUES:
            mastery = int(MasteryLevel.UNREVIEWED)
    else:
        if category not in VALID_CATEGORY_VALUES:
            raise MalformedRowError(record_id, f"unknown category {category!r}")
        if mastery not in VALID_MASTERY_VALUES:
            raise MalformedRowError(record_id, f"unknown mastery level {mastery!r}")
        if not isinstance(row.get("primary_text"), str):
            raise MalformedRowError(record_id, "missing primary_text")

    created_at = _as_int(row, "created_at", 0)
    updated_at = _as_int(row, "updated_at", created_at)
    deleted_at = _as_int(row, "deleted_at")
    if tombstone and deleted_at is None:
        deleted_at = updated_at or created_at
    purge_after = _as_int(row, "purge_after")
    if tombstone and purge_after is None and deleted_at is not None:
        purge_after = deleted_at + PURGE_WINDOW_MS

    return Record(
        id=record_id,
        category=category,
        primary_text=row.get("primary_text") or "",
        secondary_text=row.get("secondary_text"),
        generated_text=row.get("generated_text"),
        created_at=created_at,
        updated_at=updated_at,
        mastery_level=mastery,
        deleted=tombstone,
        deleted_at=deleted_at if tombstone else None,
        purge_after=purge_after if tombstone else None,
        sync_version=_as_int(row, "sync_version", 1),
        dirty=False,
    )


# === Sync types ===


@dataclass
class SyncConflict:
    """A merge decision where local and remote copies disagreed."""

    record_id: str
    resolution: str  # "local_wins", "remote_wins" or "deletion_wins"
    policy_decision: str
    local_summary: Optional[str] = None
    remote_summary: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    deletions_pushed: List[str] = field(default_factory=list)
    pushed: int = 0
    pulled: int = 0
    deletions_pulled: List[str] = field(default_factory=list)
    skipped: int = 0
    purged: int = 0
    conflicts: List[SyncConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cursor_advanced: bool = False

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def conflict_count(self) -> int:
        return len(self.conflicts)

    def summary(self) -> str:
        """Generic status line for user-initiated syncs."""
        if self.success:
            return "sync complete"
        return "sync incomplete, will retry"
