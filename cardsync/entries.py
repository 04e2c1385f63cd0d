"""Entry operations used by the application layer.

Every mutation bumps ``sync_version`` and ``updated_at`` and marks the
record dirty so the next sync cycle uploads it. Deletion goes through the
tombstone ledger first; the record's deleted flags are its projection.
"""

import logging
from dataclasses import replace
from typing import Callable, List, Optional, Union

from cardsync.errors import EntryNotFoundError, LocalStoreError
from cardsync.types import (
    PURGE_WINDOW_MS,
    Category,
    MasteryLevel,
    Record,
    new_record_id,
    now_ms,
)

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 10_000

# Saves retried when a sync cycle rewrites the entry between read and write
WRITE_ATTEMPTS = 3


def _validate_text(value: Optional[str], field_name: str, required: bool = False) -> Optional[str]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    value = value.strip()
    if required and not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_TEXT_LENGTH:
        raise ValueError(f"{field_name} too long (max {MAX_TEXT_LENGTH} characters)")
    return value


class EntryService:
    """Create, edit, review-grade and delete entries in the local store.

    Args:
        local: LocalRecordStore.
        tombstones: TombstoneTracker.
        clock: Millisecond clock.
        purge_window_ms: Retention applied to ``purge_after`` on delete.
    """

    def __init__(
        self,
        local,
        tombstones,
        clock: Callable[[], int] = now_ms,
        purge_window_ms: int = PURGE_WINDOW_MS,
    ):
        self._local = local
        self._tombstones = tombstones
        self._clock = clock
        self._purge_window_ms = purge_window_ms

    def add_entry(
        self,
        category: Union[Category, str],
        primary_text: str,
        generated_text: Optional[str] = None,
        secondary_text: Optional[str] = None,
    ) -> Record:
        now = self._clock()
        record = Record(
            id=new_record_id(),
            category=Category(category),
            primary_text=_validate_text(primary_text, "primary_text", required=True),
            secondary_text=_validate_text(secondary_text, "secondary_text"),
            generated_text=_validate_text(generated_text, "generated_text"),
            created_at=now,
            updated_at=now,
            mastery_level=MasteryLevel.UNREVIEWED,
            sync_version=1,
            dirty=True,
        )
        self._local.put(record)
        logger.debug(f"Added {record.category.value} entry {record.id}")
        return record

    def get_entry(self, entry_id: str) -> Record:
        """Active entry by id.

        Raises:
            EntryNotFoundError: unknown, deleted, or pending deletion.
        """
        record = self._local.get_by_id(entry_id)
        if record is None or record.deleted or self._tombstones.is_deleted(entry_id):
            raise EntryNotFoundError(entry_id)
        return record

    def list_entries(self, category: Optional[Union[Category, str]] = None) -> List[Record]:
        ledger = self._tombstones.list_deleted()
        wanted = Category(category) if category is not None else None
        return [
            r
            for r in self._local.get_all()
            if not r.deleted
            and r.id not in ledger
            and (wanted is None or r.category == wanted)
        ]

    def _mutate(self, entry_id: str, change: Callable[[Record], Record]) -> Record:
        """Apply ``change`` to the stored entry and save it as a new version.

        The write only lands if the entry is unchanged since it was read;
        otherwise (a sync cycle touched it meanwhile) ``change`` is re-applied
        to a fresh copy.

        Raises:
            EntryNotFoundError: the entry is unknown or deleted.
            LocalStoreError: the entry kept changing underneath every attempt.
        """
        for _ in range(WRITE_ATTEMPTS):
            current = self.get_entry(entry_id)
            changed = change(current)
            if changed == current:
                return current
            updated = replace(
                changed,
                sync_version=current.sync_version + 1,
                updated_at=max(self._clock(), current.timestamp + 1),
                dirty=True,
            )
            if self._local.compare_and_put(updated, current):
                return updated
            logger.debug(f"Entry {entry_id} changed while saving, retrying")
        raise LocalStoreError(f"Entry {entry_id} kept changing, update not saved")

    def update_entry(
        self,
        entry_id: str,
        *,
        category: Optional[Union[Category, str]] = None,
        primary_text: Optional[str] = None,
        secondary_text: Optional[str] = None,
        generated_text: Optional[str] = None,
    ) -> Record:
        changes = {}
        if category is not None:
            changes["category"] = Category(category)
        if primary_text is not None:
            changes["primary_text"] = _validate_text(primary_text, "primary_text", required=True)
        if secondary_text is not None:
            changes["secondary_text"] = _validate_text(secondary_text, "secondary_text")
        if generated_text is not None:
            changes["generated_text"] = _validate_text(generated_text, "generated_text")
        return self._mutate(entry_id, lambda record: replace(record, **changes))

    def set_mastery(self, entry_id: str, level: Union[MasteryLevel, int]) -> Record:
        try:
            mastery = MasteryLevel(int(level))
        except ValueError:
            raise ValueError(f"Invalid mastery level: {level!r}") from None
        return self._mutate(entry_id, lambda record: replace(record, mastery_level=mastery))

    def delete_entry(self, entry_id: str) -> int:
        """Tombstone an entry. Idempotent for already-deleted ids.

        The ledger entry is written before the record projection, so a crash
        in between still leaves the deletion pending.

        Returns:
            The deletion timestamp.

        Raises:
            EntryNotFoundError: if the id has never existed locally.
        """
        record = self._local.get_by_id(entry_id)
        if record is None and not self._tombstones.is_deleted(entry_id):
            raise EntryNotFoundError(entry_id)

        deleted_at = self._tombstones.mark_deleted(entry_id)
        for _ in range(WRITE_ATTEMPTS):
            if record is None or record.deleted:
                break
            projection = replace(
                record,
                deleted=True,
                deleted_at=deleted_at,
                purge_after=deleted_at + self._purge_window_ms,
                sync_version=record.sync_version + 1,
                updated_at=max(deleted_at, record.timestamp),
                dirty=True,
            )
            if self._local.compare_and_put(projection, record):
                break
            record = self._local.get_by_id(entry_id)
        else:
            # The ledger entry stands; the next sync cycle writes the projection
            logger.warning(f"Entry {entry_id} kept changing, deletion projection deferred")
        logger.info(f"Deleted entry {entry_id}")
        return deleted_at
