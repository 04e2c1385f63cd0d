"""Sync engine for cardsync storage.

SyncEngine runs one reconciliation pass ("sync cycle") between the local
record store, the tombstone ledger and the remote row store:

    0. repair the deleted-flag projection from the ledger
    1. push tombstones for every ledger id
    2. prune ledger entries whose tombstone the remote accepted
    3. push dirty active records (without overwriting newer remote copies)
    4. pull remote rows changed since the cursor
    5. merge pulled rows (deletion wins, then version, then timestamp)
    6. advance the cursor
    7. purge expired local projections

Deletions are pushed before uploads and uploads before downloads. Remote
failures are caught per item and leave that item pending for the next cycle.
Local store failures (LocalStoreError) propagate and leave the cursor alone.

Entries may be edited while a cycle runs. Every local write that depends on
an earlier read is a compare-and-set (``compare_and_put``/``mark_clean``);
when it loses, the record was edited or deleted meanwhile, which leaves it
dirty or ledgered for the next cycle.
"""

import hashlib
import json
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from cardsync.errors import MalformedRowError, RemoteStoreError
from cardsync.types import (
    PURGE_WINDOW_MS,
    Record,
    SyncConflict,
    SyncResult,
    now_ms,
    record_from_row,
    record_to_row,
    tombstone_row,
)

logger = logging.getLogger(__name__)

CURSOR_KEY = "last_sync_time"

# Re-reads of a local record that changed between our read and our write
MERGE_ATTEMPTS = 3

# Fields compared for the deterministic tie-break on equal version and timestamp
CONTENT_FIELDS = (
    "category",
    "primary_text",
    "secondary_text",
    "generated_text",
    "mastery_level",
    "deleted",
)


class SyncEngine:
    """Reconciliation between local records, the tombstone ledger and a remote store.

    Args:
        local: LocalRecordStore (records plus durable meta entries).
        tombstones: TombstoneTracker sharing the same local store.
        remote: RemoteStore implementation, or None when sync is not configured.
        clock: Millisecond clock.
        purge_window_ms: Retention of tombstones before they may be purged.
    """

    def __init__(
        self,
        local,
        tombstones,
        remote=None,
        clock: Callable[[], int] = now_ms,
        purge_window_ms: int = PURGE_WINDOW_MS,
    ):
        self._local = local
        self._tombstones = tombstones
        self._remote = remote
        self._clock = clock
        self._purge_window_ms = purge_window_ms

    @property
    def remote(self):
        return self._remote

    # === Sync cursor ===

    def get_last_sync_time(self) -> int:
        """High-water mark of remote rows already merged (ms), 0 if never synced."""
        value = self._local.get_meta(CURSOR_KEY)
        if not value:
            return 0
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring unreadable sync cursor {value!r}")
            return 0

    def _set_last_sync_time(self, value: int) -> None:
        self._local.set_meta(CURSOR_KEY, str(value))

    def get_status(self) -> Dict[str, Any]:
        """Pending work and cursor position."""
        ledger = self._tombstones.list_deleted()
        records = self._local.get_all()
        return {
            "pending_uploads": sum(
                1 for r in records if r.dirty and not r.deleted and r.id not in ledger
            ),
            "pending_deletions": len(ledger),
            "records": sum(1 for r in records if not r.deleted and r.id not in ledger),
            "last_sync_time": self.get_last_sync_time(),
            "local_backend": self._local.backend_name,
            "remote_configured": self._remote is not None,
        }

    # === Cycle ===

    def run_cycle(self) -> SyncResult:
        """Run one full sync cycle. Never raises for remote failures."""
        result = SyncResult()

        if self._remote is None:
            logger.debug("No remote store configured, skipping sync")
            result.errors.append("No remote store configured")
            return result

        self._repair_projection()

        confirmed = self._push_deletions(result)
        self._prune_tombstones(confirmed, result)

        self._push_records(result)

        rows, fetch_started = self._pull(result)
        if rows is not None:
            self._merge_rows(rows, result)
            self._advance_cursor(fetch_started, result)

        self._purge_local()

        logger.info(
            f"Sync cycle done: deletions_pushed={len(result.deletions_pushed)}, "
            f"pushed={result.pushed}, pulled={result.pulled}, "
            f"deletions_pulled={len(result.deletions_pulled)}, skipped={result.skipped}, "
            f"conflicts={result.conflict_count}, errors={len(result.errors)}"
        )
        return result

    # === Step 0: projection repair ===

    def _as_deleted(self, record: Record, deleted_at: int) -> Record:
        """Deleted projection of ``record``, version bumped so it outranks prior edits."""
        return replace(
            record,
            deleted=True,
            deleted_at=deleted_at,
            purge_after=deleted_at + self._purge_window_ms,
            sync_version=record.sync_version + 1,
            updated_at=max(record.timestamp, deleted_at),
            dirty=True,
        )

    def _repair_projection(self) -> None:
        """Make record flags and ledger agree. Ledger membership wins."""
        ledger = self._tombstones.list_deleted()
        for record in self._local.get_all():
            if record.deleted and record.dirty and record.id not in ledger:
                # Deleted by a path that bypassed the ledger: adopt it
                deleted_at = record.deleted_at or record.timestamp
                logger.info(f"Adopting unledgered deletion of {record.id} into tombstone ledger")
                self._tombstones.mark_deleted(record.id, deleted_at=deleted_at)
            elif not record.deleted and record.id in ledger:
                deleted_at = self._tombstones.timestamp_of(record.id) or self._clock()
                if not self._local.compare_and_put(self._as_deleted(record, deleted_at), record):
                    logger.debug(f"{record.id} changed during repair, left to the tombstone push")

    # === Steps 1-2: deletions ===

    def _tombstone_projection(self, record_id: str, deleted_at: int) -> Optional[Record]:
        """Write the deleted projection a ledger id is pushed from.

        Returns None when the record changed underneath; the id stays in the
        ledger and is pushed next cycle.
        """
        local = self._local.get_by_id(record_id)
        if local is not None and local.deleted:
            return local
        if local is not None:
            projection = self._as_deleted(local, deleted_at)
        else:
            # Keep a local projection so our own echo and stale rows are ignored
            row = tombstone_row(record_id, deleted_at, self._purge_window_ms)
            projection = replace(record_from_row(row), dirty=True)
        if not self._local.compare_and_put(projection, local):
            return None
        return projection

    def _push_deletions(self, result: SyncResult) -> List[Tuple[str, Record]]:
        """Upsert a tombstone row per ledger id.

        Returns:
            ``(id, pushed projection)`` for each tombstone the remote accepted.
        """
        confirmed: List[Tuple[str, Record]] = []
        for record_id in sorted(self._tombstones.list_deleted()):
            deleted_at = self._tombstones.timestamp_of(record_id) or self._clock()
            projection = self._tombstone_projection(record_id, deleted_at)
            if projection is None:
                logger.debug(f"{record_id} changed before its tombstone was pushed, deferring")
                continue
            row = record_to_row(projection)

            try:
                self._remote.upsert(row)
            except RemoteStoreError as e:
                logger.error(f"Failed to push tombstone for {record_id}: {e}", exc_info=True)
                result.errors.append(f"Failed to push deletion of {record_id}: {e}")
                continue

            logger.debug(f"Pushed tombstone for {record_id}")
            confirmed.append((record_id, projection))
        return confirmed

    def _prune_tombstones(self, confirmed: List[Tuple[str, Record]], result: SyncResult) -> None:
        """Clear ledger entries the remote has durably recorded."""
        if not confirmed:
            return
        for _, pushed in confirmed:
            self._local.mark_clean(pushed)
        ids = [record_id for record_id, _ in confirmed]
        # Only these ids are removed; deletions made since the push stay pending
        self._tombstones.clear(ids)
        result.deletions_pushed.extend(ids)

    # === Step 3: uploads ===

    def _push_records(self, result: SyncResult) -> None:
        ledger = self._tombstones.list_deleted()
        pending = [
            r for r in self._local.get_all() if r.dirty and not r.deleted and r.id not in ledger
        ]
        if not pending:
            return

        logger.debug(f"Pushing {len(pending)} local changes")
        try:
            existing = {
                row["id"]: row
                for row in self._remote.fetch_by_ids([r.id for r in pending])
                if isinstance(row, dict) and row.get("id")
            }
        except RemoteStoreError as e:
            logger.error(f"Failed to read remote versions before upload: {e}", exc_info=True)
            result.errors.append(f"Failed to check remote versions: {e}")
            return

        for record in pending:
            remote_row = existing.get(record.id)
            if remote_row is not None and self._remote_supersedes(record, remote_row):
                logger.info(f"Remote copy of {record.id} is newer, merging instead of uploading")
                self._merge_row(remote_row, ledger, result)
                continue

            try:
                self._remote.upsert(record_to_row(record))
            except RemoteStoreError as e:
                logger.error(f"Failed to push record {record.id}: {e}", exc_info=True)
                result.errors.append(f"Failed to push {record.id}: {e}")
                continue

            self._mark_clean(record)
            result.pushed += 1

    def _mark_clean(self, uploaded: Record) -> None:
        """Clear the dirty flag unless the record changed while it was uploading."""
        if not self._local.mark_clean(uploaded):
            logger.debug(f"{uploaded.id} changed during upload, keeping it dirty")

    def _remote_supersedes(self, local: Record, row: Dict[str, Any]) -> bool:
        try:
            incoming = record_from_row(row)
        except MalformedRowError as e:
            logger.warning(f"Ignoring malformed remote copy during upload check: {e}")
            return False
        if incoming.deleted:
            return True
        return self._remote_wins(local, incoming, row) is True

    # === Step 4: download ===

    def _pull(self, result: SyncResult) -> Tuple[Optional[List[Dict[str, Any]]], int]:
        cursor = self.get_last_sync_time()
        fetch_started = self._clock()
        try:
            rows = self._remote.select_since(cursor)
        except RemoteStoreError as e:
            logger.error(f"Failed to pull remote changes since {cursor}: {e}", exc_info=True)
            result.errors.append(f"Failed to pull remote changes: {e}")
            return None, fetch_started
        logger.debug(f"Pulled {len(rows)} rows changed since {cursor}")
        return rows, fetch_started

    # === Step 5: merge ===

    def _merge_rows(self, rows: List[Dict[str, Any]], result: SyncResult) -> None:
        ledger = self._tombstones.list_deleted()
        expired: List[str] = []
        now = self._clock()

        for row in rows:
            incoming = self._merge_row(row, ledger, result)
            if incoming is None:
                continue
            if incoming.deleted and incoming.purge_after and incoming.purge_after <= now:
                expired.append(incoming.id)

        for record_id in expired:
            try:
                self._remote.delete_by_id(record_id)
                result.purged += 1
                logger.info(f"Purged expired remote tombstone {record_id}")
            except RemoteStoreError as e:
                logger.debug(f"Could not purge remote tombstone {record_id}: {e}")

    def _merge_row(
        self, row: Dict[str, Any], ledger: Set[str], result: SyncResult
    ) -> Optional[Record]:
        """Merge one remote row. Returns the parsed record, or None if malformed."""
        try:
            incoming = record_from_row(row)
        except MalformedRowError as e:
            logger.warning(f"Skipping remote row: {e}")
            result.skipped += 1
            return None

        merge = self._apply_remote_tombstone if incoming.deleted else self._merge_active
        for attempt in range(MERGE_ATTEMPTS):
            if attempt:
                ledger = self._tombstones.list_deleted()
            if merge(incoming, row, ledger, result):
                return incoming
            logger.debug(f"{incoming.id} changed locally during merge, re-reading")

        # Local edits leave the record dirty or ledgered; the next cycle's
        # version check or tombstone push reconciles it
        logger.info(f"{incoming.id} kept changing locally, merging next cycle")
        result.skipped += 1
        return incoming

    def _apply_remote_tombstone(
        self, incoming: Record, row: Dict[str, Any], ledger: Set[str], result: SyncResult
    ) -> bool:
        """Apply a remote deletion. Returns False if the local copy changed meanwhile."""
        if incoming.id in ledger:
            return True
        local = self._local.get_by_id(incoming.id)
        if local is not None and local.deleted and not local.dirty:
            return True

        if local is None:
            projection = replace(incoming, dirty=False)
        else:
            projection = replace(
                local,
                deleted=True,
                deleted_at=incoming.deleted_at,
                purge_after=incoming.purge_after,
                sync_version=max(local.sync_version, incoming.sync_version),
                updated_at=max(local.timestamp, incoming.timestamp),
                dirty=False,
            )
        if not self._local.compare_and_put(projection, local):
            return False
        if local is not None and local.dirty:
            result.conflicts.append(
                self._conflict(local, incoming, "deletion_wins", "remote_tombstone")
            )

        self._tombstones.mark_deleted(incoming.id, deleted_at=incoming.deleted_at)
        # The remote already holds the marker, so the deletion is confirmed
        self._tombstones.clear([incoming.id])
        result.deletions_pulled.append(incoming.id)
        logger.debug(f"Applied remote deletion of {incoming.id}")
        return True

    def _merge_active(
        self, incoming: Record, row: Dict[str, Any], ledger: Set[str], result: SyncResult
    ) -> bool:
        """Merge an active remote row. Returns False if the local copy changed meanwhile."""
        if incoming.id in ledger:
            # A pending local delete is never undone by an incoming update
            result.skipped += 1
            result.conflicts.append(
                SyncConflict(
                    record_id=incoming.id,
                    resolution="deletion_wins",
                    policy_decision="tombstoned_locally",
                    remote_summary=incoming.summary(),
                )
            )
            return True

        local = self._local.get_by_id(incoming.id)
        if local is None:
            if not self._local.compare_and_put(incoming, None):
                return False
            result.pulled += 1
            return True

        if local.deleted:
            has_version = row.get("sync_version") is not None
            if not (
                has_version
                and incoming.sync_version > local.sync_version
                and incoming.timestamp >= (local.deleted_at or 0)
            ):
                result.skipped += 1
                return True
            if not self._local.compare_and_put(incoming, local):
                return False
            result.pulled += 1
            result.conflicts.append(
                self._conflict(local, incoming, "remote_wins", "newer_version_after_deletion")
            )
            return True

        decision = self._remote_wins(local, incoming, row)
        if decision is None:
            return True
        if decision:
            if not self._local.compare_and_put(incoming, local):
                return False
            result.pulled += 1
            if local.dirty:
                result.conflicts.append(
                    self._conflict(local, incoming, "remote_wins", self._policy(local, incoming))
                )
            return True

        if not local.dirty:
            # Remote copy is stale; schedule a re-upload to repair it
            if not self._local.compare_and_put(replace(local, dirty=True), local):
                return False
        result.skipped += 1
        result.conflicts.append(
            self._conflict(local, incoming, "local_wins", self._policy(local, incoming))
        )
        return True

    # === Conflict policy ===

    def _remote_wins(self, local: Record, incoming: Record, row: Dict[str, Any]) -> Optional[bool]:
        """True if the remote copy wins, False if local wins, None if identical.

        Higher sync_version wins; when versions are equal or the row has none,
        the newer timestamp wins; on a full tie the smaller content hash wins.
        """
        if row.get("sync_version") is not None:
            if incoming.sync_version > local.sync_version:
                return True
            if incoming.sync_version < local.sync_version:
                return False
        if incoming.timestamp > local.timestamp:
            return True
        if incoming.timestamp < local.timestamp:
            return False

        local_hash = self._content_hash(local)
        remote_hash = self._content_hash(incoming)
        if local_hash == remote_hash:
            return None
        return remote_hash < local_hash

    def _policy(self, local: Record, incoming: Record) -> str:
        if incoming.sync_version != local.sync_version:
            return "higher_version"
        if incoming.timestamp != local.timestamp:
            return "newer_timestamp"
        return "tie_hash"

    def _content_hash(self, record: Record) -> str:
        payload = {
            "category": record.category.value,
            "primary_text": record.primary_text,
            "secondary_text": record.secondary_text,
            "generated_text": record.generated_text,
            "mastery_level": int(record.mastery_level),
            "deleted": record.deleted,
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()

    def _conflict(
        self, local: Record, incoming: Record, resolution: str, policy_decision: str
    ) -> SyncConflict:
        return SyncConflict(
            record_id=local.id,
            resolution=resolution,
            policy_decision=policy_decision,
            local_summary=local.summary(),
            remote_summary=incoming.summary(),
        )

    # === Steps 6-7 ===

    def _advance_cursor(self, fetch_started: int, result: SyncResult) -> None:
        previous = self.get_last_sync_time()
        new_value = max(previous, fetch_started)
        self._set_last_sync_time(new_value)
        result.cursor_advanced = new_value > previous

    def _purge_local(self) -> int:
        """Physically remove confirmed deletions whose purge window has elapsed."""
        ledger = self._tombstones.list_deleted()
        now = self._clock()
        purged = 0
        for record in self._local.get_all():
            if (
                record.deleted
                and not record.dirty
                and record.id not in ledger
                and record.purge_after is not None
                and record.purge_after <= now
            ):
                self._local.delete(record.id)
                purged += 1
        if purged:
            logger.info(f"Purged {purged} expired local deletions")
        return purged
