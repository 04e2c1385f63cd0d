"""Sync scheduling for cardsync.

All triggers (startup, the periodic timer, foreground/visibility changes,
network coming back, explicit user requests) funnel into
``SyncScheduler.trigger_sync``, which runs at most one cycle at a time.
Overlapping triggers are dropped, not queued.
"""

import logging
import threading
from typing import Optional

from cardsync.errors import LocalStoreError
from cardsync.types import SyncResult

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 30.0


class SyncScheduler:
    """Owns the periodic sync timer and the re-entrancy guard.

    Args:
        engine: SyncEngine to drive.
        interval: Seconds between timer-triggered cycles.
    """

    def __init__(self, engine, interval: float = DEFAULT_SYNC_INTERVAL):
        self._engine = engine
        self.interval = interval
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[SyncResult] = None

    @property
    def is_syncing(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def trigger_sync(self, reason: str = "manual") -> Optional[SyncResult]:
        """Run a sync cycle unless one is already in flight.

        Returns:
            The cycle's SyncResult, or None if another cycle was running and
            this trigger was dropped.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug(f"Sync already in progress, dropping {reason} trigger")
            return None
        try:
            logger.debug(f"Sync triggered ({reason})")
            try:
                result = self._engine.run_cycle()
            except LocalStoreError as e:
                logger.error(f"Sync cycle aborted by local store failure: {e}", exc_info=True)
                result = SyncResult(errors=[f"Local store unavailable: {e}"])
            self.last_result = result
            return result
        finally:
            self._cycle_lock.release()

    # === Trigger hooks ===

    def on_visible(self) -> Optional[SyncResult]:
        """Application moved to the foreground."""
        return self.trigger_sync("visible")

    def on_online(self) -> Optional[SyncResult]:
        """Host network connectivity came back."""
        return self.trigger_sync("online")

    # === Lifecycle ===

    def start(self, sync_now: bool = True) -> None:
        """Start the periodic timer, running a startup cycle first when ``sync_now``."""
        if self.is_running:
            return
        if sync_now:
            self.trigger_sync("startup")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="cardsync-sync-timer", daemon=True)
        self._thread.start()
        logger.info(f"Sync scheduler started (interval={self.interval}s)")

    def stop(self) -> None:
        """Stop the periodic timer and wait for a cycle in flight to finish.

        On return no cycle is running, so the local store can be closed.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.wait_idle()
        logger.info("Sync scheduler stopped")

    def wait_idle(self) -> None:
        """Block until no cycle is in flight on any thread."""
        with self._cycle_lock:
            pass

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.trigger_sync("timer")
            except Exception as e:
                # Keep the timer alive; the next tick retries
                logger.error(f"Timer-triggered sync failed: {e}", exc_info=True)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
