"""Application context: the object graph built once at startup."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from cardsync.config import Settings, get_settings
from cardsync.entries import EntryService
from cardsync.review import normalize_weights
from cardsync.scheduler import SyncScheduler
from cardsync.storage import (
    LocalRecordStore,
    SyncEngine,
    TombstoneTracker,
    create_remote_store,
)
from cardsync.types import now_ms

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Explicit replacement for module-level handles.

    Construct with ``AppContext.create`` and pass the pieces to whatever
    needs them; nothing in cardsync keeps global state.
    """

    settings: Settings
    local: LocalRecordStore
    tombstones: TombstoneTracker
    engine: SyncEngine
    scheduler: SyncScheduler
    entries: EntryService

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        remote=None,
        clock: Callable[[], int] = now_ms,
    ) -> "AppContext":
        """Build the context.

        Args:
            settings: Defaults to ``get_settings()``.
            remote: RemoteStore override; defaults to Supabase from settings
                (None when no credentials are configured).
            clock: Millisecond clock shared by every component.
        """
        settings = settings or get_settings()
        settings.home.mkdir(parents=True, exist_ok=True)

        local = LocalRecordStore(settings.resolved_db_path, settings.resolved_fallback_path)
        tombstones = TombstoneTracker(local, clock=clock)
        if remote is None:
            remote = create_remote_store(settings)

        engine = SyncEngine(
            local,
            tombstones,
            remote,
            clock=clock,
            purge_window_ms=settings.purge_window_ms,
        )
        scheduler = SyncScheduler(engine, interval=settings.sync_interval)
        entries = EntryService(
            local, tombstones, clock=clock, purge_window_ms=settings.purge_window_ms
        )
        logger.debug(f"Context ready (local backend: {local.backend_name})")
        return cls(
            settings=settings,
            local=local,
            tombstones=tombstones,
            engine=engine,
            scheduler=scheduler,
            entries=entries,
        )

    @property
    def review_weights(self):
        return normalize_weights(self.settings.review_weights)

    def close(self) -> None:
        # stop() returns only once no cycle is using the local store
        self.scheduler.stop()
        self.local.close()
