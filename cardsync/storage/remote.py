"""Remote row store for cardsync.

The remote side is a row-oriented table keyed by ``id`` with a
server-side ``last_synced_at`` column (ms since epoch). ``RemoteStore`` is
the surface the sync engine consumes; ``SupabaseRemoteStore`` implements it
over supabase-py / PostgREST.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from cardsync.errors import RemoteStoreError
from cardsync.types import now_ms

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "knowledge_entries"
# PostgREST URL length limits: keep id batches small
FETCH_BATCH_SIZE = 100


class RemoteStore(Protocol):
    """Row store surface used by the sync engine."""

    def upsert(self, row: Dict[str, Any]) -> None:
        """Insert or update ``row`` by id, stamping ``last_synced_at``."""
        ...

    def select_since(self, cursor: int) -> List[Dict[str, Any]]:
        """Rows whose ``last_synced_at`` is strictly greater than ``cursor``."""
        ...

    def fetch_by_ids(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Current rows for ``ids`` (missing ids are simply absent)."""
        ...

    def delete_by_id(self, record_id: str) -> None:
        """Hard-delete a row. Only used to purge expired tombstones."""
        ...

    def ping(self) -> bool:
        """True when the store answers."""
        ...


class SupabaseRemoteStore:
    """RemoteStore backed by a Supabase table.

    Args:
        client: A configured supabase ``Client``.
        table: Table name.
        clock: Millisecond clock used to stamp ``last_synced_at``.
    """

    def __init__(self, client: Client, table: str = DEFAULT_TABLE, clock=now_ms):
        self._client = client
        self.table = table
        self._clock = clock

    def _execute(self, operation: str, query) -> Any:
        try:
            return query.execute()
        except APIError as e:
            raise RemoteStoreError(operation, f"API error {e.code}: {e.message}") from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(operation, f"{type(e).__name__}: {e}") from e

    def upsert(self, row: Dict[str, Any]) -> None:
        payload = dict(row)
        if not payload.get("last_synced_at"):
            payload["last_synced_at"] = self._clock()
        self._execute(
            "upsert",
            self._client.table(self.table).upsert(payload, on_conflict="id"),
        )

    def select_since(self, cursor: int) -> List[Dict[str, Any]]:
        response = self._execute(
            "select",
            self._client.table(self.table)
            .select("*")
            .gt("last_synced_at", cursor)
            .order("last_synced_at"),
        )
        return list(response.data or [])

    def fetch_by_ids(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        id_list = list(ids)
        rows: List[Dict[str, Any]] = []
        for start in range(0, len(id_list), FETCH_BATCH_SIZE):
            batch = id_list[start : start + FETCH_BATCH_SIZE]
            response = self._execute(
                "fetch",
                self._client.table(self.table).select("*").in_("id", batch),
            )
            rows.extend(response.data or [])
        return rows

    def delete_by_id(self, record_id: str) -> None:
        self._execute("delete", self._client.table(self.table).delete().eq("id", record_id))

    def ping(self) -> bool:
        try:
            self._execute("ping", self._client.table(self.table).select("id").limit(1))
            return True
        except RemoteStoreError as e:
            logger.debug(f"Remote ping failed: {e}")
            return False


def create_remote_store(settings) -> Optional[SupabaseRemoteStore]:
    """Build a SupabaseRemoteStore from settings, or None when not configured."""
    if not settings.has_remote:
        logger.debug("No Supabase credentials configured, remote sync disabled")
        return None
    options = ClientOptions(postgrest_client_timeout=settings.remote_timeout)
    client = create_client(settings.supabase_url, settings.supabase_key, options=options)
    return SupabaseRemoteStore(client, table=settings.remote_table)
