"""Error types for cardsync."""


class CardsyncError(Exception):
    """Base for all cardsync errors."""

    pass


class LocalStoreError(CardsyncError):
    """Raised when neither the primary nor the fallback local store can serve a call."""

    pass


class RemoteStoreError(CardsyncError):
    """Raised when the remote row store fails (network, timeout, API error).

    The sync engine treats this as transient: the affected item stays
    pending and is retried on the next cycle.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(f"Remote {operation} failed: {message}")
        self.operation = operation


class MalformedRowError(CardsyncError):
    """Raised when a remote row lacks fields needed to build a Record."""

    def __init__(self, row_id, reason: str):
        super().__init__(f"Malformed remote row {row_id!r}: {reason}")
        self.row_id = row_id
        self.reason = reason


class EntryNotFoundError(CardsyncError):
    """Raised when an entry operation targets an unknown or deleted id."""

    def __init__(self, entry_id: str):
        super().__init__(f"Entry not found: {entry_id}")
        self.entry_id = entry_id


class GenerationError(CardsyncError):
    """Raised when content generation fails."""

    pass


class RateLimitedError(GenerationError):
    """The generation backend rejected the call for rate limiting."""

    pass


class GenerationAuthError(GenerationError):
    """The generation backend rejected the API key."""

    pass


class GenerationNetworkError(GenerationError):
    """The generation backend could not be reached or timed out."""

    pass
