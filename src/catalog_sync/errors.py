"""Exception taxonomy for the sync pipeline and the DLQ management surface."""
from typing import Optional


class CatalogSyncError(Exception):
    """Base class for errors raised by catalog_sync."""


# ── Processing failures ───────────────────────────────────────────────────────

class TransientSyncError(CatalogSyncError):
    """A failure worth retrying: timeouts, remote 5xx, rate limiting."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentSyncError(CatalogSyncError):
    """A failure that will not go away on retry (validation, business rule)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnknownAccountError(PermanentSyncError):
    """The event references an account the remote system does not know."""


# ── Transport ─────────────────────────────────────────────────────────────────

class TransportUnavailable(CatalogSyncError):
    """The message channel cannot accept the message right now."""


# ── Operator actions ──────────────────────────────────────────────────────────

class DlqRecordNotFound(CatalogSyncError):
    def __init__(self, record_id: int):
        super().__init__(f"DLQ message with ID {record_id} not found")
        self.record_id = record_id


class AlreadyReplayed(CatalogSyncError):
    def __init__(self, record_id: int):
        super().__init__("Message has already been replayed")
        self.record_id = record_id


class AlreadyAcknowledged(CatalogSyncError):
    def __init__(self, record_id: int):
        super().__init__("Message has already been acknowledged")
        self.record_id = record_id


class InvalidPriority(CatalogSyncError):
    def __init__(self, value: str, allowed):
        super().__init__(
            f"Invalid priority. Must be one of: {', '.join(allowed)}"
        )
        self.value = value
