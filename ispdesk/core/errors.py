from __future__ import annotations


class IspDeskError(Exception):
    """Base error for ispdesk."""


class FolioGenerationError(IspDeskError):
    """No unused folio could be drawn within the configured attempts."""


class AuditLogImmutableError(IspDeskError):
    """Audit log rows are append-only; updates and deletes are rejected."""


class DatabaseError(IspDeskError):
    """Database operation failed in a way the caller cannot recover from."""
