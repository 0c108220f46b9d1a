"""Error kinds raised by the registry, discovery and registration paths.

Each error carries the HTTP status the registry API answers with, so the
Flask error handler can render every kind the same way.
"""
from __future__ import annotations


class InframonError(Exception):
    http_status = 500
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = message or (self.__class__.__doc__ or self.kind).strip()

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class MalformedRegistration(InframonError):
    """Registration payload is missing a required field."""
    http_status = 500
    kind = "malformed_registration"


class MalformedSnapshot(MalformedRegistration):
    """Snapshot blob could not be decoded."""
    kind = "malformed_snapshot"


class NotFound(InframonError):
    """Node not found or inactive."""
    http_status = 404
    kind = "not_found"


class MasterNotFound(InframonError):
    """No master node found after all discovery attempts."""
    http_status = 503
    kind = "master_not_found"


class TransportError(InframonError):
    """Network failure while talking to a peer."""
    http_status = 502
    kind = "transport_error"


class RemoteRenameFailure(TransportError):
    """The node refused or failed the hostname change."""
    kind = "remote_rename_failure"


__all__ = [
    "InframonError",
    "MalformedRegistration",
    "MalformedSnapshot",
    "NotFound",
    "MasterNotFound",
    "TransportError",
    "RemoteRenameFailure",
]
