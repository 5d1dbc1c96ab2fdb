"""Exception hierarchy shared by the crawl, redaction and CLI layers."""

from __future__ import annotations


class AuditError(RuntimeError):
    """Base class for every error raised by mongoaudit."""


class ConfigurationError(AuditError):
    """Raised when connection info or the config file is missing or malformed."""


class ConnectionBackendError(AuditError):
    """Raised when a handle cannot be opened against a target."""


class ListingError(AuditError):
    """Raised when databases or collections cannot be enumerated."""


class ProbeError(AuditError):
    """Raised when a collection cannot be counted or sampled."""


class RenderError(AuditError):
    """Raised when a document cannot be serialized for display."""


__all__ = [
    "AuditError",
    "ConfigurationError",
    "ConnectionBackendError",
    "ListingError",
    "ProbeError",
    "RenderError",
]
