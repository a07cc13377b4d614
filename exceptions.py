# @even rygh
"""
Error taxonomy for the scanner and IDS/IPS core.

Per-file problems are logged and skipped by the scanner; these exceptions
are reserved for conditions a caller has to act on.
"""
from typing import Any, Dict, Optional


class SentinelError(Exception):
    """Base class for all service errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SchemaError(SentinelError):
    """Repository schema is incompatible and could not be migrated."""


class ConfigurationError(SentinelError):
    """A required setting is missing or points at nothing."""


class ScanIOError(SentinelError):
    """Filesystem operation failed (unreadable file, failed rename)."""


class QuarantineError(ScanIOError):
    """A file could not be moved into quarantine. Nothing was isolated."""


class ExternalServiceError(SentinelError):
    """External AV engine or checksum manifest source failed or timed out."""


class ScanInProgressError(SentinelError):
    """A scan is already running for this installation."""


class ScanCancelledError(SentinelError):
    """The scan was cancelled or ran past its deadline."""


class NotFoundError(SentinelError):
    """Requested scan, issue or event does not exist."""
