"""
Portfolio Exporter Exceptions - Error hierarchy for graceful degradation.

Ingestion and persistence NEVER raise to the host session - failures are
logged and the affected payload leaves state unchanged. Only the export
entry point raises (NoMatchingPositionsError) so the caller can report it.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class ExporterError(Exception):
    """Base exception for all exporter errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class PayloadError(ExporterError):
    """Intercepted response body is not well-formed or fails its schema."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        raw_data: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.raw_data = raw_data[:500] if raw_data else None


class PersistenceError(ExporterError):
    """Blob store read/write error."""
    pass


class NoMatchingPositionsError(ExporterError):
    """Filters eliminated every position; nothing to export."""

    def __init__(
        self,
        total_positions: int,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            f"No positions to export for the selected filters "
            f"({total_positions} captured)",
            details,
        )
        self.total_positions = total_positions


class ConfigurationError(ExporterError):
    """Invalid configuration."""
    pass
