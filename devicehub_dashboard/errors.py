"""Exception types raised inside the dashboard server."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for all dashboard errors."""


class ConfigurationError(DashboardError):
    """A required setting is missing or a setting has an invalid value."""


class UpstreamError(DashboardError):
    """The main service answered with a non-success status or could not be reached.

    ``status_code`` is the upstream HTTP status when one was received, and
    ``None`` for transport failures (DNS, refused connection, timeout).
    ``body`` holds the upstream JSON error object, when it sent one.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GeoLookupError(DashboardError):
    """Resolving an IP address through the geolocation provider failed."""
