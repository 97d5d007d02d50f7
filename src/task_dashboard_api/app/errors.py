"""Domain errors and their HTTP status codes."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for errors surfaced by the dashboard API."""

    status_code = 500


class ValidationError(DashboardError):
    """A required request field is missing or malformed."""

    status_code = 400


class NotFoundError(DashboardError):
    """Unknown task key or run id."""

    status_code = 404


class StorageError(DashboardError):
    """Persistence layer is unavailable or failed mid-operation."""

    status_code = 500
