"""
Error taxonomy for the tracker.
Transient network failures are retried; everything else is not.
"""

from __future__ import annotations
from typing import Optional


class TrackerError(Exception):
    """Base class for all tracker errors."""


class TransientNetworkError(TrackerError):
    """Timeout, connection failure or non-2xx HTTP response."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UpstreamDataError(TrackerError):
    """Malformed JSON or a missing required field in an upstream payload."""


class PersistenceError(TrackerError):
    """A store write or read failed."""


class ConfigurationError(TrackerError):
    """Configuration state (e.g. the tracked-coin file) could not be read."""


class AnalysisError(TrackerError):
    """The aggregation run failed as a whole."""
