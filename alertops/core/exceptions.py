"""Exception hierarchy for alertops."""

from __future__ import annotations


class AlertOpsError(Exception):
    """Base exception for alertops errors."""


class ConfigError(AlertOpsError):
    """Settings could not be loaded or are malformed."""
