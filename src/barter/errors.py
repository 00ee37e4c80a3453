"""Error kinds surfaced by the trade engine.

Callers branch on the exception type, never on the message text.
"""
from __future__ import annotations


class BarterError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(BarterError):
    """Malformed input; raised before anything is written."""


class ConflictError(BarterError):
    """The stored state changed, or does not allow the requested transition."""


class NotFoundError(BarterError):
    """A referenced item, conversation or profile does not exist."""


class AuthorizationError(BarterError):
    """The acting user may not perform the operation."""


class UpstreamUnavailable(BarterError):
    """An external provider (geocoding) failed or timed out."""
