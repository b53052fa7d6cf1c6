from __future__ import annotations


class ValidationError(ValueError):
    """A required parameter is missing or unusable; nothing was attempted."""


class RateLimitExceeded(RuntimeError):
    """The session's write budget is spent."""
