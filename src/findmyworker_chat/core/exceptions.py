from __future__ import annotations


class TransientError(Exception):
    """Failure that may succeed if attempted again (network drops, 5xx)."""

    recoverable = True
    severity = "warning"


class PermanentError(Exception):
    """Failure that retrying cannot fix (bad credentials, missing resources)."""

    recoverable = False
    severity = "error"


class ConfigError(Exception):
    """Raised when chat client config is invalid."""
