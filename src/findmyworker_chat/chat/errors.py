from __future__ import annotations

from typing import Optional

from ..core.exceptions import ConfigError, PermanentError, TransientError


class ChatError(Exception):
    """Base order chat client error."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class ChatConfigError(ChatError, ConfigError):
    """Chat client configuration error."""


class ChatProtocolError(ChatError):
    """Inbound channel frame could not be understood."""


class ChatAPIError(ChatError):
    """REST backend request error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.status_code = status_code


class ChatTransientError(ChatAPIError, TransientError):
    """Retryable backend error (network issues, 5xx)."""


class ChatPermanentError(ChatAPIError, PermanentError):
    """Non-retryable backend error (expired credentials, missing permission)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity
