from __future__ import annotations

from enum import IntEnum
from typing import Optional, Union
from urllib.parse import quote

from websockets.exceptions import ConnectionClosed

from .constants import DEFAULT_WS_URL, RECONNECT_DELAY, RECONNECT_MAX_DELAY


class CloseCode(IntEnum):
    NORMAL_CLOSURE = 1000
    UNAUTHORIZED = 4001
    FORBIDDEN = 4003
    NOT_FOUND = 4004
    CHAT_INACTIVE = 4005


# i18n keys surfaced to the user when the server closes with a known code.
CLOSE_ERROR_MESSAGES: dict[int, str] = {
    CloseCode.UNAUTHORIZED: "auth.sessionExpired",
    CloseCode.FORBIDDEN: "chat.noPermission",
    CloseCode.NOT_FOUND: "chat.orderNotFound",
}

NON_RETRYABLE_CLOSE_CODES = frozenset(
    {CloseCode.NORMAL_CLOSURE, CloseCode.CHAT_INACTIVE}
)
AUTH_CLOSE_CODES = frozenset({CloseCode.UNAUTHORIZED, CloseCode.FORBIDDEN})

# A rejected handshake never reaches the close frame; map the HTTP status.
_HANDSHAKE_STATUS_CLOSE_CODES = {
    401: CloseCode.UNAUTHORIZED,
    403: CloseCode.FORBIDDEN,
    404: CloseCode.NOT_FOUND,
}


def build_channel_url(
    order_id: Union[int, str],
    token: str,
    *,
    base_url: str = DEFAULT_WS_URL,
) -> str:
    base = (base_url or DEFAULT_WS_URL).rstrip("/")
    return f"{base}/ws/chat/{order_id}/?token={quote(str(token), safe='')}"


def redact_channel_url(url: str) -> str:
    head, sep, _query = url.partition("?token=")
    if not sep:
        return url
    return f"{head}?token=<redacted>"


def close_error_message(code: Optional[int]) -> Optional[str]:
    if code is None:
        return None
    return CLOSE_ERROR_MESSAGES.get(code)


def is_retryable_close(code: Optional[int]) -> bool:
    return code not in NON_RETRYABLE_CLOSE_CODES


def is_auth_close(code: Optional[int]) -> bool:
    return code in AUTH_CLOSE_CODES


def channel_close_code(exc: BaseException) -> Optional[int]:
    received = getattr(exc, "rcvd", None)
    received_code = getattr(received, "code", None)
    if isinstance(received_code, int):
        return received_code
    if isinstance(exc, ConnectionClosed):
        # Connection dropped without a close frame.
        return None
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if not isinstance(status, int):
        status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        mapped = _HANDSHAKE_STATUS_CLOSE_CODES.get(status)
        return int(mapped) if mapped is not None else None
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    return None


def calculate_reconnect_delay(
    attempt: int,
    *,
    base_seconds: float = RECONNECT_DELAY,
    backoff: bool = False,
    max_seconds: float = RECONNECT_MAX_DELAY,
) -> float:
    """Delay before reconnect ``attempt`` (1-based).

    Fixed by default; with ``backoff`` the delay doubles per attempt up to
    ``max_seconds``. The number of attempts is bounded by the caller either way.
    """
    if base_seconds <= 0.0:
        return 0.0
    if not backoff:
        return base_seconds
    exponent = max(attempt - 1, 0)
    if exponent >= 32:
        return max(max_seconds, base_seconds)
    return float(min(max(max_seconds, base_seconds), base_seconds * (2**exponent)))
