from __future__ import annotations

from enum import Enum

DEFAULT_WS_URL = "ws://localhost:8000"
DEFAULT_API_URL = "http://127.0.0.1:8000/api/"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_OPEN_TIMEOUT_SECONDS = 10.0

# Reconnection policy: a fixed delay between a bounded number of attempts.
MAX_RETRIES = 5
RECONNECT_DELAY = 3.0
RECONNECT_MAX_DELAY = 30.0

# Keep-alive frames so idle proxies do not drop the channel.
PING_INTERVAL = 30.0

CHAT_MESSAGE_FRAME = "chat_message"
ERROR_FRAME = "error"
CONNECTION_ESTABLISHED_FRAME = "connection_established"
PING_FRAME = "ping"
PONG_FRAME = "pong"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    IN_ESCROW = "IN_ESCROW"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    WORKER = "WORKER"
    ADMIN = "ADMIN"


# Order statuses in which the chat channel may be opened and written to.
CHAT_ACTIVE_STATUSES = frozenset(
    {
        OrderStatus.ACCEPTED.value,
        OrderStatus.IN_ESCROW.value,
        OrderStatus.IN_PROGRESS.value,
    }
)
