"""Order chat: channel transport, history and presentation state."""

from .constants import CHAT_ACTIVE_STATUSES, OrderStatus, UserRole
from .errors import (
    ChatAPIError,
    ChatConfigError,
    ChatError,
    ChatPermanentError,
    ChatProtocolError,
    ChatTransientError,
)
from .formatting import format_message_time
from .history import ChatHistory, ChatHistoryLoader
from .i18n import role_label, translate
from .models import ChannelFrame, ChatMessage, ConnectionState, parse_channel_frame
from .policy import can_chat_in_status, chat_unavailable_reason
from .rest import FindMyWorkerRestClient
from .transport import CloseCode, build_channel_url, calculate_reconnect_delay

__all__ = [
    "CHAT_ACTIVE_STATUSES",
    "ChannelFrame",
    "ChatAPIError",
    "ChatConfigError",
    "ChatError",
    "ChatHistory",
    "ChatHistoryLoader",
    "ChatMessage",
    "ChatPermanentError",
    "ChatProtocolError",
    "ChatTransientError",
    "CloseCode",
    "ConnectionState",
    "FindMyWorkerRestClient",
    "OrderStatus",
    "UserRole",
    "build_channel_url",
    "calculate_reconnect_delay",
    "can_chat_in_status",
    "chat_unavailable_reason",
    "format_message_time",
    "parse_channel_frame",
    "role_label",
    "translate",
]
