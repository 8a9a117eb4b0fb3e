from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Union

from .constants import CHAT_MESSAGE_FRAME
from .errors import ChatProtocolError


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ChatMessage:
    id: Union[int, str]
    content: str = ""
    sender: Optional[Union[int, str]] = None
    sender_name: str = ""
    sender_role: str = ""
    timestamp: str = ""
    type: str = CHAT_MESSAGE_FRAME
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["ChatMessage"]:
        if isinstance(payload, ChatMessage):
            return payload
        if not isinstance(payload, dict):
            return None
        message_id = payload.get("id")
        if message_id is None or isinstance(message_id, bool):
            return None
        if not isinstance(message_id, (int, str)):
            return None
        content = payload.get("content")
        sender_name = payload.get("sender_name")
        sender_role = payload.get("sender_role")
        timestamp = payload.get("timestamp")
        message_type = payload.get("type")
        return cls(
            id=message_id,
            content=content if isinstance(content, str) else "",
            sender=payload.get("sender"),
            sender_name=sender_name if isinstance(sender_name, str) else "",
            sender_role=sender_role if isinstance(sender_role, str) else "",
            timestamp=timestamp if isinstance(timestamp, str) else "",
            type=message_type if isinstance(message_type, str) else CHAT_MESSAGE_FRAME,
            raw=dict(payload),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "content": self.content,
            "sender": self.sender,
            "sender_name": self.sender_name,
            "sender_role": self.sender_role,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ChannelFrame:
    type: str
    data: dict[str, Any]


def parse_channel_frame(frame: Union[str, bytes, dict[str, Any]]) -> ChannelFrame:
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ChatProtocolError("Chat frame is not valid UTF-8") from exc
    if isinstance(frame, str):
        try:
            payload = json.loads(frame)
        except ValueError as exc:
            raise ChatProtocolError("Chat frame is not valid JSON") from exc
    else:
        payload = frame
    if not isinstance(payload, dict):
        raise ChatProtocolError("Chat frame must be a JSON object")
    frame_type = payload.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ChatProtocolError(f"Chat frame missing string type: {payload!r}")
    return ChannelFrame(type=frame_type, data=dict(payload))


def dedupe_messages(messages: Iterable[ChatMessage]) -> list[ChatMessage]:
    """Keep the first occurrence of every message id, preserving order."""
    seen: set[Union[int, str]] = set()
    unique: list[ChatMessage] = []
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        unique.append(message)
    return unique


def coerce_messages(items: Iterable[Any]) -> list[ChatMessage]:
    parsed: list[ChatMessage] = []
    for item in items:
        message = ChatMessage.from_payload(item)
        if message is not None:
            parsed.append(message)
    return parsed
