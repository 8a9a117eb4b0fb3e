from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from ..core.logging_utils import log_event
from .models import ChatMessage, coerce_messages

HISTORY_ERROR_KEY = "chat.errorLoadingHistory"


class OrderMessagesSource(Protocol):
    @property
    def has_token(self) -> bool: ...

    async def get_order_messages(self, order_id: Union[int, str]) -> Any: ...


@dataclass(frozen=True)
class ChatHistory:
    messages: tuple[ChatMessage, ...] = ()
    total: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_history_items(payload: Any) -> list[Any]:
    """Accept ``{messages}``, ``{results}``, ``{data}`` or a bare list body."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in ("messages", "results", "data"):
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


class ChatHistoryLoader:
    """Fetches the persisted messages of an order once; never raises, never retries."""

    def __init__(
        self,
        source: OrderMessagesSource,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._source = source
        self._logger = logger or logging.getLogger(__name__)

    async def load(self, order_id: Union[int, str, None]) -> ChatHistory:
        if not order_id or not self._source.has_token:
            return ChatHistory()
        try:
            payload = await self._source.get_order_messages(order_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.history.load_failed",
                order_id=order_id,
                exc=exc,
            )
            return ChatHistory(error=HISTORY_ERROR_KEY)

        messages = coerce_messages(extract_history_items(payload))
        total = len(messages)
        if isinstance(payload, dict):
            reported = payload.get("total_messages")
            if isinstance(reported, int) and not isinstance(reported, bool):
                total = reported
        log_event(
            self._logger,
            logging.INFO,
            "chat.history.loaded",
            order_id=order_id,
            count=len(messages),
            total=total,
        )
        return ChatHistory(messages=tuple(messages), total=total)
