from __future__ import annotations

from typing import Optional, Union

from .constants import CHAT_ACTIVE_STATUSES, OrderStatus

StatusLike = Union[OrderStatus, str, None]


def _status_value(status: StatusLike) -> Optional[str]:
    if isinstance(status, OrderStatus):
        return status.value
    if isinstance(status, str):
        return status
    return None


def can_chat_in_status(order_status: StatusLike) -> bool:
    """Return True when an order in ``order_status`` may use its chat."""

    value = _status_value(order_status)
    return value is not None and value in CHAT_ACTIVE_STATUSES


def chat_unavailable_reason(order_status: StatusLike) -> Optional[str]:
    """Return the i18n key explaining why chat is closed, if there is one."""

    value = _status_value(order_status)
    if value is None or value in CHAT_ACTIVE_STATUSES:
        return None
    if value == OrderStatus.PENDING.value:
        return "chat.waitForAcceptance"
    if value in (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value):
        return "chat.orderClosed"
    return None
