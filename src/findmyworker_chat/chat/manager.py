from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from ..core.logging_utils import log_event
from .policy import StatusLike
from .view import ChatView, CurrentUser

ViewFactory = Callable[
    [Union[int, str], StatusLike, CurrentUser], ChatView
]


class FloatingChatManager:
    """Keeps at most one chat view mounted at a time."""

    def __init__(
        self,
        view_factory: ViewFactory,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._view_factory = view_factory
        self._logger = logger or logging.getLogger(__name__)
        self._view: Optional[ChatView] = None
        self._active: Optional[tuple[Union[int, str], StatusLike]] = None

    @property
    def active_chat(self) -> Optional[tuple[Union[int, str], StatusLike]]:
        return self._active

    @property
    def view(self) -> Optional[ChatView]:
        return self._view

    async def open_chat(
        self,
        order_id: Union[int, str],
        order_status: StatusLike,
        current_user: Optional[CurrentUser],
    ) -> Optional[ChatView]:
        if current_user is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.floating.open_skipped",
                order_id=order_id,
            )
            return None
        await self.close_chat()
        view = self._view_factory(order_id, order_status, current_user)
        self._view = view
        self._active = (order_id, order_status)
        log_event(
            self._logger,
            logging.INFO,
            "chat.floating.opened",
            order_id=order_id,
            order_status=order_status,
        )
        await view.mount()
        return view

    async def close_chat(self) -> None:
        view, self._view = self._view, None
        active, self._active = self._active, None
        if view is None:
            return
        await view.unmount()
        log_event(
            self._logger,
            logging.INFO,
            "chat.floating.closed",
            order_id=active[0] if active else None,
        )
