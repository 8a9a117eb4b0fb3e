from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from ..core.config import ChatClientConfig
from ..core.logging_utils import log_event
from .connection import ChatConnectionManager
from .formatting import format_message_time
from .history import ChatHistoryLoader
from .i18n import role_label, translate
from .models import ChatMessage
from .policy import StatusLike, can_chat_in_status, chat_unavailable_reason
from .rest import FindMyWorkerRestClient

ManagerFactory = Callable[..., ChatConnectionManager]
ViewListener = Callable[["ChatView"], None]

STATUS_CONNECTED = "connected"
STATUS_RECONNECTING = "reconnecting"
STATUS_DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class CurrentUser:
    id: Optional[Union[int, str]]
    role: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ChatViewModel:
    order_id: Union[int, str]
    status: str
    show_retry: bool
    unavailable_banner: Optional[str]
    unavailable_detail: Optional[str]
    error_banner: Optional[str]
    history_error_banner: Optional[str]
    loading: bool
    messages: tuple[ChatMessage, ...]
    input_enabled: bool
    placeholder: str


class ChatView:
    """Chat panel state for one order, derived from its connection manager."""

    def __init__(
        self,
        order_id: Union[int, str],
        order_status: StatusLike,
        current_user: Optional[CurrentUser],
        token: Optional[str],
        *,
        config: Optional[ChatClientConfig] = None,
        rest_client: Optional[FindMyWorkerRestClient] = None,
        history_loader: Optional[ChatHistoryLoader] = None,
        manager_factory: ManagerFactory = ChatConnectionManager,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._order_id = order_id
        self._order_status = order_status
        self._current_user = current_user
        self._token = token
        self._config = config or ChatClientConfig()
        self._logger = logger or logging.getLogger(__name__)
        # An owned REST client lives from mount to unmount; see _open_rest_client.
        self._owns_rest_client = rest_client is None and history_loader is None
        if history_loader is None and rest_client is not None:
            history_loader = ChatHistoryLoader(rest_client, logger=self._logger)
        self._rest_client = rest_client
        self._history_loader = history_loader
        self._manager_factory = manager_factory
        self._manager: Optional[ChatConnectionManager] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._history_task: Optional[asyncio.Task[None]] = None
        self._history_loading = True
        self._history_error: Optional[str] = None
        self._mounted = False
        self._listeners: list[ViewListener] = []

    @property
    def order_id(self) -> Union[int, str]:
        return self._order_id

    @property
    def order_status(self) -> StatusLike:
        return self._order_status

    @property
    def chat_enabled(self) -> bool:
        return can_chat_in_status(self._order_status)

    @property
    def manager(self) -> Optional[ChatConnectionManager]:
        return self._manager

    @property
    def mounted(self) -> bool:
        return self._mounted

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    async def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        if self._owns_rest_client:
            self._open_rest_client()
        self._manager = self._manager_factory(
            self._order_id,
            self._token,
            enabled=self.chat_enabled,
            config=self._config,
            logger=self._logger,
        )
        self._unsubscribe = self._manager.subscribe(lambda _manager: self._notify())
        self._start_history_load()
        await self._manager.connect()

    async def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        await self._cancel_history_load()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._manager is not None:
            await self._manager.close()
        await self._close_rest_client()

    async def set_order_status(self, order_status: StatusLike) -> None:
        self._order_status = order_status
        if self._manager is not None:
            await self._manager.update(enabled=self.chat_enabled)
        self._notify()

    async def set_order(self, order_id: Union[int, str], order_status: StatusLike) -> None:
        order_changed = order_id != self._order_id
        self._order_id = order_id
        self._order_status = order_status
        if order_changed:
            await self._cancel_history_load()
        if self._manager is not None:
            await self._manager.update(order_id=order_id, enabled=self.chat_enabled)
        # History is seeded only once the manager holds the new order.
        if order_changed and self._mounted:
            self._start_history_load()
        self._notify()

    async def set_token(self, token: Optional[str]) -> None:
        if token == self._token:
            return
        self._token = token
        await self._cancel_history_load()
        if self._manager is not None:
            await self._manager.update(token=token)
        if self._mounted:
            if self._owns_rest_client:
                await self._close_rest_client()
                self._open_rest_client()
            self._start_history_load()
        self._notify()

    async def submit(self, text: str) -> bool:
        """Send the input box text; True means the box may be cleared."""
        if not text or not text.strip():
            return False
        manager = self._manager
        if manager is None or not self.chat_enabled or not manager.is_connected:
            return False
        return await manager.send_message(text)

    async def retry(self) -> None:
        if self._manager is not None:
            await self._manager.reconnect()

    def snapshot(self) -> ChatViewModel:
        manager = self._manager
        locale = self._config.locale
        is_connected = manager is not None and manager.is_connected
        is_reconnecting = manager is not None and manager.is_reconnecting
        if is_connected:
            status = STATUS_CONNECTED
        elif is_reconnecting:
            status = STATUS_RECONNECTING
        else:
            status = STATUS_DISCONNECTED

        enabled = self.chat_enabled
        unavailable_banner = None
        unavailable_detail = None
        if not enabled:
            unavailable_banner = translate("chat.chatNotAvailable", locale)
            reason = chat_unavailable_reason(self._order_status)
            if reason is not None:
                unavailable_detail = translate(reason, locale)

        error = manager.error if manager is not None else None
        if not enabled:
            placeholder = translate("chat.chatClosed", locale)
        elif not is_connected:
            placeholder = translate("chat.waitingConnection", locale)
        else:
            placeholder = translate("chat.typeMessage", locale)

        return ChatViewModel(
            order_id=self._order_id,
            status=status,
            show_retry=status == STATUS_DISCONNECTED,
            unavailable_banner=unavailable_banner,
            unavailable_detail=unavailable_detail,
            error_banner=translate(error, locale) if error else None,
            history_error_banner=(
                translate(self._history_error, locale) if self._history_error else None
            ),
            loading=self._history_loading,
            messages=manager.messages if manager is not None else (),
            input_enabled=enabled and is_connected,
            placeholder=placeholder,
        )

    def render_lines(self, *, now: Optional[datetime] = None) -> list[str]:
        model = self.snapshot()
        locale = self._config.locale
        status_label = translate(f"chat.{model.status}", locale)
        header = (
            f"{translate('chat.title', locale)} - "
            f"{translate('chat.orderNumber', locale, number=model.order_id)} "
            f"[{status_label}]"
        )
        if model.show_retry:
            header += f" ({translate('chat.retry', locale)}: /retry)"
        lines = [header]
        if model.unavailable_banner:
            lines.append(f"! {model.unavailable_banner}")
            if model.unavailable_detail:
                lines.append(f"  {model.unavailable_detail}")
        if model.error_banner:
            lines.append(f"! {model.error_banner}")
        if model.history_error_banner:
            lines.append(f"! {model.history_error_banner}")
        if model.loading:
            lines.append(translate("chat.loadingMessages", locale))
        elif not model.messages:
            lines.append(translate("chat.noMessages", locale))
            lines.append(translate("chat.startConversation", locale))
        else:
            lines.extend(self.format_message(m, now=now) for m in model.messages)
        return lines

    def format_message(
        self, message: ChatMessage, *, now: Optional[datetime] = None
    ) -> str:
        locale = self._config.locale
        when = format_message_time(message.timestamp, locale, now=now)
        if self._is_own(message):
            return f"  > {message.content} ({when})"
        role = role_label(message.sender_role, locale)
        author = f"{message.sender_name} [{role}]" if role else message.sender_name
        return f"{author}: {message.content} ({when})"

    def _is_own(self, message: ChatMessage) -> bool:
        user = self._current_user
        if user is None or user.id is None or message.sender is None:
            return False
        return str(message.sender) == str(user.id)

    def _open_rest_client(self) -> None:
        self._rest_client = FindMyWorkerRestClient(
            token=self._token,
            base_url=self._config.api_base_url,
            timeout_seconds=self._config.request_timeout_seconds,
            locale=self._config.locale,
        )
        self._history_loader = ChatHistoryLoader(self._rest_client, logger=self._logger)

    async def _close_rest_client(self) -> None:
        if not self._owns_rest_client:
            return
        client, self._rest_client = self._rest_client, None
        self._history_loader = None
        if client is not None:
            await client.close()

    def _start_history_load(self) -> None:
        if not self._order_id or not self._token or self._history_loader is None:
            self._history_loading = False
            return
        self._history_loading = True
        self._history_error = None
        self._history_task = asyncio.create_task(
            self._load_history(self._history_loader, self._order_id)
        )

    async def _cancel_history_load(self) -> None:
        task, self._history_task = self._history_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _load_history(
        self, loader: ChatHistoryLoader, order_id: Union[int, str]
    ) -> None:
        history = await loader.load(order_id)
        if not self._mounted or order_id != self._order_id:
            return
        self._history_error = history.error
        self._history_loading = False
        if history.messages and self._manager is not None:
            self._manager.set_initial_messages(history.messages)
        log_event(
            self._logger,
            logging.DEBUG,
            "chat.view.history_applied",
            order_id=order_id,
            count=len(history.messages),
            error=history.error,
        )
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "chat.view.listener_failed",
                    order_id=self._order_id,
                    exc=exc,
                )


def build_current_user(raw: Optional[dict[str, Any]]) -> Optional[CurrentUser]:
    if not isinstance(raw, dict):
        return None
    role = raw.get("role")
    name = raw.get("name") or raw.get("username")
    return CurrentUser(
        id=raw.get("id"),
        role=role if isinstance(role, str) else None,
        name=name if isinstance(name, str) else None,
    )
