"""Per-order chat channel: connect, reconnect, dispatch, send, teardown.

One ``ChatConnectionManager`` belongs to one mounted chat view. It owns at
most one live websocket at a time. Every callback that can fire after a
teardown (reader, keep-alive, reconnect timer, a handshake still in flight)
carries the channel generation it was started for and becomes a no-op once
that generation is stale.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.config import ChatClientConfig
from ..core.logging_utils import log_event
from .constants import (
    CHAT_MESSAGE_FRAME,
    CONNECTION_ESTABLISHED_FRAME,
    ERROR_FRAME,
    PING_FRAME,
    PONG_FRAME,
)
from .errors import ChatProtocolError
from .models import (
    ChatMessage,
    ConnectionState,
    coerce_messages,
    dedupe_messages,
    parse_channel_frame,
)
from .transport import (
    CloseCode,
    build_channel_url,
    calculate_reconnect_delay,
    channel_close_code,
    close_error_message,
    is_auth_close,
    is_retryable_close,
    redact_channel_url,
)

CONNECTION_ERROR_KEY = "chat.connectionError"
SEND_ERROR_KEY = "chat.sendError"
RETRIES_EXHAUSTED_KEY = "chat.connectionFailed"
SERVER_ERROR_KEY = "chat.serverError"

Connector = Callable[[str], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]
Listener = Callable[["ChatConnectionManager"], None]
OrderId = Union[int, str, None]

_UNSET: Any = object()


@dataclass(frozen=True)
class ChatConnectionSnapshot:
    state: ConnectionState
    messages: tuple[ChatMessage, ...]
    error: Optional[str]
    attempts: int

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def is_reconnecting(self) -> bool:
        return self.state is ConnectionState.RECONNECTING


def _socket_close_code(websocket: Any) -> Optional[int]:
    code = getattr(websocket, "close_code", None)
    return code if isinstance(code, int) else None


class ChatConnectionManager:
    def __init__(
        self,
        order_id: OrderId,
        token: Optional[str],
        *,
        enabled: bool = True,
        config: Optional[ChatClientConfig] = None,
        connector: Optional[Connector] = None,
        sleep: Optional[SleepFn] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._order_id = order_id
        self._token = token
        self._enabled = enabled
        self._config = config or ChatClientConfig()
        self._connector: Connector = connector or self._default_connector
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._logger = logger or logging.getLogger(__name__)

        self._state = ConnectionState.IDLE
        self._messages: list[ChatMessage] = []
        self._message_ids: set[Union[int, str]] = set()
        self._error: Optional[str] = None
        self._attempts = 0
        self._last_close_code: Optional[int] = None

        self._websocket: Any = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._ping_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        # Bumped whenever the live channel is replaced or torn down.
        self._generation = 0
        # Bumped whenever the session identity changes or the view unmounts.
        self._session_epoch = 0
        self._connecting_epoch: Optional[int] = None
        self._mounted = True
        self._disposed = False
        self._listeners: list[Listener] = []

    # -- exposed state -----------------------------------------------------

    @property
    def order_id(self) -> OrderId:
        return self._order_id

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_close_code(self) -> Optional[int]:
        return self._last_close_code

    def snapshot(self) -> ChatConnectionSnapshot:
        return ChatConnectionSnapshot(
            state=self._state,
            messages=tuple(self._messages),
            error=self._error,
            attempts=self._attempts,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    async def __aenter__(self) -> "ChatConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        if not self._mounted or self._disposed:
            return
        if not (self._enabled and self._order_id and self._token):
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.connect.skipped",
                order_id=self._order_id,
                enabled=self._enabled,
                has_token=bool(self._token),
            )
            return
        epoch = self._session_epoch
        if self._connecting_epoch == epoch:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.connect.in_flight",
                order_id=self._order_id,
            )
            return
        self._connecting_epoch = epoch
        try:
            await self._open_channel(epoch)
        finally:
            if self._connecting_epoch == epoch:
                self._connecting_epoch = None

    async def reconnect(self) -> None:
        """Manual retry: re-arms a torn-down session and connects again."""
        if self._disposed:
            return
        self._mounted = True
        await self.connect()

    async def disconnect(self) -> None:
        self._mounted = False
        self._session_epoch += 1
        self._cancel_reconnect_timer()
        if self._state is ConnectionState.OPEN:
            self._state = ConnectionState.CLOSING
        await self._teardown_channel()
        self._state = ConnectionState.CLOSED
        log_event(
            self._logger,
            logging.INFO,
            "chat.disconnected",
            order_id=self._order_id,
        )
        self._notify()

    async def close(self) -> None:
        self._disposed = True
        await self.disconnect()
        self._listeners.clear()

    async def update(
        self,
        *,
        order_id: OrderId = _UNSET,
        token: Optional[str] = _UNSET,
        enabled: bool = _UNSET,
    ) -> None:
        """Apply new view props; a changed identity replaces the session."""
        order_changed = order_id is not _UNSET and order_id != self._order_id
        token_changed = token is not _UNSET and token != self._token
        enabled_changed = enabled is not _UNSET and enabled != self._enabled
        if not (order_changed or token_changed or enabled_changed):
            return

        self._session_epoch += 1
        self._cancel_reconnect_timer()
        # Cleared before teardown yields so history seeded meanwhile survives.
        if order_changed:
            self._order_id = order_id
            self._messages = []
            self._message_ids = set()
        await self._teardown_channel()
        if token_changed:
            self._token = token
        if enabled_changed:
            self._enabled = bool(enabled)
        self._attempts = 0
        self._error = None
        self._last_close_code = None
        self._state = ConnectionState.IDLE
        log_event(
            self._logger,
            logging.INFO,
            "chat.session.replaced",
            order_id=self._order_id,
            order_changed=order_changed,
            token_changed=token_changed,
            enabled=self._enabled,
        )
        self._notify()
        if self._disposed:
            return
        self._mounted = True
        await self.connect()

    # -- messages ----------------------------------------------------------

    def set_initial_messages(self, messages: Iterable[Any]) -> None:
        """Seed the list with history; live messages missing from it are kept."""
        history = dedupe_messages(coerce_messages(messages))
        if not history:
            return
        history_ids = {message.id for message in history}
        live_only = [m for m in self._messages if m.id not in history_ids]
        self._messages = history + live_only
        self._message_ids = {message.id for message in self._messages}
        self._notify()

    def clear_messages(self) -> None:
        self._messages = []
        self._message_ids = set()
        self._notify()

    async def send_message(self, text: str) -> bool:
        websocket = self._websocket
        if self._state is not ConnectionState.OPEN or websocket is None:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.send.not_connected",
                order_id=self._order_id,
                state=self._state.value,
            )
            return False
        if not isinstance(text, str) or not text.strip():
            return False
        payload = json.dumps({"message": text.strip()}, ensure_ascii=False)
        try:
            await websocket.send(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.send.failed",
                order_id=self._order_id,
                exc=exc,
            )
            self._error = SEND_ERROR_KEY
            self._notify()
            return False
        return True

    # -- internals ---------------------------------------------------------

    async def _default_connector(self, url: str) -> Any:
        return await websockets.connect(
            url, open_timeout=self._config.open_timeout_seconds
        )

    async def _open_channel(self, epoch: int) -> None:
        self._cancel_reconnect_timer()
        await self._teardown_channel()
        generation = self._generation

        url = build_channel_url(
            self._order_id, self._token or "", base_url=self._config.ws_base_url
        )
        log_event(
            self._logger,
            logging.INFO,
            "chat.connecting",
            order_id=self._order_id,
            url=redact_channel_url(url),
            attempt=self._attempts,
        )
        self._state = ConnectionState.CONNECTING
        self._notify()

        try:
            websocket = await self._connector(url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._is_current(epoch, generation):
                return
            code = channel_close_code(exc)
            log_event(
                self._logger,
                logging.WARNING,
                "chat.connect.failed",
                order_id=self._order_id,
                close_code=code,
                exc=exc,
            )
            self._error = CONNECTION_ERROR_KEY
            self._handle_close(code)
            return

        if not self._is_current(epoch, generation):
            # Torn down while the handshake was in flight.
            await self._close_quietly(websocket)
            return

        self._websocket = websocket
        self._state = ConnectionState.OPEN
        self._error = None
        self._attempts = 0
        log_event(
            self._logger,
            logging.INFO,
            "chat.connected",
            order_id=self._order_id,
        )
        self._reader_task = asyncio.create_task(
            self._read_loop(websocket, generation)
        )
        interval = self._config.ping_interval_seconds
        if interval > 0:
            self._ping_task = asyncio.create_task(
                self._ping_loop(websocket, generation, interval)
            )
        self._notify()

    def _is_current(self, epoch: int, generation: int) -> bool:
        return (
            self._mounted
            and epoch == self._session_epoch
            and generation == self._generation
        )

    async def _read_loop(self, websocket: Any, generation: int) -> None:
        close_code: Optional[int] = None
        try:
            async for raw in websocket:
                if generation != self._generation:
                    return
                self._dispatch_frame(raw)
            close_code = _socket_close_code(websocket)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            close_code = channel_close_code(exc)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "chat.channel.read_failed",
                order_id=self._order_id,
                exc=exc,
            )
            close_code = _socket_close_code(websocket)
        if generation != self._generation or not self._mounted:
            return
        self._on_remote_close(close_code)

    async def _ping_loop(
        self, websocket: Any, generation: int, interval_seconds: float
    ) -> None:
        frame = json.dumps({"type": PING_FRAME})
        while generation == self._generation:
            await asyncio.sleep(interval_seconds)
            if generation != self._generation:
                return
            try:
                await websocket.send(frame)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # The reader observes the close and drives reconnection.
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "chat.ping.failed",
                    order_id=self._order_id,
                    exc=exc,
                )
                return

    def _dispatch_frame(self, raw: Any) -> None:
        try:
            frame = parse_channel_frame(raw)
        except ChatProtocolError as exc:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.frame.malformed",
                order_id=self._order_id,
                exc=exc,
            )
            return

        if frame.type == CHAT_MESSAGE_FRAME:
            message = ChatMessage.from_payload(frame.data)
            if message is None:
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "chat.frame.missing_id",
                    order_id=self._order_id,
                )
                return
            if message.id in self._message_ids:
                return
            self._message_ids.add(message.id)
            self._messages.append(message)
            self._notify()
            return
        if frame.type == ERROR_FRAME:
            text = frame.data.get("message")
            self._error = text if isinstance(text, str) and text else SERVER_ERROR_KEY
            log_event(
                self._logger,
                logging.WARNING,
                "chat.server_error",
                order_id=self._order_id,
                message=self._error,
            )
            self._notify()
            return
        if frame.type in (CONNECTION_ESTABLISHED_FRAME, PONG_FRAME):
            log_event(
                self._logger,
                logging.DEBUG,
                f"chat.frame.{frame.type}",
                order_id=self._order_id,
            )
            return
        log_event(
            self._logger,
            logging.DEBUG,
            "chat.frame.ignored",
            order_id=self._order_id,
            frame_type=frame.type,
        )

    def _on_remote_close(self, code: Optional[int]) -> None:
        self._generation += 1
        self._websocket = None
        self._reader_task = None
        ping_task, self._ping_task = self._ping_task, None
        if ping_task is not None and not ping_task.done():
            ping_task.cancel()
        self._handle_close(code)

    def _handle_close(self, code: Optional[int]) -> None:
        self._last_close_code = code
        message = close_error_message(code)
        if message is not None:
            self._error = message
        retryable = is_retryable_close(code)
        if retryable and self._config.fail_fast_on_auth and is_auth_close(code):
            retryable = False
        log_event(
            self._logger,
            logging.INFO,
            "chat.channel.closed",
            order_id=self._order_id,
            close_code=code,
            retryable=retryable,
            attempts=self._attempts,
        )

        if retryable and self._attempts < self._config.max_retries:
            self._attempts += 1
            delay = calculate_reconnect_delay(
                self._attempts,
                base_seconds=self._config.reconnect_delay_seconds,
                backoff=self._config.reconnect_backoff,
            )
            self._state = ConnectionState.RECONNECTING
            self._reconnect_task = asyncio.create_task(
                self._reconnect_after(delay, self._session_epoch)
            )
            log_event(
                self._logger,
                logging.INFO,
                "chat.reconnect.scheduled",
                order_id=self._order_id,
                attempt=self._attempts,
                max_retries=self._config.max_retries,
                delay_seconds=delay,
            )
        else:
            self._state = ConnectionState.CLOSED
            if retryable:
                self._error = RETRIES_EXHAUSTED_KEY
                log_event(
                    self._logger,
                    logging.WARNING,
                    "chat.reconnect.exhausted",
                    order_id=self._order_id,
                    attempts=self._attempts,
                )
        self._notify()

    async def _reconnect_after(self, delay: float, epoch: int) -> None:
        await self._sleep(delay)
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        if not self._mounted or not self._enabled or epoch != self._session_epoch:
            return
        log_event(
            self._logger,
            logging.INFO,
            "chat.reconnect.attempt",
            order_id=self._order_id,
            attempt=self._attempts,
            max_retries=self._config.max_retries,
        )
        await self.connect()

    def _cancel_reconnect_timer(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()

    async def _teardown_channel(
        self, code: int = CloseCode.NORMAL_CLOSURE
    ) -> None:
        # Invalidate every callback of the old channel before awaiting anything.
        self._generation += 1
        websocket, self._websocket = self._websocket, None
        tasks = [self._reader_task, self._ping_task]
        self._reader_task = None
        self._ping_task = None
        current = asyncio.current_task()
        pending = [
            task
            for task in tasks
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        if websocket is not None:
            await self._close_quietly(websocket, code)
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "chat.channel.task_error",
                    order_id=self._order_id,
                    exc=exc,
                )

    async def _close_quietly(
        self, websocket: Any, code: int = CloseCode.NORMAL_CLOSURE
    ) -> None:
        try:
            await websocket.close(code=int(code))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_event(
                self._logger,
                logging.DEBUG,
                "chat.channel.close_failed",
                order_id=self._order_id,
                exc=exc,
            )

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "chat.listener.failed",
                    order_id=self._order_id,
                    exc=exc,
                )
