from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Optional, Union

import pytest

from findmyworker_chat.chat import view as view_module
from findmyworker_chat.chat.connection import ChatConnectionManager
from findmyworker_chat.chat.history import HISTORY_ERROR_KEY, ChatHistory
from findmyworker_chat.chat.models import ChatMessage, ConnectionState
from findmyworker_chat.chat.view import ChatView, CurrentUser, build_current_user

NOW = datetime(2026, 1, 1, 10, 5, tzinfo=timezone.utc)


def _frame(message_id: int, content: str, *, sender: int = 7, role: str = "CLIENT"):
    return {
        "type": "chat_message",
        "id": message_id,
        "content": content,
        "sender": sender,
        "sender_name": "Ana" if sender == 7 else "Luis",
        "sender_role": role,
        "timestamp": "2026-01-01T10:00:00Z",
    }


class _FakeHistoryLoader:
    def __init__(self, history: Optional[ChatHistory] = None) -> None:
        self.history = history or ChatHistory()
        self.by_order: dict[Union[int, str], ChatHistory] = {}
        self.calls: list[Union[int, str, None]] = []
        self.gate: Optional[asyncio.Event] = None

    async def load(self, order_id: Union[int, str, None]) -> ChatHistory:
        self.calls.append(order_id)
        if self.gate is not None:
            await self.gate.wait()
        return self.by_order.get(order_id, self.history)


@pytest.fixture()
def history_loader() -> _FakeHistoryLoader:
    return _FakeHistoryLoader()


@pytest.fixture()
def make_view(connector, sleeper, chat_config, history_loader):
    def _factory(order_id, token, *, enabled, config, logger):
        return ChatConnectionManager(
            order_id,
            token,
            enabled=enabled,
            config=config,
            connector=connector,
            sleep=sleeper,
            logger=logger,
        )

    def _make(order_id=38, status="ACCEPTED", *, user_id=9, token="t1", config=None):
        return ChatView(
            order_id,
            status,
            CurrentUser(id=user_id, role="WORKER"),
            token,
            config=config or chat_config,
            history_loader=history_loader,
            manager_factory=_factory,
            logger=logging.getLogger("test.chat.view"),
        )

    return _make


@pytest.mark.anyio
async def test_mount_loads_history_once_and_connects(
    make_view, connector, history_loader, settle_loop
) -> None:
    history_loader.history = ChatHistory(
        messages=(ChatMessage.from_payload(_frame(1, "Hola")),), total=1
    )
    view = make_view()
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)

    model = view.snapshot()
    assert history_loader.calls == [38]
    assert connector.urls == ["ws://chat.test/ws/chat/38/?token=t1"]
    assert model.status == "connected"
    assert model.show_retry is False
    assert model.input_enabled is True
    assert model.placeholder == "Escribe un mensaje..."
    assert model.unavailable_banner is None
    assert [m.content for m in model.messages] == ["Hola"]

    connector.latest.drop(1006)
    await settle_loop(
        lambda: len(connector.channels) == 2 and view.snapshot().status == "connected"
    )
    assert history_loader.calls == [38]
    await view.unmount()


@pytest.mark.anyio
async def test_pending_order_shows_wait_banner_and_does_not_connect(
    make_view, connector, history_loader, settle_loop
) -> None:
    view = make_view(status="PENDING")
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)

    model = view.snapshot()
    assert connector.urls == []
    assert model.status == "disconnected"
    assert model.input_enabled is False
    assert model.unavailable_banner == "El chat no está disponible"
    assert model.unavailable_detail == (
        "El chat se activará cuando el trabajador acepte la orden."
    )
    assert model.placeholder == "Chat cerrado"
    assert await view.submit("hola") is False
    await view.unmount()


@pytest.mark.anyio
async def test_closed_order_explains_it_is_closed(make_view) -> None:
    view = make_view(status="COMPLETED")
    await view.mount()
    model = view.snapshot()
    assert model.unavailable_detail == "Esta orden está cerrada."
    await view.unmount()


@pytest.mark.anyio
async def test_order_status_change_activates_chat(
    make_view, connector, settle_loop
) -> None:
    view = make_view(status="PENDING")
    await view.mount()
    assert connector.urls == []

    await view.set_order_status("ACCEPTED")

    assert connector.urls == ["ws://chat.test/ws/chat/38/?token=t1"]
    assert view.snapshot().input_enabled is True
    await view.unmount()


@pytest.mark.anyio
async def test_history_error_is_shown_separately(
    make_view, history_loader, settle_loop
) -> None:
    history_loader.history = ChatHistory(error=HISTORY_ERROR_KEY)
    view = make_view()
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)

    model = view.snapshot()
    assert model.history_error_banner == "No se pudo cargar el historial del chat."
    assert model.error_banner is None
    assert model.status == "connected"
    await view.unmount()


@pytest.mark.anyio
async def test_error_banner_is_translated_or_passed_through(
    make_view, connector, sleeper, settle_loop
) -> None:
    sleeper.hold = True
    view = make_view()
    await view.mount()
    connector.latest.push({"type": "error", "message": "Orden bloqueada"})
    await settle_loop(lambda: view.snapshot().error_banner is not None)
    assert view.snapshot().error_banner == "Orden bloqueada"

    connector.latest.drop(4004)
    await settle_loop(lambda: view.snapshot().status == "reconnecting")
    model = view.snapshot()
    assert model.error_banner == "La orden no existe o no está disponible."
    assert model.show_retry is False
    assert model.placeholder == "Esperando conexión..."
    await view.unmount()


@pytest.mark.anyio
async def test_submit_reports_whether_input_can_be_cleared(
    make_view, connector, settle_loop
) -> None:
    view = make_view()
    await view.mount()
    channel = connector.latest

    assert await view.submit("   ") is False
    assert await view.submit("Voy mañana") is True
    assert channel.sent_payloads() == [{"message": "Voy mañana"}]

    channel.fail_send = ConnectionError("gone")
    assert await view.submit("otra vez") is False
    assert view.snapshot().error_banner == "Error al enviar el mensaje"
    await view.unmount()


@pytest.mark.anyio
async def test_retry_reconnects_after_terminal_close(
    make_view, connector, settle_loop
) -> None:
    view = make_view()
    await view.mount()
    connector.latest.drop(1000)
    await settle_loop(lambda: view.snapshot().status == "disconnected")
    assert view.snapshot().show_retry is True

    await view.retry()

    assert view.snapshot().status == "connected"
    assert len(connector.urls) == 2
    await view.unmount()


@pytest.mark.anyio
async def test_unmount_tears_down_channel_and_pending_history(
    make_view, connector, history_loader, settle_loop
) -> None:
    history_loader.gate = asyncio.Event()
    view = make_view()
    await view.mount()
    channel = connector.latest
    manager = view.manager

    await view.unmount()
    history_loader.gate.set()
    await settle_loop()

    assert channel.closed_with == 1000
    assert manager is not None
    assert manager.state is ConnectionState.CLOSED
    assert view.mounted is False


@pytest.mark.anyio
async def test_order_change_reloads_history_for_new_order(
    make_view, connector, history_loader, settle_loop
) -> None:
    view = make_view()
    await view.mount()
    connector.latest.push(_frame(1, "Hola"))
    await settle_loop(lambda: len(view.snapshot().messages) == 1)

    await view.set_order(39, "IN_PROGRESS")
    await settle_loop(lambda: len(history_loader.calls) == 2)

    assert history_loader.calls == [38, 39]
    assert view.snapshot().messages == ()
    assert connector.urls[-1] == "ws://chat.test/ws/chat/39/?token=t1"
    await view.unmount()


def _history_for(order_id: int) -> ChatHistory:
    message = ChatMessage.from_payload(_frame(order_id * 100, f"orden {order_id}"))
    return ChatHistory(messages=(message,), total=1)


@pytest.mark.anyio
async def test_order_switch_keeps_new_order_history_with_slow_close(
    make_view, connector, history_loader, settle_loop
) -> None:
    history_loader.by_order = {38: _history_for(38), 39: _history_for(39)}
    view = make_view()
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)
    assert [m.id for m in view.snapshot().messages] == [3800]
    connector.latest.close_turns = 20

    await view.set_order(39, "ACCEPTED")
    await settle_loop(lambda: not view.snapshot().loading)

    assert history_loader.calls == [38, 39]
    assert [m.id for m in view.snapshot().messages] == [3900]
    await view.unmount()


class _RecordingRestClient:
    instances: list["_RecordingRestClient"] = []

    def __init__(self, *, token, base_url, timeout_seconds, locale) -> None:
        self.token = token
        self.closed = False
        self.requests: list[Union[int, str]] = []
        _RecordingRestClient.instances.append(self)

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    async def get_order_messages(self, order_id: Union[int, str]):
        if self.closed:
            raise RuntimeError("client has been closed")
        self.requests.append(order_id)
        return {"messages": [_frame(1, "Hola")]}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def owning_view(monkeypatch, connector, sleeper, chat_config):
    _RecordingRestClient.instances = []
    monkeypatch.setattr(view_module, "FindMyWorkerRestClient", _RecordingRestClient)

    def _factory(order_id, token, *, enabled, config, logger):
        return ChatConnectionManager(
            order_id,
            token,
            enabled=enabled,
            config=config,
            connector=connector,
            sleep=sleeper,
            logger=logger,
        )

    return ChatView(
        38,
        "ACCEPTED",
        CurrentUser(id=9, role="WORKER"),
        "t1",
        config=chat_config,
        manager_factory=_factory,
        logger=logging.getLogger("test.chat.view"),
    )


@pytest.mark.anyio
async def test_view_can_be_mounted_again_after_unmount(
    owning_view, connector, settle_loop
) -> None:
    seen: list[str] = []
    owning_view.subscribe(lambda v: seen.append(v.snapshot().status))

    await owning_view.mount()
    await settle_loop(lambda: not owning_view.snapshot().loading)
    await owning_view.unmount()
    first = _RecordingRestClient.instances[0]
    assert first.closed is True

    seen.clear()
    await owning_view.mount()
    await settle_loop(lambda: not owning_view.snapshot().loading)

    model = owning_view.snapshot()
    assert len(_RecordingRestClient.instances) == 2
    assert _RecordingRestClient.instances[1].requests == [38]
    assert model.history_error_banner is None
    assert [m.id for m in model.messages] == [1]
    assert model.status == "connected"
    assert "connected" in seen
    assert len(connector.urls) == 2
    await owning_view.unmount()
    assert _RecordingRestClient.instances[1].closed is True


@pytest.mark.anyio
async def test_token_change_replaces_session_and_rest_client(
    owning_view, connector, settle_loop
) -> None:
    await owning_view.mount()
    await settle_loop(lambda: not owning_view.snapshot().loading)
    first_channel = connector.latest

    await owning_view.set_token("t2")
    await settle_loop(lambda: not owning_view.snapshot().loading)

    first, second = _RecordingRestClient.instances
    assert first.closed is True
    assert second.token == "t2"
    assert second.requests == [38]
    assert first_channel.closed_with == 1000
    assert connector.urls[-1] == "ws://chat.test/ws/chat/38/?token=t2"
    assert owning_view.snapshot().status == "connected"
    assert [m.id for m in owning_view.snapshot().messages] == [1]
    await owning_view.unmount()


@pytest.mark.anyio
async def test_token_change_on_injected_loader_reloads_history(
    make_view, connector, history_loader, settle_loop
) -> None:
    view = make_view(token=None)
    await view.mount()
    assert history_loader.calls == []
    assert connector.urls == []

    await view.set_token("t1")
    await settle_loop(lambda: not view.snapshot().loading)

    assert history_loader.calls == [38]
    assert connector.urls == ["ws://chat.test/ws/chat/38/?token=t1"]
    await view.unmount()


@pytest.mark.anyio
async def test_listeners_are_notified_on_manager_changes(
    make_view, connector, settle_loop
) -> None:
    view = make_view()
    seen: list[str] = []
    view.subscribe(lambda v: seen.append(v.snapshot().status))
    await view.mount()
    assert "connected" in seen
    await view.unmount()


@pytest.mark.anyio
async def test_render_lines_distinguishes_own_messages(
    make_view, connector, settle_loop
) -> None:
    view = make_view(user_id=9)
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)
    channel = connector.latest
    channel.push(_frame(1, "Hola"))
    channel.push(_frame(2, "Buenos días", sender=9, role="WORKER"))
    await settle_loop(lambda: len(view.snapshot().messages) == 2)

    assert view.render_lines(now=NOW) == [
        "Chat - Orden #38 [Conectado]",
        "Ana [Cliente]: Hola (Hace 5m)",
        "  > Buenos días (Hace 5m)",
    ]
    await view.unmount()


@pytest.mark.anyio
async def test_render_lines_for_empty_disconnected_chat(
    make_view, chat_config, settle_loop
) -> None:
    config = dataclasses.replace(chat_config, locale="en")
    view = make_view(status="CANCELLED", config=config)
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)

    assert view.render_lines(now=NOW) == [
        "Chat - Order #38 [Disconnected] (Retry: /retry)",
        "! Chat is not available",
        "  This order is closed.",
        "No messages yet",
        "Start the conversation",
    ]
    await view.unmount()


@pytest.mark.anyio
async def test_order_chat_round_trip_through_view(
    make_view, connector, history_loader, settle_loop
) -> None:
    view = make_view(order_id=38, status="ACCEPTED")
    await view.mount()
    await settle_loop(lambda: not view.snapshot().loading)
    assert view.snapshot().messages == ()

    channel = connector.latest
    channel.push(_frame(1, "Hola"))
    await settle_loop(lambda: len(view.snapshot().messages) == 1)

    assert await view.submit("¿Cuándo puedes venir?") is True
    assert len(view.snapshot().messages) == 1

    channel.push(_frame(2, "¿Cuándo puedes venir?", sender=9, role="WORKER"))
    await settle_loop(lambda: len(view.snapshot().messages) == 2)
    await view.unmount()


def test_build_current_user() -> None:
    user = build_current_user({"id": 9, "role": "WORKER", "username": "luis"})
    assert user == CurrentUser(id=9, role="WORKER", name="luis")
    assert build_current_user(None) is None
