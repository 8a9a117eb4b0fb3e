from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer

from ....chat.constants import OrderStatus
from ....chat.errors import ChatError
from ....chat.i18n import translate
from ....chat.manager import FloatingChatManager
from ....chat.policy import can_chat_in_status, chat_unavailable_reason
from ....chat.rest import FindMyWorkerRestClient
from ....chat.transport import build_channel_url, redact_channel_url
from ....chat.view import ChatView, CurrentUser
from ....core.config import SUPPORTED_LOCALES, ChatClientConfig
from ....core.logging_utils import setup_rotating_logger
from .utils import require_config

QUIT_COMMANDS = frozenset({"/quit", "/exit"})
RETRY_COMMAND = "/retry"


class TerminalChatPrinter:
    """Prints view changes without repeating lines already on screen."""

    def __init__(self, view: ChatView, echo: Callable[[str], None] = typer.echo):
        self._view = view
        self._echo = echo
        self._header: Optional[str] = None
        self._banners: tuple[str, ...] = ()
        self._printed_ids: set[object] = set()

    def __call__(self, _view: ChatView) -> None:
        self.refresh()

    def refresh(self) -> None:
        model = self._view.snapshot()
        lines = self._view.render_lines()
        header = lines[0]
        if header != self._header:
            self._header = header
            self._echo(header)
        banners = tuple(
            text
            for text in (
                model.unavailable_banner,
                model.unavailable_detail,
                model.error_banner,
                model.history_error_banner,
            )
            if text
        )
        if banners != self._banners:
            self._banners = banners
            for text in banners:
                self._echo(f"! {text}")
        if model.loading:
            return
        for message in model.messages:
            if message.id in self._printed_ids:
                continue
            self._printed_ids.add(message.id)
            self._echo(self._view.format_message(message))


async def _resolve_order_status(
    client: FindMyWorkerRestClient, order_id: int
) -> Optional[str]:
    detail = await client.get_order_detail(order_id)
    status = detail.get("status")
    return status if isinstance(status, str) else None


async def _read_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


async def run_chat_session(
    order_id: int,
    order_status: Optional[str],
    *,
    token: str,
    user: CurrentUser,
    config: ChatClientConfig,
    logger: logging.Logger,
    read_line: Callable[[], Awaitable[str]] = _read_line,
    echo: Callable[[str], None] = typer.echo,
) -> None:
    rest_client = FindMyWorkerRestClient(
        token=token,
        base_url=config.api_base_url,
        timeout_seconds=config.request_timeout_seconds,
        locale=config.locale,
    )
    try:
        if order_status is None:
            order_status = await _resolve_order_status(rest_client, order_id)

        def _build_view(oid, status, current_user) -> ChatView:
            view = ChatView(
                oid,
                status,
                current_user,
                token,
                config=config,
                rest_client=rest_client,
                logger=logger,
            )
            view.subscribe(TerminalChatPrinter(view, echo))
            return view

        floating = FloatingChatManager(_build_view, logger=logger)
        view = await floating.open_chat(order_id, order_status, user)
        if view is None:
            return
        try:
            while True:
                line = await read_line()
                if not line:
                    break
                text = line.rstrip("\n")
                command = text.strip().lower()
                if command in QUIT_COMMANDS:
                    break
                if command == RETRY_COMMAND:
                    await view.retry()
                    continue
                if not await view.submit(text):
                    model = view.snapshot()
                    if text.strip():
                        echo(f"! {model.placeholder}")
        finally:
            await floating.close_chat()
    finally:
        await rest_client.close()


def register_chat_commands(app: typer.Typer, *, raise_exit: Callable) -> None:
    @app.command("chat")
    def chat_open(
        order_id: int = typer.Argument(..., help="Order id"),
        status: Optional[str] = typer.Option(
            None, "--status", help="Order status (fetched from the API when omitted)"
        ),
        token: Optional[str] = typer.Option(
            None, "--token", help="Access token (defaults to the token env var)"
        ),
        user_id: Optional[int] = typer.Option(
            None, "--user-id", help="Current user id, marks own messages"
        ),
        locale: Optional[str] = typer.Option(None, "--locale", help="es or en"),
        config_path: Optional[Path] = typer.Option(
            None, "--config", help="Path to findmyworker.yml"
        ),
        log_file: Optional[Path] = typer.Option(
            None, "--log-file", help="Write logs to a rotating file"
        ),
    ) -> None:
        """Open the live chat of an order; type /retry to reconnect, /quit to leave."""
        config = require_config(config_path)
        if locale is not None:
            normalized = locale.strip().lower()
            if normalized not in SUPPORTED_LOCALES:
                raise_exit(f"Unsupported locale: {locale}")
            config = dataclasses.replace(config, locale=normalized)
        resolved_token = (token or "").strip() or config.resolve_token()
        if not resolved_token:
            raise_exit(
                f"No access token; pass --token or set {config.token_env}"
            )
        logger = setup_rotating_logger(
            "findmyworker_chat",
            log_file,
            level=logging.INFO if log_file else logging.WARNING,
        )
        try:
            asyncio.run(
                run_chat_session(
                    order_id,
                    status.strip().upper() if status else None,
                    token=resolved_token,
                    user=CurrentUser(id=user_id),
                    config=config,
                    logger=logger,
                )
            )
        except ChatError as exc:
            raise_exit(exc.user_message or str(exc), cause=exc)
        except KeyboardInterrupt:
            typer.echo(translate("chat.disconnected", config.locale))

    @app.command("url")
    def chat_url(
        order_id: int = typer.Argument(..., help="Order id"),
        config_path: Optional[Path] = typer.Option(
            None, "--config", help="Path to findmyworker.yml"
        ),
    ) -> None:
        """Print the chat channel URL for an order (token redacted)."""
        config = require_config(config_path)
        url = build_channel_url(
            order_id,
            config.resolve_token() or "",
            base_url=config.ws_base_url,
        )
        typer.echo(redact_channel_url(url))

    @app.command("status")
    def chat_status(
        order_status: str = typer.Argument(..., help="Order status"),
        locale: str = typer.Option("es", "--locale", help="es or en"),
        output_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    ) -> None:
        """Show whether chat is available for an order status."""
        value = order_status.strip().upper()
        known = {status.value for status in OrderStatus}
        if value not in known:
            raise_exit(
                f"Unknown order status: {order_status} "
                f"(expected one of {', '.join(sorted(known))})"
            )
        enabled = can_chat_in_status(value)
        reason = chat_unavailable_reason(value)
        if output_json:
            typer.echo(
                json.dumps({"status": value, "chat_enabled": enabled, "reason": reason})
            )
            return
        if enabled:
            typer.echo(f"{value}: {translate('chat.typeMessage', locale)}")
            return
        detail = translate(reason, locale) if reason else translate(
            "chat.chatClosedReason", locale
        )
        typer.echo(f"{value}: {translate('chat.chatNotAvailable', locale)}. {detail}")
