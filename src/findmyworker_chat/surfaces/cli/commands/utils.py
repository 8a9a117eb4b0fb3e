from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer

from ....core.config import ChatClientConfig, ConfigError, load_config

logger = logging.getLogger("findmyworker_chat.cli")


def get_version() -> str:
    import importlib.metadata

    try:
        return importlib.metadata.version("findmyworker-chat")
    except Exception:
        return "unknown"


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def require_config(path: Optional[Path]) -> ChatClientConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        raise_exit(str(exc), cause=exc)
