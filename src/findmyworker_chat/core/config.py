from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..chat.constants import (
    DEFAULT_API_URL,
    DEFAULT_OPEN_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_WS_URL,
    MAX_RETRIES,
    PING_INTERVAL,
    RECONNECT_DELAY,
)
from ..chat.errors import ChatConfigError
from .exceptions import ConfigError

CONFIG_FILENAME = "findmyworker.yml"
DEFAULT_TOKEN_ENV = "FMW_ACCESS_TOKEN"
WS_URL_ENV = "FMW_WS_URL"
API_URL_ENV = "FMW_API_URL"
LOCALE_ENV = "FMW_LOCALE"
SUPPORTED_LOCALES = ("es", "en")
DEFAULT_LOCALE = "es"


@dataclass(frozen=True)
class ChatClientConfig:
    ws_base_url: str = DEFAULT_WS_URL
    api_base_url: str = DEFAULT_API_URL
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    open_timeout_seconds: float = DEFAULT_OPEN_TIMEOUT_SECONDS
    max_retries: int = MAX_RETRIES
    reconnect_delay_seconds: float = RECONNECT_DELAY
    reconnect_backoff: bool = False
    ping_interval_seconds: float = PING_INTERVAL
    fail_fast_on_auth: bool = False
    locale: str = DEFAULT_LOCALE
    token_env: str = DEFAULT_TOKEN_ENV

    @classmethod
    def from_raw(
        cls,
        raw: Optional[Mapping[str, Any]] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> "ChatClientConfig":
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
        environ: Mapping[str, str] = os.environ if env is None else env

        ws_base_url = _parse_url(
            environ.get(WS_URL_ENV) or cfg.get("ws_base_url"),
            default=DEFAULT_WS_URL,
            key="ws_base_url",
        )
        api_base_url = _parse_url(
            environ.get(API_URL_ENV) or cfg.get("api_base_url"),
            default=DEFAULT_API_URL,
            key="api_base_url",
        )
        locale = str(
            environ.get(LOCALE_ENV) or cfg.get("locale") or DEFAULT_LOCALE
        ).strip().lower()
        if locale not in SUPPORTED_LOCALES:
            raise ChatConfigError(
                f"locale must be one of {', '.join(SUPPORTED_LOCALES)}: {locale!r}"
            )
        token_env = str(cfg.get("token_env", DEFAULT_TOKEN_ENV)).strip()
        if not token_env:
            raise ChatConfigError("token_env must be non-empty")

        max_retries = cfg.get("max_retries", MAX_RETRIES)
        if isinstance(max_retries, bool) or not isinstance(max_retries, int):
            raise ChatConfigError("max_retries must be an integer")
        if max_retries < 0:
            raise ChatConfigError("max_retries must be >= 0")

        return cls(
            ws_base_url=ws_base_url,
            api_base_url=api_base_url,
            request_timeout_seconds=_parse_positive_float(
                cfg.get("request_timeout_seconds"),
                default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
                key="request_timeout_seconds",
            ),
            open_timeout_seconds=_parse_positive_float(
                cfg.get("open_timeout_seconds"),
                default=DEFAULT_OPEN_TIMEOUT_SECONDS,
                key="open_timeout_seconds",
            ),
            max_retries=max_retries,
            reconnect_delay_seconds=_parse_positive_float(
                cfg.get("reconnect_delay_seconds"),
                default=RECONNECT_DELAY,
                key="reconnect_delay_seconds",
                allow_zero=True,
            ),
            reconnect_backoff=_parse_bool_or_default(
                cfg.get("reconnect_backoff"), default=False, key="reconnect_backoff"
            ),
            ping_interval_seconds=_parse_positive_float(
                cfg.get("ping_interval_seconds"),
                default=PING_INTERVAL,
                key="ping_interval_seconds",
                allow_zero=True,
            ),
            fail_fast_on_auth=_parse_bool_or_default(
                cfg.get("fail_fast_on_auth"), default=False, key="fail_fast_on_auth"
            ),
            locale=locale,
            token_env=token_env,
        )

    def resolve_token(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        environ: Mapping[str, str] = os.environ if env is None else env
        value = environ.get(self.token_env)
        if value is None:
            return None
        value = value.strip()
        return value or None


def load_config(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> ChatClientConfig:
    """Load config from ``path`` (or ``./findmyworker.yml`` when present)."""
    config_path = path if path is not None else Path.cwd() / CONFIG_FILENAME
    if path is not None and not config_path.exists():
        raise ChatConfigError(f"Config file not found: {config_path}")
    return ChatClientConfig.from_raw(_load_yaml_dict(config_path), env=env)


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ChatConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ChatConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ChatConfigError(f"Config file must be a mapping: {path}")
    chat_section = data.get("chat", data)
    if not isinstance(chat_section, dict):
        raise ChatConfigError(f"'chat' section must be a mapping: {path}")
    return chat_section


def _parse_url(value: Any, *, default: str, key: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ChatConfigError(f"{key} must be a string")
    text = value.strip()
    return text or default


def _parse_positive_float(
    value: Any, *, default: float, key: str, allow_zero: bool = False
) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ChatConfigError(f"{key} must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ChatConfigError(f"{key} must be a number") from exc
    if parsed < 0 or (parsed == 0 and not allow_zero):
        raise ChatConfigError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    return parsed


def _parse_bool_or_default(value: Any, *, default: bool, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ChatConfigError(f"{key} must be a boolean")


__all__ = [
    "CONFIG_FILENAME",
    "ChatClientConfig",
    "ConfigError",
    "SUPPORTED_LOCALES",
    "load_config",
]
