from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

REDACTED = "<redacted>"
_SENSITIVE_KEYS = frozenset({"token", "access_token", "authorization", "password"})
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _coerce(value: Any) -> Any:
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_coerce(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _coerce(item) for key, item in value.items()}
    return str(value)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit one structured log line: ``{"event": ..., <fields>}`` as JSON."""
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        if key.lower() in _SENSITIVE_KEYS and value:
            payload[key] = REDACTED
            continue
        payload[key] = _coerce(value)
    try:
        message = json.dumps(payload, ensure_ascii=False, sort_keys=False)
    except (TypeError, ValueError):
        message = f"{event} {fields!r}"
    logger.log(level, message)


def setup_rotating_logger(
    name: str,
    path: Optional[Path] = None,
    *,
    level: int = logging.INFO,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if path is None:
        if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
            handler: logging.Handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            logger.addHandler(handler)
        return logger
    resolved = Path(path).expanduser().resolve()
    for existing in logger.handlers:
        if (
            isinstance(existing, RotatingFileHandler)
            and Path(existing.baseFilename) == resolved
        ):
            return logger
    resolved.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        resolved, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["REDACTED", "log_event", "setup_rotating_logger"]
