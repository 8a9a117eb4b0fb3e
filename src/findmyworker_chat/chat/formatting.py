from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from ..core.time_utils import parse_iso_timestamp

_MONTHS = {
    "es": ("ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sept", "oct", "nov", "dic"),
    "en": ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"),
}


def format_message_time(
    timestamp: Union[str, datetime, None],
    locale: str = "es",
    *,
    now: Optional[datetime] = None,
) -> str:
    """Relative time label for a message ("Hace 5m", "2h ago", "15 ene")."""
    parsed = parse_iso_timestamp(timestamp)
    if parsed is None:
        return "" if timestamp is None else str(timestamp)
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    spanish = locale == "es"

    diff_seconds = (current - parsed).total_seconds()
    minutes = int(diff_seconds // 60)
    hours = int(diff_seconds // 3600)
    days = int(diff_seconds // 86400)

    if minutes < 1:
        return "Ahora" if spanish else "Now"
    if minutes < 60:
        return f"Hace {minutes}m" if spanish else f"{minutes}m ago"
    if hours < 24:
        return f"Hace {hours}h" if spanish else f"{hours}h ago"
    if days < 7:
        return f"Hace {days}d" if spanish else f"{days}d ago"

    months = _MONTHS["es" if spanish else "en"]
    month = months[parsed.month - 1]
    if spanish:
        return f"{parsed.day} {month}"
    return f"{month} {parsed.day}"
