from __future__ import annotations

import datetime as dt
import json
import secrets
from typing import Any

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Normalize an API timestamp (epoch millis, ISO string or datetime) to aware UTC."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return dt.datetime.fromtimestamp(value / 1000, tz=dt.UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return parse_timestamp(int(stripped))
        return parse_iso8601(stripped)
    return None


def to_epoch_ms(value: dt.datetime) -> int:
    return int(value.timestamp() * 1000)


def to_iso(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(dt.UTC).isoformat().replace("+00:00", "Z")


def decode_str_list(value: Any) -> list[str]:
    """Read a list of strings that may arrive JSON-encoded."""

    if value is None:
        return []
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if isinstance(value, (list, tuple, set)):
        return [item for item in value if isinstance(item, str)]
    return []


def _to_base36(number: int) -> str:
    if number <= 0:
        return "0"
    digits: list[str] = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id(now: dt.datetime | None = None) -> str:
    stamp = _to_base36(to_epoch_ms(now or utc_now()))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"sess-{stamp}-{suffix}"
