"""Epoch milliseconds in the engine, timezone-aware datetimes at the edges (CSV, CLI, dashboard)."""

from __future__ import annotations

import time
from datetime import UTC, datetime, tzinfo

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def zone(tz_name: str) -> tzinfo:
    """IANA zone by name.

    Raises:
        ValueError: Unknown zone name (or no tz database on this machine).
    """

    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"无效时区：{tz_name!r}（示例：Asia/Shanghai）") from exc


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Aware datetime in ``tz_name`` for an epoch-ms timestamp."""

    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=zone(tz_name))


def epoch_ms(dt: datetime) -> int:
    # naive values are read as UTC
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)
    return int(aware.timestamp() * 1000)


def parse_epoch_ms(text: str, tz_name: str) -> int:
    """Epoch ms from either a digit string or an ISO-like local time.

    "2025-01-01 09:30:00", "2025-01-01T09:30:00" and an explicit offset ("+08:00") are all
    accepted; a value without an offset is local time in ``tz_name``.

    Raises:
        ValueError: Neither form could be parsed.
    """

    raw = text.strip()
    if raw.isdigit():
        return int(raw)
    try:
        parsed = datetime.fromisoformat(raw.replace("T", " "))
    except ValueError as exc:
        raise ValueError(f"无法解析时间：{text!r}（示例：2025-12-18 09:30:00 或毫秒时间戳）") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone(tz_name))
    return epoch_ms(parsed)


def format_hhmmss(seconds: float) -> str:
    total = int(round(max(0.0, seconds)))
    minutes, sec = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{sec:02d}"


def format_duration_ms(duration_ms: int) -> str:
    return format_hhmmss(duration_ms / 1000.0)
