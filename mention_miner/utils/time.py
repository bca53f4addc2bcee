"""Time utilities for timezone-aware datetime handling."""

from datetime import datetime, timezone, timedelta
from typing import Optional
import pytz


DATE_WINDOWS = ("all", "today", "week", "month", "year")


def utcnow() -> datetime:
    """取得當前 UTC 時間 (tz-aware)"""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """naive datetime 依 tz_name 解讀 (未指定則視為 UTC)，再轉成 UTC"""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)
    if not tz_name:
        return dt.replace(tzinfo=timezone.utc)
    return pytz.timezone(tz_name).localize(dt).astimezone(timezone.utc)


def parse_iso8601(date_str: str) -> datetime:
    """
    解析 ISO8601 字串為 UTC tz-aware datetime

    接受 `2024-01-01`、`2024-01-01T10:00:00Z`、`2024-01-01 10:00:00+08:00` 等格式。

    Raises:
        ValueError: 無法解析
    """
    text = date_str.strip()
    if not text:
        raise ValueError("empty date string")
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    dt = datetime.fromisoformat(text)
    return to_utc(dt)


def get_daily_bucket(dt: datetime) -> str:
    """
    取得日期桶 (YYYY-MM-DD)

    Args:
        dt: 時間 (會轉換為 UTC)

    Returns:
        YYYY-MM-DD 格式字串
    """
    utc_dt = to_utc(dt)
    return utc_dt.strftime("%Y-%m-%d")


def start_of_day(now: datetime, tz_name: str = "UTC") -> datetime:
    """取得 now 在指定時區的當日 00:00 (回傳 UTC)"""
    tz = pytz.timezone(tz_name)
    local = to_utc(now).astimezone(tz)
    midnight = tz.localize(datetime(local.year, local.month, local.day))
    return midnight.astimezone(timezone.utc)


def window_start(window: str, now: datetime, tz_name: str = "UTC") -> Optional[datetime]:
    """
    計算時間視窗起點

    以「今天 00:00」為基準往回推：today / week (7 天) / month (1 個月) / year (1 年)。

    Args:
        window: all | today | week | month | year
        now: 當前時間
        tz_name: 使用者時區

    Returns:
        UTC tz-aware datetime，window 為 all 時回傳 None
    """
    if window not in DATE_WINDOWS:
        raise ValueError(f"Unsupported date window: {window}")

    if window == "all":
        return None

    today = start_of_day(now, tz_name)
    if window == "today":
        return today
    if window == "week":
        return today - timedelta(days=7)

    tz = pytz.timezone(tz_name)
    local = today.astimezone(tz).replace(tzinfo=None)
    if window == "month":
        year, month = (local.year, local.month - 1) if local.month > 1 else (local.year - 1, 12)
        day = min(local.day, _days_in_month(year, month))
        shifted = local.replace(year=year, month=month, day=day)
    else:
        day = local.day
        if local.month == 2 and day == 29:
            day = 28
        shifted = local.replace(year=local.year - 1, day=day)

    return tz.localize(shifted).astimezone(timezone.utc)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - datetime(year, month, 1)).days
