"""时区工具：按配置获取当前时间，并为 HTTP 头格式化时间。"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Optional

from zoneinfo import ZoneInfo

from app.packages.drive.core.config import get_settings


def get_timezone() -> ZoneInfo:
    return get_settings().timezone_info


def now() -> datetime:
    """返回当前时区的时间。"""
    return datetime.now(get_timezone())


def utcnow() -> datetime:
    """写库使用的 UTC 时间，与数据库 ``now()`` 默认值保持同一基准。"""
    return datetime.now(timezone.utc)


def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """将 ``datetime`` 转换为配置时区；SQLite 读回的无时区值按 UTC 解释。"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(get_timezone())


def to_http_date(value: Optional[datetime]) -> str:
    """RFC 1123 格式（``Mon, 02 Jan 2006 15:04:05 GMT``），用于 WebDAV 与 Last-Modified。"""
    localized = to_local(value) or now()
    return format_datetime(localized.astimezone(timezone.utc), usegmt=True)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """JSON 输出使用的 ISO-8601 字符串（配置时区）。"""
    localized = to_local(value)
    return localized.isoformat() if localized is not None else None
