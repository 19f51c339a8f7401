"""
时间处理工具函数

最佳实践：
- 存储：时间戳始终使用 UTC
- 日统计桶：按服务器本地日历日（本地零点）划分
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    获取当前 UTC 时间（带时区）

    Returns:
        带 UTC 时区的 datetime 对象
    """
    return datetime.now(timezone.utc)


def local_midnight(dt: Optional[datetime] = None) -> datetime:
    """
    获取本地日历日零点（naive 本地时间）

    性能统计桶以 (agent_id, 本地零点) 为键。

    Args:
        dt: 参考时间，默认当前本地时间；带时区的时间先转换为本地时间

    Example:
        >>> local_midnight(datetime(2026, 2, 3, 10, 30))
        datetime.datetime(2026, 2, 3, 0, 0)
    """
    if dt is None:
        dt = datetime.now()
    elif dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def day_key(day: datetime) -> str:
    """日统计桶的日期键，如 "2026-02-03" """
    return local_midnight(day).date().isoformat()


def period_start(end: datetime, timeframe: str) -> datetime:
    """
    计算统计周期的起点

    Args:
        end: 周期终点
        timeframe: day | week | month（未知值按 day 处理）
    """
    if timeframe == "week":
        return end - timedelta(days=7)
    if timeframe == "month":
        return _shift_month(end, -1)
    return end - timedelta(days=1)


def _shift_month(dt: datetime, months: int) -> datetime:
    """按月平移，日期溢出时取目标月最后一天"""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    for day in (dt.day, 30, 29, 28):
        try:
            return dt.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return dt.replace(year=year, month=month, day=28)

