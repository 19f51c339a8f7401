"""
工具函数模块
"""

from agent_meter.utils.datetime import (
    utc_now,
    local_midnight,
    day_key,
    period_start,
)

__all__ = [
    "utc_now",
    "local_midnight",
    "day_key",
    "period_start",
]
