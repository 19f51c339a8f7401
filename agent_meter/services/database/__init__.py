"""
数据库服务模块

提供数据库连接和管理功能
"""

from agent_meter.services.database.database import Database, get_database
from agent_meter.services.database.config import DB_NAME, INDEX_DEFINITIONS
from agent_meter.models.collections import COLLECTIONS

__all__ = [
    "DB_NAME",
    "COLLECTIONS",
    "Database",
    "get_database",
    "INDEX_DEFINITIONS",
]
