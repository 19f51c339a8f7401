"""
数据库配置和索引定义

定义数据库名称和索引配置
"""

from agent_meter.models.collections import COLLECTIONS

# 数据库名称
DB_NAME = "agent_meter"


# 索引定义：(集合名, 索引名, 索引字段, 是否唯一, 其他选项)
INDEX_DEFINITIONS = [
    # ==========================================================================
    # knowledge_bases 索引
    # ==========================================================================
    (COLLECTIONS.KNOWLEDGE_BASES, "idx_agent", [("agent_id", 1)], True, {}),

    # ==========================================================================
    # agent_performance 索引
    # ==========================================================================
    # 按 agent + 日期范围查询报表
    (COLLECTIONS.PERFORMANCE, "idx_agent_date", [("agent_id", 1), ("date", -1)], False, {}),

    # ==========================================================================
    # agent_activities 索引
    # ==========================================================================
    # 最近活动
    (COLLECTIONS.ACTIVITIES, "idx_agent_timestamp", [("agent_id", 1), ("timestamp", -1)], False, {}),
    (COLLECTIONS.ACTIVITIES, "idx_caller", [("caller_id", 1)], False, {}),
]
