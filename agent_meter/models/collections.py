"""
集合名称定义

定义 MongoDB 集合名称常量
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Collections:
    """
    集合名称定义

    - credit_accounts: 调用方额度账户
    - agents: Agent 状态与生命周期计数（responses / accuracy）
    - knowledge_bases: Agent 知识库（条目按插入顺序）
    - performance: Agent 日统计桶
    - activities: 活动审计日志（只追加）
    """

    CREDIT_ACCOUNTS = "credit_accounts"
    AGENTS = "agents"
    KNOWLEDGE_BASES = "knowledge_bases"
    PERFORMANCE = "agent_performance"
    ACTIVITIES = "agent_activities"


COLLECTIONS = Collections()
