"""
数据模型枚举

定义所有枚举类型
"""

from enum import Enum


class ModelTier(str, Enum):
    """模型档位（决定后端模型与计费）"""
    SMALL = "small"
    LARGE = "large"
    PREMIUM = "premium"


class AgentStatus(str, Enum):
    """Agent 状态"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"


class ConditionOperator(str, Enum):
    """Pathway 条件运算符"""
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"


class ActivityKind(str, Enum):
    """活动（审计）事件类型"""
    CREATION = "creation"
    UPDATE = "update"
    STATUS = "status"
    INTERACTION = "interaction"
    ERROR = "error"
    DELETION = "deletion"
    KNOWLEDGE_ADD = "knowledge_add"
    KNOWLEDGE_UPDATE = "knowledge_update"
    KNOWLEDGE_DELETE = "knowledge_delete"


class HistoryRole(str, Enum):
    """对话历史角色（后端使用 user / model 交替轮次）"""
    USER = "user"
    MODEL = "model"


class ReservationState(str, Enum):
    """额度预留状态"""
    PENDING = "pending"
    COMMITTED = "committed"
    RELEASED = "released"


class Timeframe(str, Enum):
    """性能报表统计周期"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
