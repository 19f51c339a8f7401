"""
数据模型模块

5 表设计：credit_accounts, agents, knowledge_bases, agent_performance, agent_activities
"""

from agent_meter.models.enums import (
    ModelTier,
    AgentStatus,
    ConditionOperator,
    ActivityKind,
    HistoryRole,
    ReservationState,
    Timeframe,
)
from agent_meter.models.activity import (
    ActivityPayload,
    CreationPayload,
    UpdatePayload,
    FieldChange,
    StatusPayload,
    InteractionPayload,
    ErrorPayload,
    DeletionPayload,
    KnowledgeAddPayload,
    KnowledgeUpdatePayload,
    KnowledgeDeletePayload,
    parse_payload,
)
from agent_meter.models.documents import (
    CreditAccount,
    Condition,
    PromptVariant,
    VariableDefinition,
    KnowledgeEntry,
    AgentConfig,
    AgentStateDocument,
    PerformanceBucket,
    ActivityEvent,
    bucket_id,
)
from agent_meter.models.schemas import (
    GenerationParams,
    HistoryTurn,
    GenerationResult,
    PathwayResolution,
    PerformanceDelta,
    PerformanceChanges,
    PerformanceReport,
)

__all__ = [
    # 枚举
    "ModelTier",
    "AgentStatus",
    "ConditionOperator",
    "ActivityKind",
    "HistoryRole",
    "ReservationState",
    "Timeframe",
    # 活动载荷
    "ActivityPayload",
    "CreationPayload",
    "UpdatePayload",
    "FieldChange",
    "StatusPayload",
    "InteractionPayload",
    "ErrorPayload",
    "DeletionPayload",
    "KnowledgeAddPayload",
    "KnowledgeUpdatePayload",
    "KnowledgeDeletePayload",
    "parse_payload",
    # 文档模型
    "CreditAccount",
    "Condition",
    "PromptVariant",
    "VariableDefinition",
    "KnowledgeEntry",
    "AgentConfig",
    "AgentStateDocument",
    "PerformanceBucket",
    "ActivityEvent",
    "bucket_id",
    # 流水线结构
    "GenerationParams",
    "HistoryTurn",
    "GenerationResult",
    "PathwayResolution",
    "PerformanceDelta",
    "PerformanceChanges",
    "PerformanceReport",
]
