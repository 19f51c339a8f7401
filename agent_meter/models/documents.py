"""
MongoDB 文档模型

- credit_accounts: 额度账户（不变量 0 <= used_credits <= total_credits）
- agents: Agent 状态 + 生命周期计数
- knowledge_bases: 知识库条目
- agent_performance: 日统计桶
- agent_activities: 只追加的审计事件

AgentConfig 由外部协作方提供，请求期间只读（frozen 快照）。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from agent_meter.models.activity import ActivityPayload, parse_payload
from agent_meter.models.enums import (
    ActivityKind,
    AgentStatus,
    ConditionOperator,
    ModelTier,
)
from agent_meter.utils.datetime import day_key, utc_now


# =============================================================================
# Credit Account
# =============================================================================


@dataclass
class CreditAccount:
    """调用方额度账户"""
    owner_id: str                            # 主键
    total_credits: int
    used_credits: int = 0
    last_reset_at: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def available_credits(self) -> int:
        return self.total_credits - self.used_credits

    def to_dict(self) -> dict:
        return {
            "_id": self.owner_id,
            "total_credits": self.total_credits,
            "used_credits": self.used_credits,
            "last_reset_at": self.last_reset_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CreditAccount":
        return cls(
            owner_id=data.get("_id") or data.get("owner_id"),
            total_credits=int(data["total_credits"]),
            used_credits=int(data.get("used_credits", 0)),
            last_reset_at=data.get("last_reset_at") or utc_now(),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


# =============================================================================
# Agent 配置快照（外部提供，只读）
# =============================================================================


@dataclass(frozen=True)
class Condition:
    """Pathway 条件子句"""
    variable: str
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(
            variable=data["variable"],
            operator=ConditionOperator(data.get("operator", ConditionOperator.EQUALS.value)),
            value=data.get("value"),
        )


@dataclass(frozen=True)
class PromptVariant:
    """Pathway 候选 prompt"""
    name: str
    content: str
    order: int = 0
    conditions: tuple[Condition, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "PromptVariant":
        return cls(
            name=data.get("name", ""),
            content=data.get("content", ""),
            order=int(data.get("order", 0)),
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions") or []),
        )


@dataclass(frozen=True)
class VariableDefinition:
    """从用户输入中抽取的变量定义"""
    name: str
    description: str = ""
    required: bool = False


@dataclass(frozen=True)
class KnowledgeEntry:
    """知识库条目"""
    entry_id: str
    title: str
    content: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "KnowledgeEntry":
        return cls(
            entry_id=data["entry_id"],
            title=data["title"],
            content=data["content"],
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass(frozen=True)
class AgentConfig:
    """
    Agent 配置快照

    单个请求期间不可变；prompt_variants 多于一个时走 pathway 选择，
    否则使用 system_prompt（或唯一的 variant）。
    """
    id: str
    owner_id: str
    name: str = ""
    model_tier: ModelTier = ModelTier.SMALL
    system_prompt: str = ""
    prompt_variants: tuple[PromptVariant, ...] = ()
    knowledge_entries: tuple[KnowledgeEntry, ...] = ()
    variables: tuple[VariableDefinition, ...] = ()
    temperature: float = 0.7
    max_tokens: int = 1000
    top_k: int = 40
    status: AgentStatus = AgentStatus.INACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: dict) -> "AgentConfig":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            name=data.get("name", ""),
            model_tier=ModelTier(data.get("model_tier", ModelTier.SMALL.value)),
            system_prompt=data.get("system_prompt", ""),
            prompt_variants=tuple(
                PromptVariant.from_dict(v) for v in data.get("prompt_variants") or []
            ),
            knowledge_entries=tuple(
                KnowledgeEntry.from_dict(e) for e in data.get("knowledge_entries") or []
            ),
            variables=tuple(
                VariableDefinition(
                    name=v["name"],
                    description=v.get("description", ""),
                    required=bool(v.get("required", False)),
                )
                for v in data.get("variables") or []
            ),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 1000)),
            top_k=int(data.get("top_k", 40)),
            status=AgentStatus(data["status"]) if data.get("status") else None,
        )


# =============================================================================
# Agent 状态文档（status + 生命周期计数）
# =============================================================================


@dataclass
class AgentStateDocument:
    """
    agents 集合文档：状态与 responses / accuracy 计数

    status 为 None 表示状态从未被显式设置（文档仅由响应计数创建）
    """
    agent_id: str
    status: Optional[AgentStatus] = None
    responses: int = 0
    accuracy: float = 0.0
    last_active: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "_id": self.agent_id,
            "status": self.status.value if self.status else None,
            "responses": self.responses,
            "accuracy": self.accuracy,
            "last_active": self.last_active,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentStateDocument":
        return cls(
            agent_id=data.get("_id") or data.get("agent_id"),
            status=AgentStatus(data["status"]) if data.get("status") else None,
            responses=int(data.get("responses", 0)),
            accuracy=float(data.get("accuracy", 0.0)),
            last_active=data.get("last_active"),
            updated_at=data.get("updated_at") or utc_now(),
        )


# =============================================================================
# Performance Bucket（日统计桶）
# =============================================================================


@dataclass
class PerformanceBucket:
    """
    日统计桶

    键为 (agent_id, 本地零点)，当天首个事件时创建，之后原地更新。
    """
    agent_id: str
    date: datetime                           # 本地零点
    total_responses: int = 0
    successful_responses: int = 0
    failed_responses: int = 0
    average_response_time: float = 0.0       # 秒
    accuracy: float = 0.0                    # 0-100
    token_usage: int = 0
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def bucket_id(self) -> str:
        return bucket_id(self.agent_id, self.date)

    def to_dict(self) -> dict:
        return {
            "_id": self.bucket_id,
            "agent_id": self.agent_id,
            "date": self.date,
            "total_responses": self.total_responses,
            "successful_responses": self.successful_responses,
            "failed_responses": self.failed_responses,
            "average_response_time": self.average_response_time,
            "accuracy": self.accuracy,
            "token_usage": self.token_usage,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PerformanceBucket":
        # 桶日期按本地零点的墙上时间存储，tz_aware 客户端读回时去掉 tzinfo
        date = data["date"]
        if date.tzinfo is not None:
            date = date.replace(tzinfo=None)
        return cls(
            agent_id=data["agent_id"],
            date=date,
            total_responses=int(data.get("total_responses", 0)),
            successful_responses=int(data.get("successful_responses", 0)),
            failed_responses=int(data.get("failed_responses", 0)),
            average_response_time=float(data.get("average_response_time", 0.0)),
            accuracy=float(data.get("accuracy", 0.0)),
            token_usage=int(data.get("token_usage", 0)),
            updated_at=data.get("updated_at") or utc_now(),
        )


def bucket_id(agent_id: str, day: datetime) -> str:
    """日统计桶主键，如 "agent-1:2026-02-03" """
    return f"{agent_id}:{day_key(day)}"


# =============================================================================
# Activity Event（只追加）
# =============================================================================


@dataclass(frozen=True)
class ActivityEvent:
    """活动审计事件，写入后不可变"""
    event_id: str
    agent_id: str
    caller_id: str
    kind: ActivityKind
    description: str
    payload: ActivityPayload
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.payload.kind != self.kind.value:
            raise ValueError(
                f"Activity payload kind '{self.payload.kind}' does not match '{self.kind.value}'"
            )

    def to_dict(self) -> dict:
        return {
            "_id": self.event_id,
            "agent_id": self.agent_id,
            "caller_id": self.caller_id,
            "kind": self.kind.value,
            "description": self.description,
            "payload": self.payload.model_dump(mode="json"),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityEvent":
        return cls(
            event_id=data.get("_id") or data.get("event_id"),
            agent_id=data["agent_id"],
            caller_id=data["caller_id"],
            kind=ActivityKind(data["kind"]),
            description=data["description"],
            payload=parse_payload(data["payload"]),
            timestamp=data.get("timestamp") or utc_now(),
        )


__all__ = [
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
]
