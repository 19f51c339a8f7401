"""
活动事件载荷

每种 ActivityKind 对应一个强类型载荷，按 kind 字段区分（封闭的标签联合），
审计记录可以做类型检查，而不是任意 dict。
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Payload(BaseModel):
    """载荷基类（不可变）"""

    model_config = ConfigDict(frozen=True)


class FieldChange(_Payload):
    """单字段变更"""
    previous: Any = None
    current: Any = None


class CreationPayload(_Payload):
    kind: Literal["creation"] = "creation"
    name: str
    model_tier: str


class UpdatePayload(_Payload):
    kind: Literal["update"] = "update"
    changes: dict[str, FieldChange] = Field(default_factory=dict)


class StatusPayload(_Payload):
    kind: Literal["status"] = "status"
    previous_status: str
    new_status: str


class InteractionPayload(_Payload):
    """一次 Agent 调用的结果摘要"""
    kind: Literal["interaction"] = "interaction"
    query: str
    success: bool
    response_time: float = Field(..., description="响应耗时(秒)")
    token_usage: int = 0
    model: str
    credits_charged: int = 0
    pathway: Optional[str] = None


class ErrorPayload(_Payload):
    """拒绝或后端失败"""
    kind: Literal["error"] = "error"
    error_code: str
    error: str
    detail: Optional[Any] = None


class DeletionPayload(_Payload):
    kind: Literal["deletion"] = "deletion"
    name: str


class KnowledgeAddPayload(_Payload):
    kind: Literal["knowledge_add"] = "knowledge_add"
    entry_id: str
    title: str


class KnowledgeUpdatePayload(_Payload):
    kind: Literal["knowledge_update"] = "knowledge_update"
    entry_id: str
    title: str


class KnowledgeDeletePayload(_Payload):
    kind: Literal["knowledge_delete"] = "knowledge_delete"
    entry_id: str
    title: str


ActivityPayload = Annotated[
    Union[
        CreationPayload,
        UpdatePayload,
        StatusPayload,
        InteractionPayload,
        ErrorPayload,
        DeletionPayload,
        KnowledgeAddPayload,
        KnowledgeUpdatePayload,
        KnowledgeDeletePayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(ActivityPayload)


def parse_payload(data: dict) -> ActivityPayload:
    """从存储的 dict 还原载荷（按 kind 分派）"""
    return _payload_adapter.validate_python(data)
