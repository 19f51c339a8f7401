"""
流水线数据结构

- 生成请求参数 / 对话历史轮次
- GenerationResult：后端响应统一后的结果（瞬时，不落库）
- PerformanceDelta：单次事件对日统计桶的增量
- PerformanceReport：按时间范围聚合的报表（供外部分析接口使用）
"""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field

from agent_meter.models.enums import HistoryRole


@dataclass(frozen=True)
class GenerationParams:
    """生成参数"""
    temperature: float = 0.7
    max_tokens: int = 1000
    top_k: int = 40


@dataclass(frozen=True)
class HistoryTurn:
    """对话历史中的一轮（最旧的在前）"""
    role: HistoryRole
    text: str

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryTurn":
        """兼容 {role, content} 与 {role, text}；assistant 视为 model"""
        role = data.get("role", HistoryRole.USER.value)
        if role == "assistant":
            role = HistoryRole.MODEL.value
        return cls(
            role=HistoryRole(role),
            text=data.get("text", data.get("content", "")),
        )


@dataclass
class GenerationResult:
    """生成结果（统一数据结构）"""

    success: bool
    text: str = ""
    token_usage: int = 0
    model_used: str = ""
    response_time_seconds: float = 0.0
    error_detail: Optional[Any] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "text": self.text,
            "token_usage": self.token_usage,
            "model_used": self.model_used,
            "response_time_seconds": round(self.response_time_seconds, 3),
        }
        if self.error_detail is not None:
            data["error_detail"] = self.error_detail
        return data


@dataclass(frozen=True)
class PathwayResolution:
    """Pathway 选择结果；fallback=True 表示无条件匹配，使用了第一个 variant"""
    content: str
    variant_name: Optional[str] = None
    fallback: bool = False


@dataclass(frozen=True)
class PerformanceDelta:
    """单次事件对日统计桶的增量"""
    responses: int = 1
    successes: int = 0
    failures: int = 0
    response_time_seconds: float = 0.0
    accuracy: float = 0.0                    # 调用方已更新的 Agent 滚动准确率
    token_usage: int = 0

    @classmethod
    def from_result(cls, result: GenerationResult, accuracy: float) -> "PerformanceDelta":
        return cls(
            responses=1,
            successes=1 if result.success else 0,
            failures=0 if result.success else 1,
            response_time_seconds=result.response_time_seconds,
            accuracy=accuracy,
            token_usage=result.token_usage,
        )


class PerformanceChanges(BaseModel):
    """相对上一周期的变化百分比"""
    responses: float = Field(default=0.0, description="响应数变化(%)")
    accuracy: float = Field(default=0.0, description="准确率变化(%)")
    response_time: float = Field(default=0.0, description="平均响应时间变化(%)")


class PerformanceReport(BaseModel):
    """Agent 性能报表"""
    agent_id: str
    timeframe: str
    responses: int = Field(default=0, description="周期内总响应数")
    accuracy: float = Field(default=0.0, description="成功率(0-100)")
    response_time: float = Field(default=0.0, description="平均响应时间(秒)")
    token_usage: int = Field(default=0, description="周期内 token 消耗")
    changes: PerformanceChanges = Field(default_factory=PerformanceChanges)
    buckets: list[dict[str, Any]] = Field(default_factory=list, description="周期内日统计桶")
