"""
统一异常模块

提供：
1. 流水线异常基类（携带 status_code / error_code，便于外部 HTTP 层映射）
2. 拒绝类异常（AgentNotActive / InsufficientCredits）
3. 统一错误响应模型
"""

from typing import Any, Optional

from pydantic import BaseModel


# =============================================================================
# 自定义异常类
# =============================================================================


class PipelineError(Exception):
    """流水线基础异常"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        detail: Any = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.detail = detail
        super().__init__(message)

    def to_response(self) -> "ErrorResponseModel":
        """转换为统一错误响应"""
        return ErrorResponseModel(
            status=self.status_code,
            code=self.error_code,
            message=self.message,
            detail=self.detail,
        )


class AgentNotActiveError(PipelineError):
    """Agent 非 active 状态，请求在扣费前被拒绝"""

    def __init__(self, agent_id: str, status: str):
        self.agent_id = agent_id
        self.status = status
        super().__init__(
            message="Agent is not active",
            status_code=400,
            error_code="AGENT_NOT_ACTIVE",
            detail={"agent_id": agent_id, "agent_status": status},
        )


class InsufficientCreditsError(PipelineError):
    """额度不足，预留失败且账户状态未改变"""

    def __init__(self, owner_id: str, available_credits: int, required_credits: int):
        self.owner_id = owner_id
        self.available_credits = available_credits
        self.required_credits = required_credits
        super().__init__(
            message="Insufficient credits for this operation",
            status_code=403,
            error_code="INSUFFICIENT_CREDITS",
            detail={
                "available_credits": available_credits,
                "required_credits": required_credits,
            },
        )


class ReservationStateError(PipelineError):
    """预留已结算（commit / release）后再次结算"""

    def __init__(self, reservation_id: str, state: str):
        super().__init__(
            message=f"Reservation {reservation_id} is already {state}",
            status_code=409,
            error_code="RESERVATION_SETTLED",
            detail={"reservation_id": reservation_id, "state": state},
        )


class InvalidStatusTransitionError(PipelineError):
    """非法的 Agent 状态迁移"""

    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Cannot change agent status from {current} to {target}",
            status_code=400,
            error_code="INVALID_STATUS_TRANSITION",
            detail={"from": current, "to": target},
        )


class ItemNotFoundError(PipelineError):
    """资源未找到"""

    def __init__(self, message: str, detail: Any = None):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            detail=detail,
        )


# =============================================================================
# 统一错误响应模型
# =============================================================================


class ErrorResponseModel(BaseModel):
    """统一错误响应格式"""
    status: int
    code: str
    message: str
    detail: Optional[Any] = None
