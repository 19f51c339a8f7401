"""
核心基础设施模块

提供日志、请求追踪、异常定义等基础功能
"""

from agent_meter.core.correlation import (
    correlator,
    generate_id,
    generate_request_id,
    ContextualCorrelator,
)
from agent_meter.core.logging import (
    setup_logging,
    get_logger,
    LogContext,
)
from agent_meter.core.exceptions import (
    PipelineError,
    AgentNotActiveError,
    InsufficientCreditsError,
    ReservationStateError,
    InvalidStatusTransitionError,
    ItemNotFoundError,
    ErrorResponseModel,
)

__all__ = [
    # Correlation
    "correlator",
    "generate_id",
    "generate_request_id",
    "ContextualCorrelator",
    # Logging
    "setup_logging",
    "get_logger",
    "LogContext",
    # Exceptions
    "PipelineError",
    "AgentNotActiveError",
    "InsufficientCreditsError",
    "ReservationStateError",
    "InvalidStatusTransitionError",
    "ItemNotFoundError",
    "ErrorResponseModel",
]
