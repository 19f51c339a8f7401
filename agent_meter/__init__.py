"""
agent_meter - Agent 请求处理与计费流水线

额度预留/结算、pathway prompt 选择、知识库增强、生成调度、
滚动性能统计与活动审计。
"""

from agent_meter.config import AppConfig, load_config
from agent_meter.container import AppContext
from agent_meter.services.pipeline import AgentRequestPipeline

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "AppContext",
    "AgentRequestPipeline",
    "load_config",
]
