"""
服务层

- repositories: 数据访问（MongoDB / 内存）
- credit_ledger: 额度预留与结算
- pathway_resolver / variable_extractor / knowledge_augmenter: prompt 构建
- dispatcher / backends: 生成调度
- performance: 日统计桶与报表
- activity_recorder: 活动审计
- pipeline: 请求处理流水线
"""

from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.agent_status import AgentStatusService, can_transition
from agent_meter.services.backends import (
    BackendError,
    BackendRequest,
    GenerationBackend,
    GeminiBackend,
)
from agent_meter.services.credit_ledger import (
    CreditLedger,
    Reservation,
    credit_cost,
)
from agent_meter.services.dispatcher import (
    BackendProfile,
    GenerationDispatcher,
    build_request,
    normalize,
)
from agent_meter.services.knowledge_augmenter import KnowledgeAugmenter
from agent_meter.services.knowledge_service import KnowledgeService
from agent_meter.services.pathway_resolver import PathwayResolver
from agent_meter.services.performance import PerformanceAggregator, percent_change
from agent_meter.services.pipeline import AgentRequestPipeline
from agent_meter.services.repositories import RepositoryManager, create_repository_manager
from agent_meter.services.variable_extractor import VariableExtractor

__all__ = [
    "ActivityRecorder",
    "AgentStatusService",
    "can_transition",
    "BackendError",
    "BackendRequest",
    "GenerationBackend",
    "GeminiBackend",
    "CreditLedger",
    "Reservation",
    "credit_cost",
    "BackendProfile",
    "GenerationDispatcher",
    "build_request",
    "normalize",
    "KnowledgeAugmenter",
    "KnowledgeService",
    "PathwayResolver",
    "PerformanceAggregator",
    "percent_change",
    "AgentRequestPipeline",
    "RepositoryManager",
    "create_repository_manager",
    "VariableExtractor",
]
