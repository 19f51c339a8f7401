"""
应用上下文容器

设计原则：
- 使用 AppContext 类封装所有服务实例，不使用模块级或类级单例
- 清晰的生命周期管理（create / shutdown）
- 易于测试（可以注入后端，或创建独立的内存模式上下文）
"""

import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any

from agent_meter.config import AppConfig, load_config
from agent_meter.core.logging import setup_logging
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.agent_status import AgentStatusService
from agent_meter.services.backends import GenerationBackend, GeminiBackend
from agent_meter.services.credit_ledger import CreditLedger
from agent_meter.services.database import Database, get_database as create_database
from agent_meter.services.dispatcher import GenerationDispatcher
from agent_meter.services.knowledge_service import KnowledgeService
from agent_meter.services.performance import PerformanceAggregator
from agent_meter.services.pipeline import AgentRequestPipeline
from agent_meter.services.repositories import RepositoryManager, create_repository_manager

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """
    应用上下文容器

    Usage:
        ```python
        ctx = await AppContext.create()

        result = await ctx.pipeline.process(agent, "hello", caller_id="user-1")
        report = await ctx.aggregator.report(agent.id, "week")

        await ctx.shutdown()
        ```
    """

    config: AppConfig = field(default_factory=AppConfig)

    # 基础设施
    mongo_client: Any = field(default=None, repr=False)
    database: Database | None = None
    repository_manager: RepositoryManager | None = None
    backend: GenerationBackend | None = None

    # 业务服务
    ledger: CreditLedger | None = None
    dispatcher: GenerationDispatcher | None = None
    aggregator: PerformanceAggregator | None = None
    recorder: ActivityRecorder | None = None
    knowledge: KnowledgeService | None = None
    agent_status: AgentStatusService | None = None
    pipeline: AgentRequestPipeline | None = None

    @classmethod
    async def create(
        cls,
        config: AppConfig | None = None,
        backend: GenerationBackend | None = None,
    ) -> "AppContext":
        """创建并初始化应用上下文；每次调用返回独立实例，由调用方持有"""
        config = config or load_config()
        setup_logging(log_dir=config.log_dir, log_level=config.log_level)

        ctx = cls(config=config)
        await ctx._init_database()
        ctx.repository_manager = create_repository_manager(ctx.database)
        ctx.backend = backend or GeminiBackend(
            api_key=config.backend.gemini_api_key,
            base_url=config.backend.gemini_base_url,
            timeout=config.backend.request_timeout,
        )
        ctx._init_services()

        logger.info(f"AppContext initialized: environment={config.environment}")
        return ctx

    async def _init_database(self) -> None:
        """初始化数据库"""
        uri = self.config.database.mongodb_uri
        if not uri:
            logger.info("Database: memory mode (set MONGODB_URI to enable MongoDB)")
            return

        try:
            from motor.motor_asyncio import AsyncIOMotorClient

            logger.info(f"Connecting to MongoDB: {uri}")

            # 读取时返回带 UTC 时区的 datetime
            self.mongo_client = AsyncIOMotorClient(
                uri,
                serverSelectionTimeoutMS=3000,  # 快速失败
                tz_aware=True,
                tzinfo=timezone.utc,
            )
            await self.mongo_client.admin.command("ping")

            self.database = create_database(self.mongo_client, self.config.database.mongodb_db_name)
            if self.database:
                await self.database.ensure_indexes()
                logger.info(f"Database: mongodb/{self.config.database.mongodb_db_name}")

        except Exception as e:
            logger.warning(f"MongoDB connection failed ({uri}): {e}. Falling back to memory mode.")
            if self.mongo_client:
                self.mongo_client.close()
            self.mongo_client = None
            self.database = None

    def _init_services(self) -> None:
        """初始化业务服务"""
        repos = self.repository_manager

        self.ledger = CreditLedger(
            repos.credits,
            default_total_credits=self.config.metering.default_total_credits,
        )
        self.dispatcher = GenerationDispatcher(
            self.backend,
            tier_models=self.config.backend.tier_models(),
        )
        self.aggregator = PerformanceAggregator(repos.performance, repos.agents)
        self.recorder = ActivityRecorder(repos.activities)
        self.knowledge = KnowledgeService(repos.knowledge, self.recorder)
        self.agent_status = AgentStatusService(repos.agents, self.recorder)
        self.pipeline = AgentRequestPipeline(
            ledger=self.ledger,
            dispatcher=self.dispatcher,
            aggregator=self.aggregator,
            recorder=self.recorder,
            agents=repos.agents,
            knowledge=repos.knowledge,
        )

    async def shutdown(self) -> None:
        """关闭所有服务"""
        if self.pipeline:
            await self.pipeline.wait_in_flight()

        if self.recorder:
            await self.recorder.drain()

        if self.backend:
            await self.backend.aclose()
            self.backend = None

        if self.mongo_client:
            self.mongo_client.close()
            self.mongo_client = None

        logger.info("AppContext shutdown")

