"""
Agent 请求处理流水线

    状态检查 → 额度预留 → pathway 选择 + 知识库增强 → 单次生成
             → 成功 commit / 失败 release → Agent 滚动准确率 → 当日统计桶 → 活动记录

生成与结算在 asyncio.shield 保护的任务中执行：调用方取消不会中断已发出的后端调用，
后端返回后照常结算和统计。
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from agent_meter.core.correlation import correlator, generate_request_id
from agent_meter.core.exceptions import AgentNotActiveError, InsufficientCreditsError
from agent_meter.core.logging import LogContext
from agent_meter.models import (
    AgentConfig,
    AgentStatus,
    ErrorPayload,
    GenerationParams,
    GenerationResult,
    HistoryTurn,
    InteractionPayload,
    KnowledgeEntry,
    PathwayResolution,
    PerformanceDelta,
)
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.credit_ledger import CreditLedger, Reservation, credit_cost
from agent_meter.services.dispatcher import GenerationDispatcher
from agent_meter.services.knowledge_augmenter import KnowledgeAugmenter
from agent_meter.services.pathway_resolver import PathwayResolver
from agent_meter.services.performance import PerformanceAggregator
from agent_meter.services.repositories import AgentRepository, KnowledgeRepository
from agent_meter.services.variable_extractor import VariableExtractor

logger = logging.getLogger(__name__)

# 活动记录中保存的查询长度上限
QUERY_PREVIEW_LENGTH = 500


def _history_turns(history: Sequence[HistoryTurn | Mapping[str, Any]]) -> list[HistoryTurn]:
    return [
        turn if isinstance(turn, HistoryTurn) else HistoryTurn.from_dict(turn)
        for turn in history
    ]


class AgentRequestPipeline:
    """
    Agent 请求流水线

    Usage:
        pipeline = ctx.pipeline
        try:
            result = await pipeline.process(agent, "What is your refund policy?", caller_id="user-1")
        except AgentNotActiveError:
            ...
        except InsufficientCreditsError as e:
            print(e.available_credits)
    """

    def __init__(
        self,
        ledger: CreditLedger,
        dispatcher: GenerationDispatcher,
        aggregator: PerformanceAggregator,
        recorder: ActivityRecorder,
        agents: AgentRepository,
        knowledge: KnowledgeRepository,
        resolver: PathwayResolver | None = None,
        augmenter: KnowledgeAugmenter | None = None,
    ):
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._aggregator = aggregator
        self._recorder = recorder
        self._agents = agents
        self._knowledge = knowledge
        self._resolver = resolver or PathwayResolver()
        self._augmenter = augmenter or KnowledgeAugmenter()
        self._in_flight: set[asyncio.Task] = set()

    # =========================================================================
    # 主流程
    # =========================================================================

    async def process(
        self,
        agent: AgentConfig,
        query: str,
        caller_id: str,
        history: Sequence[HistoryTurn | Mapping[str, Any]] = (),
        context: Mapping[str, Any] | None = None,
    ) -> GenerationResult:
        """
        处理一次 Agent 调用

        Args:
            agent: Agent 配置快照
            query: 用户输入
            caller_id: 调用方（额度账户所有者）
            history: 对话历史，最旧在前
            context: 调用方提供的 pathway 变量，优先于从 query 中抽取的值

        Returns:
            GenerationResult；后端失败以 success=False 返回

        Raises:
            AgentNotActiveError: Agent 非 active，未扣费
            InsufficientCreditsError: 额度不足，账户不变
            ValueError: history 中含未知角色，未扣费
        """
        with correlator.scope(generate_request_id()), LogContext(agent_id=agent.id, caller_id=caller_id):
            with LogContext.operation("agent_request", model_tier=agent.model_tier.value):
                await self._check_active(agent, caller_id)
                turns = _history_turns(history)

                reservation = await self._reserve(agent, caller_id)
                try:
                    resolution, system_prompt = await self._build_prompt(agent, query, context)
                except Exception:
                    await self._ledger.release(reservation)
                    raise

                task = asyncio.create_task(
                    self._generate_and_settle(
                        agent, caller_id, query, turns,
                        resolution, system_prompt, reservation,
                    )
                )
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)

                # 调用方取消只影响等待，不影响任务本身
                return await asyncio.shield(task)

    async def _check_active(self, agent: AgentConfig, caller_id: str) -> None:
        """状态检查：快照与存储的状态（若已设置）都必须为 active"""
        status = agent.status
        if status == AgentStatus.ACTIVE:
            state = await self._agents.get(agent.id)
            if state is None or state.status in (None, AgentStatus.ACTIVE):
                return
            status = state.status

        error = AgentNotActiveError(agent.id, status.value)
        logger.warning(f"Request rejected: agent {agent.id} is {status.value}")
        await self._recorder.append(
            agent.id,
            caller_id,
            f"Request rejected: agent is {status.value}",
            ErrorPayload(error_code=error.error_code, error=error.message, detail=error.detail),
        )
        raise error

    async def _reserve(self, agent: AgentConfig, caller_id: str) -> Reservation:
        cost = credit_cost(agent.model_tier)
        try:
            return await self._ledger.reserve(caller_id, cost)
        except InsufficientCreditsError as e:
            await self._recorder.append(
                agent.id,
                caller_id,
                "Request rejected: insufficient credits",
                ErrorPayload(error_code=e.error_code, error=e.message, detail=e.detail),
            )
            raise

    async def _build_prompt(
        self,
        agent: AgentConfig,
        query: str,
        context: Mapping[str, Any] | None,
    ) -> tuple[PathwayResolution, str]:
        """pathway 选择 + 知识库增强，返回 (选择结果, 最终 system prompt)"""
        variables = VariableExtractor(agent.variables).extract(query) if agent.variables else {}
        pathway_context = {**variables, **(context or {})}

        resolution = self._resolver.select(agent.prompt_variants, pathway_context)
        base_prompt = resolution.content or agent.system_prompt

        entries = await self._knowledge_entries(agent)
        return resolution, self._augmenter.augment(base_prompt, entries)

    async def _knowledge_entries(self, agent: AgentConfig) -> Sequence[KnowledgeEntry]:
        """快照自带条目时直接使用，否则读取存储的知识库"""
        if agent.knowledge_entries:
            return agent.knowledge_entries
        return await self._knowledge.list_entries(agent.id)

    # =========================================================================
    # 生成与结算（shield 保护）
    # =========================================================================

    async def _generate_and_settle(
        self,
        agent: AgentConfig,
        caller_id: str,
        query: str,
        history: list[HistoryTurn],
        resolution: PathwayResolution,
        system_prompt: str,
        reservation: Reservation,
    ) -> GenerationResult:
        params = GenerationParams(
            temperature=agent.temperature,
            max_tokens=agent.max_tokens,
            top_k=agent.top_k,
        )

        try:
            result = await self._dispatcher.dispatch(
                agent.model_tier, system_prompt, query, history, params,
            )
        except asyncio.CancelledError:
            # 任务本身被取消（如关闭时），没有结果可结算
            await asyncio.shield(self._ledger.release(reservation))
            raise

        try:
            if result.success:
                await self._ledger.commit(reservation)
            else:
                await self._ledger.release(reservation)
        except Exception as e:
            logger.error(f"Failed to settle {reservation.reservation_id}: {e}", exc_info=True)

        await self._record_outcome(agent, caller_id, query, resolution, reservation, result)
        return result

    async def _record_outcome(
        self,
        agent: AgentConfig,
        caller_id: str,
        query: str,
        resolution: PathwayResolution,
        reservation: Reservation,
        result: GenerationResult,
    ) -> None:
        """滚动准确率、当日统计桶、活动记录；统计失败不影响已结算的请求"""
        try:
            state = await self._agents.record_response(agent.id, result.success)
            await self._aggregator.record(
                agent.id,
                datetime.now(),
                PerformanceDelta.from_result(result, state.accuracy),
            )
        except Exception as e:
            logger.error(f"Failed to update performance for {agent.id}: {e}", exc_info=True)

        await self._recorder.append(
            agent.id,
            caller_id,
            "Agent responded to a query" if result.success else "Agent failed to respond to a query",
            InteractionPayload(
                query=query[:QUERY_PREVIEW_LENGTH],
                success=result.success,
                response_time=result.response_time_seconds,
                token_usage=result.token_usage,
                model=result.model_used,
                credits_charged=reservation.cost if result.success else 0,
                pathway=resolution.variant_name,
            ),
        )

        if not result.success:
            await self._recorder.append(
                agent.id,
                caller_id,
                "Generation backend failed",
                ErrorPayload(
                    error_code="BACKEND_FAILURE",
                    error="Generation backend failed",
                    detail=_jsonable(result.error_detail),
                ),
            )

    async def wait_in_flight(self) -> None:
        """等待所有在途请求结算完成（关闭时调用）"""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)


def _jsonable(detail: Any) -> Optional[Any]:
    if detail is None or isinstance(detail, (str, int, float, bool, dict, list)):
        return detail
    return str(detail)
