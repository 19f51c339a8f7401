"""
AgentRequestPipeline 集成测试（内存模式）

测试：
- 成功请求：扣费、统计、活动
- 后端失败：回退额度、失败计数、error 活动
- 拒绝：非 active / 额度不足
- pathway 与知识库进入 system prompt
- 调用方取消不影响结算
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from agent_meter.core.exceptions import AgentNotActiveError, InsufficientCreditsError
from agent_meter.models import (
    ActivityKind,
    AgentConfig,
    AgentStatus,
    Condition,
    ConditionOperator,
    KnowledgeEntry,
    ModelTier,
    PromptVariant,
    VariableDefinition,
)
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.credit_ledger import CreditLedger
from agent_meter.services.dispatcher import GenerationDispatcher
from agent_meter.services.performance import PerformanceAggregator
from agent_meter.services.pipeline import AgentRequestPipeline

from fakes import FakeBackend, gemini_response


def make_agent(**overrides) -> AgentConfig:
    fields = {
        "id": "agent-1",
        "owner_id": "owner-1",
        "name": "Support Bot",
        "model_tier": ModelTier.SMALL,
        "system_prompt": "You are a support agent.",
        "status": AgentStatus.ACTIVE,
    }
    fields.update(overrides)
    return AgentConfig(**fields)


def make_pipeline(repos, backend, total_credits=100):
    ledger = CreditLedger(repos.credits, default_total_credits=total_credits)
    recorder = ActivityRecorder(repos.activities)
    pipeline = AgentRequestPipeline(
        ledger=ledger,
        dispatcher=GenerationDispatcher(backend),
        aggregator=PerformanceAggregator(repos.performance, repos.agents),
        recorder=recorder,
        agents=repos.agents,
        knowledge=repos.knowledge,
    )
    return pipeline, ledger, recorder


async def kinds(recorder, agent_id="agent-1"):
    return [e.kind for e in reversed(await recorder.recent(agent_id, limit=50))]


# =============================================================================
# 成功 / 失败
# =============================================================================


class TestPipelineOutcome:
    """请求结果与结算"""

    @pytest.mark.asyncio
    async def test_successful_request(self, repos):
        backend = FakeBackend(gemini_response("We refund within 30 days.", 20, 10))
        pipeline, ledger, recorder = make_pipeline(repos, backend)

        result = await pipeline.process(make_agent(model_tier=ModelTier.LARGE), "Refund policy?", "user-1")

        assert result.success is True
        assert result.text == "We refund within 30 days."
        assert result.token_usage == 30
        assert result.model_used == "gemini-1.5-pro"

        account = await ledger.get_account("user-1")
        assert account.used_credits == 2

        state = await repos.agents.get("agent-1")
        assert state.responses == 1
        assert state.accuracy == 100.0

        events = await recorder.recent("agent-1")
        assert events[0].kind == ActivityKind.INTERACTION
        assert events[0].payload.success is True
        assert events[0].payload.credits_charged == 2
        assert events[0].payload.token_usage == 30

    @pytest.mark.asyncio
    async def test_failed_generation_releases_credits(self, repos, failing_backend):
        pipeline, ledger, recorder = make_pipeline(repos, failing_backend)

        result = await pipeline.process(make_agent(), "hello", "user-1")

        assert result.success is False
        assert result.error_detail == {"code": 429, "status": "RESOURCE_EXHAUSTED"}
        assert (await ledger.get_account("user-1")).used_credits == 0

        state = await repos.agents.get("agent-1")
        assert state.accuracy == 0.0

        report = await pipeline._aggregator.report("agent-1", "day")
        assert report.responses == 1
        assert report.accuracy == 0.0

        assert await kinds(recorder) == [ActivityKind.INTERACTION, ActivityKind.ERROR]

    @pytest.mark.asyncio
    async def test_rolling_accuracy_across_requests(self, repos):
        backend = FakeBackend(
            gemini_response("a"),
            {"candidates": []},
            gemini_response("b"),
        )
        pipeline, ledger, _ = make_pipeline(repos, backend)

        outcomes = [
            (await pipeline.process(make_agent(), f"q{i}", "user-1")).success
            for i in range(3)
        ]

        assert outcomes == [True, False, True]
        state = await repos.agents.get("agent-1")
        assert round(state.accuracy, 2) == 66.67
        assert (await ledger.get_account("user-1")).used_credits == 2

    @pytest.mark.asyncio
    async def test_settle_failure_still_records_outcome(self, repos, failing_backend):
        """回退额度的存储错误只记日志，结果与活动照常返回和记录"""
        pipeline, _, recorder = make_pipeline(repos, failing_backend)
        repos.credits.credit_back = AsyncMock(side_effect=RuntimeError("db down"))

        result = await pipeline.process(make_agent(), "hello", "user-1")

        assert result.success is False
        assert (await repos.agents.get("agent-1")).responses == 1
        assert await kinds(recorder) == [ActivityKind.INTERACTION, ActivityKind.ERROR]


# =============================================================================
# 拒绝
# =============================================================================


class TestPipelineRejections:
    """请求拒绝"""

    @pytest.mark.asyncio
    async def test_inactive_agent_rejected_without_debit(self, repos, backend):
        pipeline, ledger, recorder = make_pipeline(repos, backend)

        with pytest.raises(AgentNotActiveError) as exc_info:
            await pipeline.process(make_agent(status=AgentStatus.PAUSED), "hello", "user-1")

        assert exc_info.value.status == "paused"
        assert backend.requests == []
        assert (await ledger.get_account("user-1")).used_credits == 0
        assert await kinds(recorder) == [ActivityKind.ERROR]

    @pytest.mark.asyncio
    async def test_stored_inactive_rejects_active_snapshot(self, repos, backend):
        pipeline, _, _ = make_pipeline(repos, backend)
        await repos.agents.ensure("agent-1", AgentStatus.INACTIVE)

        with pytest.raises(AgentNotActiveError):
            await pipeline.process(make_agent(status=AgentStatus.ACTIVE), "hello", "user-1")

    @pytest.mark.asyncio
    async def test_paused_snapshot_rejected_after_prior_response(self, repos, backend):
        """已有响应计数的 Agent，快照非 active 时仍拒绝且不扣费"""
        pipeline, ledger, _ = make_pipeline(repos, backend)
        await pipeline.process(make_agent(), "hello", "user-1")

        with pytest.raises(AgentNotActiveError) as exc_info:
            await pipeline.process(make_agent(status=AgentStatus.PAUSED), "again", "user-1")

        assert exc_info.value.status == "paused"
        assert len(backend.requests) == 1
        assert (await ledger.get_account("user-1")).used_credits == 1

    @pytest.mark.asyncio
    async def test_stored_active_does_not_override_inactive_snapshot(self, repos, backend):
        pipeline, ledger, _ = make_pipeline(repos, backend)
        await repos.agents.ensure("agent-1", AgentStatus.ACTIVE)

        with pytest.raises(AgentNotActiveError):
            await pipeline.process(make_agent(status=AgentStatus.INACTIVE), "hello", "user-1")

        assert backend.requests == []
        assert (await ledger.get_account("user-1")).used_credits == 0

    @pytest.mark.asyncio
    async def test_unknown_history_role_not_charged(self, repos, backend):
        pipeline, ledger, _ = make_pipeline(repos, backend)

        with pytest.raises(ValueError):
            await pipeline.process(
                make_agent(), "hello", "user-1",
                history=[{"role": "system", "content": "x"}],
            )

        assert backend.requests == []
        assert (await ledger.get_account("user-1")).used_credits == 0

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, repos, backend):
        pipeline, ledger, recorder = make_pipeline(repos, backend, total_credits=1)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await pipeline.process(make_agent(model_tier=ModelTier.PREMIUM), "hello", "user-1")

        assert exc_info.value.available_credits == 1
        assert exc_info.value.required_credits == 2
        assert backend.requests == []
        assert (await ledger.get_account("user-1")).used_credits == 0
        assert await kinds(recorder) == [ActivityKind.ERROR]


# =============================================================================
# Prompt 构建
# =============================================================================


class TestPipelinePrompt:
    """pathway + 知识库"""

    @pytest.mark.asyncio
    async def test_pathway_and_knowledge_reach_backend(self, repos, backend):
        pipeline, _, recorder = make_pipeline(repos, backend)
        agent = make_agent(
            model_tier=ModelTier.LARGE,
            prompt_variants=(
                PromptVariant(
                    name="us",
                    content="US support prompt.",
                    order=1,
                    conditions=(Condition("country", ConditionOperator.EQUALS, "US"),),
                ),
                PromptVariant(name="default", content="Default prompt.", order=2),
            ),
            variables=(VariableDefinition(name="country"),),
            knowledge_entries=(KnowledgeEntry(entry_id="k1", title="Hours", content="9 to 5"),),
        )

        await pipeline.process(agent, "Country: US\nWhen are you open?", "user-1")

        system = backend.requests[0].system_instruction
        assert system.startswith("US support prompt.")
        assert "[1] Hours:\n9 to 5" in system

        events = await recorder.recent("agent-1")
        assert events[0].payload.pathway == "us"

    @pytest.mark.asyncio
    async def test_caller_context_overrides_extracted_variables(self, repos, backend):
        pipeline, _, _ = make_pipeline(repos, backend)
        agent = make_agent(
            model_tier=ModelTier.LARGE,
            prompt_variants=(
                PromptVariant(
                    name="us", content="US", order=1,
                    conditions=(Condition("country", ConditionOperator.EQUALS, "US"),),
                ),
                PromptVariant(name="other", content="Other", order=2),
            ),
            variables=(VariableDefinition(name="country"),),
        )

        await pipeline.process(agent, "Country: US", "user-1", context={"country": "FR"})

        assert backend.requests[0].system_instruction == "Other"

    @pytest.mark.asyncio
    async def test_stored_knowledge_used_when_snapshot_empty(self, repos, backend):
        pipeline, _, _ = make_pipeline(repos, backend)
        await repos.knowledge.add_entry("agent-1", "Returns", "Free returns")

        await pipeline.process(make_agent(), "hi", "user-1")

        text = backend.requests[0].contents[-1]["parts"][0]["text"]
        assert text.startswith("You are a support agent.\n\nKNOWLEDGE BASE INFORMATION:")
        assert "[1] Returns:\nFree returns" in text
        assert text.endswith("User Query: hi")

    @pytest.mark.asyncio
    async def test_history_dicts_accepted(self, repos, backend):
        pipeline, _, _ = make_pipeline(repos, backend)

        await pipeline.process(
            make_agent(model_tier=ModelTier.LARGE),
            "and now?",
            "user-1",
            history=[
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
            ],
        )

        assert [c["role"] for c in backend.requests[0].contents] == ["user", "model", "user"]


# =============================================================================
# 并发与取消
# =============================================================================


class TestPipelineConcurrency:
    """并发与取消"""

    @pytest.mark.asyncio
    async def test_concurrent_requests_respect_balance(self, repos):
        backend = FakeBackend()
        backend.gate = asyncio.Event()
        pipeline, ledger, _ = make_pipeline(repos, backend, total_credits=3)

        tasks = [
            asyncio.create_task(pipeline.process(make_agent(), f"q{i}", "user-1"))
            for i in range(5)
        ]
        await asyncio.sleep(0.01)
        backend.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert sum(1 for r in results if isinstance(r, InsufficientCreditsError)) == 2
        assert sum(1 for r in results if not isinstance(r, Exception) and r.success) == 3
        assert len(backend.requests) == 3
        assert (await ledger.get_account("user-1")).used_credits == 3

    @pytest.mark.asyncio
    async def test_caller_cancellation_still_settles(self, repos, failing_backend):
        failing_backend.gate = asyncio.Event()
        pipeline, ledger, recorder = make_pipeline(repos, failing_backend)

        task = asyncio.create_task(pipeline.process(make_agent(), "hello", "user-1"))
        await asyncio.sleep(0.01)
        assert (await ledger.get_account("user-1")).used_credits == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        failing_backend.gate.set()
        await pipeline.wait_in_flight()

        assert (await ledger.get_account("user-1")).used_credits == 0
        assert await kinds(recorder) == [ActivityKind.INTERACTION, ActivityKind.ERROR]
