"""
活动审计与管理操作单元测试

测试：
- ActivityEvent / 载荷联合类型
- ActivityRecorder: 尽力而为写入、异步写入、最近活动
- AgentStatusService: 状态机
- KnowledgeService: 知识库增删改
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from agent_meter.core.exceptions import InvalidStatusTransitionError, ItemNotFoundError
from agent_meter.models import (
    ActivityEvent,
    ActivityKind,
    AgentStatus,
    InteractionPayload,
    StatusPayload,
    parse_payload,
)
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.agent_status import AgentStatusService, can_transition
from agent_meter.services.knowledge_service import KnowledgeService


def status_payload():
    return StatusPayload(previous_status="inactive", new_status="active")


# =============================================================================
# 载荷
# =============================================================================


class TestActivityPayload:
    """载荷联合类型"""

    def test_parse_by_kind(self):
        payload = parse_payload({
            "kind": "interaction",
            "query": "hi",
            "success": True,
            "response_time": 0.5,
            "model": "gemini-2.0-flash",
        })
        assert isinstance(payload, InteractionPayload)
        assert payload.token_usage == 0

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_payload({"kind": "telemetry"})

    def test_payloads_are_immutable(self):
        payload = status_payload()
        with pytest.raises(ValidationError):
            payload.new_status = "paused"

    def test_event_kind_must_match_payload(self):
        with pytest.raises(ValueError):
            ActivityEvent(
                event_id="a1",
                agent_id="agent-1",
                caller_id="user-1",
                kind=ActivityKind.ERROR,
                description="mismatch",
                payload=status_payload(),
            )

    def test_event_dict_round_trip(self):
        event = ActivityEvent(
            event_id="a1",
            agent_id="agent-1",
            caller_id="user-1",
            kind=ActivityKind.STATUS,
            description="activated",
            payload=status_payload(),
        )

        doc = event.to_dict()
        assert doc["_id"] == "a1"
        assert doc["payload"]["kind"] == "status"
        assert ActivityEvent.from_dict(doc) == event


# =============================================================================
# ActivityRecorder
# =============================================================================


class TestActivityRecorder:
    """活动记录"""

    @pytest.mark.asyncio
    async def test_append_and_recent(self, repos):
        recorder = ActivityRecorder(repos.activities)

        for i in range(3):
            await recorder.append("agent-1", "user-1", f"event {i}", status_payload())
        await recorder.append("agent-2", "user-1", "other", status_payload())

        recent = await recorder.recent("agent-1", limit=2)

        assert len(recent) == 2
        assert all(e.agent_id == "agent-1" for e in recent)
        assert recent[0].timestamp >= recent[1].timestamp

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self, repos):
        recorder = ActivityRecorder(repos.activities)
        repos.activities.insert = AsyncMock(side_effect=RuntimeError("db down"))

        result = await recorder.append("agent-1", "user-1", "x", status_payload())

        assert result is None

    @pytest.mark.asyncio
    async def test_kind_follows_payload(self, repos):
        """事件类型取自载荷"""
        recorder = ActivityRecorder(repos.activities)

        event = await recorder.append("agent-1", "user-1", "x", status_payload())

        assert event.kind == ActivityKind.STATUS
        stored = (await recorder.recent("agent-1"))[0]
        assert stored.kind == ActivityKind.STATUS

    @pytest.mark.asyncio
    async def test_append_async(self, repos):
        recorder = ActivityRecorder(repos.activities)

        task = recorder.append_async("agent-1", "user-1", "x", status_payload())
        assert isinstance(task, asyncio.Task)
        await recorder.drain()

        assert len(repos.activities) == 1


# =============================================================================
# AgentStatusService
# =============================================================================


class TestAgentStatusService:
    """状态机"""

    def test_transition_table(self):
        assert can_transition(AgentStatus.INACTIVE, AgentStatus.ACTIVE)
        assert can_transition(AgentStatus.ACTIVE, AgentStatus.PAUSED)
        assert can_transition(AgentStatus.PAUSED, AgentStatus.ACTIVE)
        assert can_transition(AgentStatus.ACTIVE, AgentStatus.INACTIVE)
        assert not can_transition(AgentStatus.INACTIVE, AgentStatus.PAUSED)
        assert not can_transition(AgentStatus.PAUSED, AgentStatus.INACTIVE)

    @pytest.mark.asyncio
    async def test_activate_records_status_activity(self, repos):
        recorder = ActivityRecorder(repos.activities)
        service = AgentStatusService(repos.agents, recorder)

        state = await service.set_status("agent-1", "user-1", "active")

        assert state.status == AgentStatus.ACTIVE
        assert await service.get_status("agent-1") == AgentStatus.ACTIVE
        events = await recorder.recent("agent-1")
        assert events[0].kind == ActivityKind.STATUS
        assert events[0].payload.previous_status == "inactive"
        assert events[0].payload.new_status == "active"

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(self, repos):
        service = AgentStatusService(repos.agents, ActivityRecorder(repos.activities))

        with pytest.raises(InvalidStatusTransitionError):
            await service.set_status("agent-1", "user-1", AgentStatus.PAUSED)

        assert await service.get_status("agent-1") == AgentStatus.INACTIVE
        assert len(repos.activities) == 0

    @pytest.mark.asyncio
    async def test_same_status_is_noop(self, repos):
        service = AgentStatusService(repos.agents, ActivityRecorder(repos.activities))
        await service.set_status("agent-1", "user-1", AgentStatus.ACTIVE)

        await service.set_status("agent-1", "user-1", AgentStatus.ACTIVE)

        assert len(repos.activities) == 1

    @pytest.mark.asyncio
    async def test_response_counts_do_not_set_status(self, repos):
        """仅有响应计数时状态仍视为未设置，首次切换从 inactive 开始"""
        service = AgentStatusService(repos.agents, ActivityRecorder(repos.activities))
        await repos.agents.record_response("agent-1", True)

        assert (await repos.agents.get("agent-1")).status is None
        assert await service.get_status("agent-1") == AgentStatus.INACTIVE

        state = await service.set_status("agent-1", "user-1", AgentStatus.ACTIVE)

        assert state.status == AgentStatus.ACTIVE
        assert state.responses == 1
        events = await ActivityRecorder(repos.activities).recent("agent-1")
        assert events[0].payload.previous_status == "inactive"


# =============================================================================
# KnowledgeService
# =============================================================================


class TestKnowledgeService:
    """知识库管理"""

    @pytest.mark.asyncio
    async def test_add_update_delete(self, repos):
        recorder = ActivityRecorder(repos.activities)
        service = KnowledgeService(repos.knowledge, recorder)

        first = await service.add_entry("agent-1", "user-1", "Refunds", "30 days")
        second = await service.add_entry("agent-1", "user-1", "Shipping", "2 days")

        updated = await service.update_entry("agent-1", "user-1", first.entry_id, "Refund policy", "60 days")
        assert updated.created_at == first.created_at
        assert [e.title for e in await service.list_entries("agent-1")] == ["Refund policy", "Shipping"]

        deleted = await service.delete_entry("agent-1", "user-1", second.entry_id)
        assert deleted.title == "Shipping"
        assert len(await service.list_entries("agent-1")) == 1

        kinds = [e.kind for e in await recorder.recent("agent-1")]
        assert sorted(k.value for k in kinds) == [
            "knowledge_add", "knowledge_add", "knowledge_delete", "knowledge_update",
        ]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, repos):
        service = KnowledgeService(repos.knowledge, ActivityRecorder(repos.activities))
        await service.add_entry("agent-1", "user-1", "Refunds", "Money back within 30 days")
        await service.add_entry("agent-1", "user-1", "Shipping", "Ships fast")

        assert [e.title for e in await service.search_entries("agent-1", "MONEY")] == ["Refunds"]
        assert [e.title for e in await service.search_entries("agent-1", "ship")] == ["Shipping"]

    @pytest.mark.asyncio
    async def test_missing_entry_raises(self, repos):
        service = KnowledgeService(repos.knowledge, ActivityRecorder(repos.activities))

        with pytest.raises(ItemNotFoundError):
            await service.update_entry("agent-1", "user-1", "nope", "t", "c")
        with pytest.raises(ItemNotFoundError):
            await service.delete_entry("agent-1", "user-1", "nope")

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, repos):
        service = KnowledgeService(repos.knowledge, ActivityRecorder(repos.activities))
        with pytest.raises(ValueError):
            await service.add_entry("agent-1", "user-1", "  ", "content")
