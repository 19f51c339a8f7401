"""
Agent 状态机

    inactive ──▶ active ──▶ inactive
                  ▲  │
                  │  ▼
                 paused

只有 active 的 Agent 接受请求。状态切换由外部触发，并记录 status 活动。
"""

import logging

from agent_meter.core.exceptions import InvalidStatusTransitionError
from agent_meter.models import AgentStateDocument, AgentStatus, StatusPayload
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.repositories import AgentRepository

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.INACTIVE: frozenset({AgentStatus.ACTIVE}),
    AgentStatus.ACTIVE: frozenset({AgentStatus.INACTIVE, AgentStatus.PAUSED}),
    AgentStatus.PAUSED: frozenset({AgentStatus.ACTIVE}),
}


def can_transition(current: AgentStatus, target: AgentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class AgentStatusService:
    """Agent 状态服务"""

    def __init__(self, repository: AgentRepository, recorder: ActivityRecorder):
        self._repo = repository
        self._recorder = recorder

    async def get_status(
        self,
        agent_id: str,
        default: AgentStatus = AgentStatus.INACTIVE,
    ) -> AgentStatus:
        """当前状态；尚无状态文档时返回 default"""
        state = await self._repo.get(agent_id)
        return state.status if state and state.status else default

    async def set_status(
        self,
        agent_id: str,
        caller_id: str,
        new_status: AgentStatus | str,
        initial: AgentStatus = AgentStatus.INACTIVE,
    ) -> AgentStateDocument:
        """
        切换状态

        目标状态与当前相同时不做修改。

        Raises:
            InvalidStatusTransitionError: 不允许的迁移（含并发修改导致的冲突）
        """
        new_status = AgentStatus(new_status)
        current = await self._repo.ensure(agent_id, initial)

        if current.status == new_status:
            return current

        if not can_transition(current.status, new_status):
            raise InvalidStatusTransitionError(current.status.value, new_status.value)

        updated = await self._repo.compare_and_set_status(agent_id, current.status, new_status)
        if updated is None:
            latest = await self._repo.get(agent_id)
            actual = latest.status.value if latest else current.status.value
            raise InvalidStatusTransitionError(actual, new_status.value)

        logger.info(f"Agent status changed: {agent_id} {current.status.value} -> {new_status.value}")
        await self._recorder.append(
            agent_id,
            caller_id,
            f"Agent status changed from {current.status.value} to {new_status.value}",
            StatusPayload(previous_status=current.status.value, new_status=new_status.value),
        )
        return updated
