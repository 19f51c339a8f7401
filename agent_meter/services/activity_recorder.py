"""
活动审计记录

职责：
- 追加 ActivityEvent（只追加，不修改）
- 尽力而为：写入失败只记日志，不影响请求结果
- 支持异步 fire-and-forget 模式
"""

import asyncio
import logging
from typing import List, Optional

from agent_meter.core.correlation import generate_id
from agent_meter.models import ActivityEvent, ActivityKind, ActivityPayload
from agent_meter.services.repositories import ActivityRepository

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """
    活动记录器

    事件类型由载荷的 kind 决定，不单独传入。

    Usage:
        recorder = ActivityRecorder(repos.activities)

        # 同步记录
        await recorder.append(agent_id, caller_id, "Agent activated", payload)

        # 异步记录（Fire & Forget）
        recorder.append_async(agent_id, caller_id, "Agent activated", payload)
    """

    def __init__(self, repository: ActivityRepository):
        self._repo = repository
        self._pending: set[asyncio.Task] = set()

    async def append(
        self,
        agent_id: str,
        caller_id: str,
        description: str,
        payload: ActivityPayload,
    ) -> Optional[ActivityEvent]:
        """
        追加一条活动

        Returns:
            写入的事件；写入失败时返回 None
        """
        kind = ActivityKind(payload.kind)
        try:
            event = ActivityEvent(
                event_id=f"act_{generate_id()}",
                agent_id=agent_id,
                caller_id=caller_id,
                kind=kind,
                description=description,
                payload=payload,
            )
            await self._repo.insert(event)
            logger.debug(f"Activity recorded: {kind.value} agent={agent_id}")
            return event
        except Exception as e:
            logger.error(f"Failed to record activity {kind.value} for {agent_id}: {e}", exc_info=True)
            return None

    def append_async(
        self,
        agent_id: str,
        caller_id: str,
        description: str,
        payload: ActivityPayload,
    ) -> asyncio.Task:
        """
        异步记录（Fire & Forget）

        Returns:
            asyncio.Task 用于可选的等待或取消
        """
        task = asyncio.create_task(self.append(agent_id, caller_id, description, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """等待所有未完成的异步记录（关闭时调用）"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def recent(self, agent_id: str, limit: int = 20) -> List[ActivityEvent]:
        """最近的活动（时间倒序）"""
        return await self._repo.list_recent(agent_id, limit)
