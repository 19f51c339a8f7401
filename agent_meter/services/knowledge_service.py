"""
知识库管理

条目增删改，同时写入 knowledge_* 活动
"""

import logging
from typing import List

from agent_meter.core.exceptions import ItemNotFoundError
from agent_meter.models import (
    KnowledgeAddPayload,
    KnowledgeDeletePayload,
    KnowledgeEntry,
    KnowledgeUpdatePayload,
)
from agent_meter.services.activity_recorder import ActivityRecorder
from agent_meter.services.repositories import KnowledgeRepository

logger = logging.getLogger(__name__)


def _require_text(title: str, content: str) -> None:
    if not title or not title.strip():
        raise ValueError("Knowledge entry title is required")
    if not content or not content.strip():
        raise ValueError("Knowledge entry content is required")


class KnowledgeService:
    """知识库服务"""

    def __init__(self, repository: KnowledgeRepository, recorder: ActivityRecorder):
        self._repo = repository
        self._recorder = recorder

    async def list_entries(self, agent_id: str) -> List[KnowledgeEntry]:
        return await self._repo.list_entries(agent_id)

    async def search_entries(self, agent_id: str, query: str) -> List[KnowledgeEntry]:
        return await self._repo.search_entries(agent_id, query)

    async def add_entry(
        self,
        agent_id: str,
        caller_id: str,
        title: str,
        content: str,
    ) -> KnowledgeEntry:
        """
        新增条目

        Raises:
            ValueError: 标题或内容为空
        """
        _require_text(title, content)
        entry = await self._repo.add_entry(agent_id, title, content)
        logger.info(f"Knowledge entry added: agent={agent_id}, entry={entry.entry_id}")
        await self._recorder.append(
            agent_id,
            caller_id,
            f'Knowledge entry "{title}" added',
            KnowledgeAddPayload(entry_id=entry.entry_id, title=title),
        )
        return entry

    async def update_entry(
        self,
        agent_id: str,
        caller_id: str,
        entry_id: str,
        title: str,
        content: str,
    ) -> KnowledgeEntry:
        """
        更新条目

        Raises:
            ValueError: 标题或内容为空
            ItemNotFoundError: 条目不存在
        """
        _require_text(title, content)
        entry = await self._repo.update_entry(agent_id, entry_id, title, content)
        if entry is None:
            raise ItemNotFoundError(
                f"Knowledge entry not found: {entry_id}",
                detail={"agent_id": agent_id, "entry_id": entry_id},
            )
        logger.info(f"Knowledge entry updated: agent={agent_id}, entry={entry_id}")
        await self._recorder.append(
            agent_id,
            caller_id,
            f'Knowledge entry "{title}" updated',
            KnowledgeUpdatePayload(entry_id=entry_id, title=title),
        )
        return entry

    async def delete_entry(self, agent_id: str, caller_id: str, entry_id: str) -> KnowledgeEntry:
        """
        删除条目

        Raises:
            ItemNotFoundError: 条目不存在
        """
        entry = await self._repo.delete_entry(agent_id, entry_id)
        if entry is None:
            raise ItemNotFoundError(
                f"Knowledge entry not found: {entry_id}",
                detail={"agent_id": agent_id, "entry_id": entry_id},
            )
        logger.info(f"Knowledge entry deleted: agent={agent_id}, entry={entry_id}")
        await self._recorder.append(
            agent_id,
            caller_id,
            f'Knowledge entry "{entry.title}" deleted',
            KnowledgeDeletePayload(entry_id=entry_id, title=entry.title),
        )
        return entry
