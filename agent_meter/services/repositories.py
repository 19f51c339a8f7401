"""
Repository 层

封装各集合的数据访问逻辑。所有共享可变状态（额度账户、Agent 计数、日统计桶）
的修改都表达为按主键的单条原子操作：
- MongoDB: find_one_and_update 条件更新 / $inc / 管道更新（pipeline update）
- 内存模式: 读-判断-写之间没有 await，在事件循环内天然原子

5表设计：credit_accounts, agents, knowledge_bases, agent_performance, agent_activities
"""

import logging
from abc import ABC
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from agent_meter.core.correlation import generate_id
from agent_meter.models import (
    ActivityEvent,
    AgentStateDocument,
    AgentStatus,
    CreditAccount,
    KnowledgeEntry,
    PerformanceBucket,
    PerformanceDelta,
    bucket_id,
)
from agent_meter.services.database import Database
from agent_meter.utils.datetime import local_midnight, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# 基础 Repository
# =============================================================================


class BaseRepository(ABC):
    """Repository 基类"""

    def __init__(self, db: Database | None):
        self._db = db

    @property
    def is_persistent(self) -> bool:
        """是否持久化存储"""
        return self._db is not None and self._db.is_connected


# =============================================================================
# Credit Repository
# =============================================================================


class CreditRepository(BaseRepository):
    """
    额度账户 Repository

    不变量：0 <= used_credits <= total_credits，并发扣减下同样成立。
    """

    def __init__(self, db: Database | None):
        super().__init__(db)
        self._memory_store: dict[str, CreditAccount] = {}

    async def get(self, owner_id: str) -> Optional[CreditAccount]:
        """获取账户"""
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one({"_id": owner_id})
            return CreditAccount.from_dict(doc) if doc else None
        account = self._memory_store.get(owner_id)
        return replace(account) if account else None

    async def get_or_create(self, owner_id: str, default_total: int) -> CreditAccount:
        """获取账户，不存在时按套餐默认额度创建（upsert，幂等）"""
        now = utc_now()
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one_and_update(
                {"_id": owner_id},
                {"$setOnInsert": {
                    "total_credits": default_total,
                    "used_credits": 0,
                    "last_reset_at": now,
                    "created_at": now,
                    "updated_at": now,
                }},
                upsert=True,
                return_document=True,
            )
            return CreditAccount.from_dict(doc)

        account = self._memory_store.get(owner_id)
        if account is None:
            account = CreditAccount(owner_id=owner_id, total_credits=default_total)
            self._memory_store[owner_id] = account
            logger.info(f"Credit account created: owner={owner_id}, total={default_total}")
        return replace(account)

    async def try_debit(self, owner_id: str, amount: int) -> Optional[CreditAccount]:
        """
        条件原子扣减

        仅当 used_credits + amount <= total_credits 时递增 used_credits。

        Returns:
            扣减后的账户；条件不满足（或账户不存在）时返回 None，状态不变
        """
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one_and_update(
                {
                    "_id": owner_id,
                    "$expr": {
                        "$lte": [{"$add": ["$used_credits", amount]}, "$total_credits"]
                    },
                },
                {
                    "$inc": {"used_credits": amount},
                    "$set": {"updated_at": utc_now()},
                },
                return_document=True,
            )
            return CreditAccount.from_dict(doc) if doc else None

        account = self._memory_store.get(owner_id)
        if account is None or account.used_credits + amount > account.total_credits:
            return None
        account.used_credits += amount
        account.updated_at = utc_now()
        return replace(account)

    async def credit_back(self, owner_id: str, amount: int) -> Optional[CreditAccount]:
        """
        原子回退扣减（release）

        以 used_credits >= amount 为条件，避免在管理员重置后减成负数。
        """
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one_and_update(
                {"_id": owner_id, "used_credits": {"$gte": amount}},
                {
                    "$inc": {"used_credits": -amount},
                    "$set": {"updated_at": utc_now()},
                },
                return_document=True,
            )
            return CreditAccount.from_dict(doc) if doc else None

        account = self._memory_store.get(owner_id)
        if account is None or account.used_credits < amount:
            return None
        account.used_credits -= amount
        account.updated_at = utc_now()
        return replace(account)

    async def reset(self, owner_id: str) -> Optional[CreditAccount]:
        """used_credits 清零并记录重置时间"""
        now = utc_now()
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one_and_update(
                {"_id": owner_id},
                {"$set": {"used_credits": 0, "last_reset_at": now, "updated_at": now}},
                return_document=True,
            )
            return CreditAccount.from_dict(doc) if doc else None

        account = self._memory_store.get(owner_id)
        if account is None:
            return None
        account.used_credits = 0
        account.last_reset_at = now
        account.updated_at = now
        return replace(account)

    async def set_total(self, owner_id: str, new_total: int) -> Optional[CreditAccount]:
        """
        套餐变更：更新总额度，已用额度超出时截断到新总额（单条管道更新）
        """
        now = utc_now()
        if self.is_persistent:
            doc = await self._db.credit_accounts.find_one_and_update(
                {"_id": owner_id},
                [{"$set": {
                    "total_credits": new_total,
                    "used_credits": {"$min": ["$used_credits", new_total]},
                    "updated_at": now,
                }}],
                return_document=True,
            )
            return CreditAccount.from_dict(doc) if doc else None

        account = self._memory_store.get(owner_id)
        if account is None:
            return None
        account.total_credits = new_total
        account.used_credits = min(account.used_credits, new_total)
        account.updated_at = now
        return replace(account)


# =============================================================================
# Agent Repository
# =============================================================================


class AgentRepository(BaseRepository):
    """
    Agent 状态 Repository

    管理 status 以及生命周期计数 responses / accuracy
    """

    def __init__(self, db: Database | None):
        super().__init__(db)
        self._memory_store: dict[str, AgentStateDocument] = {}

    async def get(self, agent_id: str) -> Optional[AgentStateDocument]:
        """获取 Agent 状态"""
        if self.is_persistent:
            doc = await self._db.agents.find_one({"_id": agent_id})
            return AgentStateDocument.from_dict(doc) if doc else None
        state = self._memory_store.get(agent_id)
        return replace(state) if state else None

    async def ensure(
        self,
        agent_id: str,
        status: AgentStatus = AgentStatus.INACTIVE,
    ) -> AgentStateDocument:
        """获取或创建 Agent 状态文档；状态未设置时写入 status"""
        if self.is_persistent:
            doc = await self._db.agents.find_one_and_update(
                {"_id": agent_id},
                [
                    {"$set": {
                        "status": {"$ifNull": ["$status", status.value]},
                        "responses": {"$ifNull": ["$responses", 0]},
                        "accuracy": {"$ifNull": ["$accuracy", 0.0]},
                        "updated_at": {"$ifNull": ["$updated_at", utc_now()]},
                    }},
                ],
                upsert=True,
                return_document=True,
            )
            return AgentStateDocument.from_dict(doc)

        state = self._memory_store.get(agent_id)
        if state is None:
            state = AgentStateDocument(agent_id=agent_id, status=status)
            self._memory_store[agent_id] = state
        elif state.status is None:
            state.status = status
        return replace(state)

    async def compare_and_set_status(
        self,
        agent_id: str,
        expected: AgentStatus,
        new_status: AgentStatus,
    ) -> Optional[AgentStateDocument]:
        """
        状态 CAS：仅当当前状态等于 expected 时更新

        Returns:
            更新后的文档；当前状态已被并发修改时返回 None
        """
        if self.is_persistent:
            doc = await self._db.agents.find_one_and_update(
                {"_id": agent_id, "status": expected.value},
                {"$set": {"status": new_status.value, "updated_at": utc_now()}},
                return_document=True,
            )
            return AgentStateDocument.from_dict(doc) if doc else None

        state = self._memory_store.get(agent_id)
        if state is None or state.status != expected:
            return None
        state.status = new_status
        state.updated_at = utc_now()
        return replace(state)

    async def record_response(self, agent_id: str, success: bool) -> AgentStateDocument:
        """
        记录一次响应并更新滚动准确率（单条原子更新）

        accuracy = (accuracy * (responses - 1) + (100 if success else 0)) / responses
        其中 responses 是本次递增后的值；首次响应时即为 100 或 0。
        """
        score = 100.0 if success else 0.0
        now = utc_now()

        if self.is_persistent:
            doc = await self._db.agents.find_one_and_update(
                {"_id": agent_id},
                [
                    {"$set": {
                        "responses": {"$add": [{"$ifNull": ["$responses", 0]}, 1]},
                        "last_active": now,
                        "updated_at": now,
                    }},
                    {"$set": {
                        "accuracy": {"$divide": [
                            {"$add": [
                                {"$multiply": [
                                    {"$ifNull": ["$accuracy", 0]},
                                    {"$subtract": ["$responses", 1]},
                                ]},
                                score,
                            ]},
                            "$responses",
                        ]},
                    }},
                ],
                upsert=True,
                return_document=True,
            )
            return AgentStateDocument.from_dict(doc)

        state = self._memory_store.get(agent_id)
        if state is None:
            state = AgentStateDocument(agent_id=agent_id)
            self._memory_store[agent_id] = state
        state.responses += 1
        state.accuracy = (state.accuracy * (state.responses - 1) + score) / state.responses
        state.last_active = now
        state.updated_at = now
        return replace(state)


# =============================================================================
# Knowledge Repository
# =============================================================================


class KnowledgeRepository(BaseRepository):
    """
    知识库 Repository

    每个 Agent 一个知识库文档，条目按插入顺序保存
    """

    def __init__(self, db: Database | None):
        super().__init__(db)
        self._memory_store: dict[str, list[KnowledgeEntry]] = {}

    async def list_entries(self, agent_id: str) -> List[KnowledgeEntry]:
        """按插入顺序列出条目"""
        if self.is_persistent:
            doc = await self._db.knowledge_bases.find_one({"_id": agent_id})
            if not doc:
                return []
            return [KnowledgeEntry.from_dict(e) for e in doc.get("entries", [])]
        return list(self._memory_store.get(agent_id, []))

    async def add_entry(self, agent_id: str, title: str, content: str) -> KnowledgeEntry:
        """追加条目"""
        now = utc_now()
        entry = KnowledgeEntry(
            entry_id=generate_id(),
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )

        if self.is_persistent:
            await self._db.knowledge_bases.update_one(
                {"_id": agent_id},
                {
                    "$push": {"entries": entry.to_dict()},
                    "$set": {"agent_id": agent_id, "updated_at": now},
                },
                upsert=True,
            )
        else:
            self._memory_store.setdefault(agent_id, []).append(entry)

        return entry

    async def update_entry(
        self,
        agent_id: str,
        entry_id: str,
        title: str,
        content: str,
    ) -> Optional[KnowledgeEntry]:
        """更新条目（位置不变）"""
        now = utc_now()

        if self.is_persistent:
            doc = await self._db.knowledge_bases.find_one_and_update(
                {"_id": agent_id, "entries.entry_id": entry_id},
                {"$set": {
                    "entries.$.title": title,
                    "entries.$.content": content,
                    "entries.$.updated_at": now,
                    "updated_at": now,
                }},
                return_document=True,
            )
            if not doc:
                return None
            return next(
                (KnowledgeEntry.from_dict(e) for e in doc["entries"] if e["entry_id"] == entry_id),
                None,
            )

        entries = self._memory_store.get(agent_id, [])
        for index, entry in enumerate(entries):
            if entry.entry_id == entry_id:
                updated = replace(entry, title=title, content=content, updated_at=now)
                entries[index] = updated
                return updated
        return None

    async def delete_entry(self, agent_id: str, entry_id: str) -> Optional[KnowledgeEntry]:
        """删除条目，返回被删除的条目"""
        if self.is_persistent:
            doc = await self._db.knowledge_bases.find_one_and_update(
                {"_id": agent_id, "entries.entry_id": entry_id},
                {
                    "$pull": {"entries": {"entry_id": entry_id}},
                    "$set": {"updated_at": utc_now()},
                },
                return_document=False,
            )
            if not doc:
                return None
            return next(
                (KnowledgeEntry.from_dict(e) for e in doc["entries"] if e["entry_id"] == entry_id),
                None,
            )

        entries = self._memory_store.get(agent_id, [])
        for index, entry in enumerate(entries):
            if entry.entry_id == entry_id:
                return entries.pop(index)
        return None

    async def search_entries(self, agent_id: str, query: str) -> List[KnowledgeEntry]:
        """按标题或内容搜索（忽略大小写）"""
        needle = query.lower()
        return [
            entry for entry in await self.list_entries(agent_id)
            if needle in entry.title.lower() or needle in entry.content.lower()
        ]


# =============================================================================
# Performance Repository
# =============================================================================


class PerformanceRepository(BaseRepository):
    """
    日统计桶 Repository

    apply() 以单条 upsert + 管道更新完成"创建或更新"：
    计数累加与在线均值在同一原子操作中完成，并发写同一桶不会丢更新。
    """

    def __init__(self, db: Database | None):
        super().__init__(db)
        self._memory_store: dict[str, PerformanceBucket] = {}

    async def apply(
        self,
        agent_id: str,
        day: datetime,
        delta: PerformanceDelta,
    ) -> PerformanceBucket:
        """
        将增量应用到 (agent_id, day) 桶

        average_response_time 按在线均值更新：
            new_avg = old_avg + (sample - old_avg) / new_count
        new_count 为递增后的 total_responses。
        """
        day = local_midnight(day)
        key = bucket_id(agent_id, day)
        now = utc_now()

        if self.is_persistent:
            pipeline = [
                {"$set": {
                    "agent_id": {"$literal": agent_id},
                    "date": day,
                    "total_responses": {"$add": [{"$ifNull": ["$total_responses", 0]}, delta.responses]},
                    "successful_responses": {"$add": [{"$ifNull": ["$successful_responses", 0]}, delta.successes]},
                    "failed_responses": {"$add": [{"$ifNull": ["$failed_responses", 0]}, delta.failures]},
                    "token_usage": {"$add": [{"$ifNull": ["$token_usage", 0]}, delta.token_usage]},
                    "average_response_time": {"$ifNull": ["$average_response_time", 0.0]},
                    "accuracy": delta.accuracy,
                    "updated_at": now,
                }},
            ]
            if delta.responses > 0:
                pipeline.append({"$set": {
                    "average_response_time": {"$add": [
                        "$average_response_time",
                        {"$divide": [
                            {"$subtract": [delta.response_time_seconds, "$average_response_time"]},
                            "$total_responses",
                        ]},
                    ]},
                }})

            doc = await self._db.performance.find_one_and_update(
                {"_id": key},
                pipeline,
                upsert=True,
                return_document=True,
            )
            return PerformanceBucket.from_dict(doc)

        bucket = self._memory_store.get(key)
        if bucket is None:
            bucket = PerformanceBucket(agent_id=agent_id, date=day)
            self._memory_store[key] = bucket
        bucket.total_responses += delta.responses
        bucket.successful_responses += delta.successes
        bucket.failed_responses += delta.failures
        bucket.token_usage += delta.token_usage
        bucket.accuracy = delta.accuracy
        if delta.responses > 0:
            bucket.average_response_time += (
                delta.response_time_seconds - bucket.average_response_time
            ) / bucket.total_responses
        bucket.updated_at = now
        return replace(bucket)

    async def get(self, agent_id: str, day: datetime) -> Optional[PerformanceBucket]:
        """获取某日统计桶"""
        key = bucket_id(agent_id, day)
        if self.is_persistent:
            doc = await self._db.performance.find_one({"_id": key})
            return PerformanceBucket.from_dict(doc) if doc else None
        bucket = self._memory_store.get(key)
        return replace(bucket) if bucket else None

    async def list_range(
        self,
        agent_id: str,
        start: datetime,
        end: datetime,
    ) -> List[PerformanceBucket]:
        """按日期范围列出统计桶（日期倒序）"""
        if self.is_persistent:
            cursor = (
                self._db.performance
                .find({"agent_id": agent_id, "date": {"$gte": start, "$lte": end}})
                .sort("date", -1)
            )
            docs = await cursor.to_list(length=None)
            return [PerformanceBucket.from_dict(doc) for doc in docs]

        buckets = [
            replace(b) for b in self._memory_store.values()
            if b.agent_id == agent_id and start <= b.date <= end
        ]
        buckets.sort(key=lambda b: b.date, reverse=True)
        return buckets


# =============================================================================
# Activity Repository
# =============================================================================


class ActivityRepository(BaseRepository):
    """活动审计 Repository（只追加）"""

    def __init__(self, db: Database | None):
        super().__init__(db)
        self._memory_store: list[ActivityEvent] = []

    async def insert(self, event: ActivityEvent) -> ActivityEvent:
        """追加事件"""
        if self.is_persistent:
            await self._db.activities.insert_one(event.to_dict())
        else:
            self._memory_store.append(event)
        return event

    async def list_recent(self, agent_id: str, limit: int = 20) -> List[ActivityEvent]:
        """最近的活动（时间倒序）"""
        if self.is_persistent:
            cursor = (
                self._db.activities
                .find({"agent_id": agent_id})
                .sort("timestamp", -1)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
            return [ActivityEvent.from_dict(doc) for doc in docs]

        # 逆序遍历，时间戳相同时后写入的排在前面
        events = [e for e in reversed(self._memory_store) if e.agent_id == agent_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def __len__(self) -> int:
        return len(self._memory_store)


# =============================================================================
# Repository Manager
# =============================================================================


class RepositoryManager:
    """
    Repository 管理器

    统一管理所有 Repository 实例
    """

    def __init__(self, db: Database | None):
        self._db = db
        self._credits = CreditRepository(db)
        self._agents = AgentRepository(db)
        self._knowledge = KnowledgeRepository(db)
        self._performance = PerformanceRepository(db)
        self._activities = ActivityRepository(db)

        logger.info(f"RepositoryManager initialized: persistent={self.is_persistent}")

    @property
    def credits(self) -> CreditRepository:
        """额度账户 Repository"""
        return self._credits

    @property
    def agents(self) -> AgentRepository:
        """Agent 状态 Repository"""
        return self._agents

    @property
    def knowledge(self) -> KnowledgeRepository:
        """知识库 Repository"""
        return self._knowledge

    @property
    def performance(self) -> PerformanceRepository:
        """日统计桶 Repository"""
        return self._performance

    @property
    def activities(self) -> ActivityRepository:
        """活动审计 Repository"""
        return self._activities

    @property
    def is_persistent(self) -> bool:
        """是否持久化存储"""
        return self._db is not None and self._db.is_connected


def create_repository_manager(db: Database | None) -> RepositoryManager:
    """创建 Repository 管理器"""
    return RepositoryManager(db)
