"""
数据库管理器

提供统一的数据库访问入口
5表设计：credit_accounts, agents, knowledge_bases, agent_performance, agent_activities
"""

import logging
from typing import Any

from agent_meter.models.collections import COLLECTIONS
from agent_meter.services.database.config import DB_NAME, INDEX_DEFINITIONS

logger = logging.getLogger(__name__)


class Database:
    """
    数据库管理器

    Usage:
        db = Database(mongo_client)
        await db.credit_accounts.find_one({"_id": "user-1"})
    """

    def __init__(self, mongo_client: Any | None, db_name: str = DB_NAME):
        self._client = mongo_client
        self._db_name = db_name
        self._db = mongo_client[db_name] if mongo_client is not None else None
        self._indexes_created = False

        if self._db is not None:
            logger.info(f"Database connected: {db_name}")

    @property
    def is_connected(self) -> bool:
        """是否已连接"""
        return self._db is not None

    @property
    def name(self) -> str:
        """数据库名称"""
        return self._db_name

    @property
    def client(self) -> Any:
        """获取 MongoDB 客户端"""
        return self._client

    def collection(self, name: str) -> Any:
        """
        获取集合

        Raises:
            RuntimeError: 数据库未连接
        """
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db[name]

    @property
    def credit_accounts(self) -> Any:
        """额度账户集合"""
        return self.collection(COLLECTIONS.CREDIT_ACCOUNTS)

    @property
    def agents(self) -> Any:
        """Agent 状态集合"""
        return self.collection(COLLECTIONS.AGENTS)

    @property
    def knowledge_bases(self) -> Any:
        """知识库集合"""
        return self.collection(COLLECTIONS.KNOWLEDGE_BASES)

    @property
    def performance(self) -> Any:
        """日统计桶集合"""
        return self.collection(COLLECTIONS.PERFORMANCE)

    @property
    def activities(self) -> Any:
        """活动审计集合"""
        return self.collection(COLLECTIONS.ACTIVITIES)

    async def ensure_indexes(self) -> None:
        """
        确保所有索引已创建

        在服务启动时调用，幂等操作
        """
        if self._db is None:
            logger.warning("Database not connected, skipping index creation")
            return

        if self._indexes_created:
            logger.debug("Indexes already created, skipping")
            return

        created_count = 0
        existing_count = 0
        error_count = 0

        for collection_name, index_name, fields, unique, options in INDEX_DEFINITIONS:
            try:
                await self._db[collection_name].create_index(
                    fields, name=index_name, unique=unique, **options
                )
                logger.info(f"Index created: {collection_name}.{index_name}")
                created_count += 1
            except Exception as e:
                error_msg = str(e).lower()
                if "already exists" in error_msg or "indexoptionsconflict" in error_msg:
                    logger.debug(f"Index already exists: {collection_name}.{index_name}")
                    existing_count += 1
                else:
                    logger.warning(f"Failed to create index {collection_name}.{index_name}: {e}")
                    error_count += 1

        self._indexes_created = True
        logger.info(
            f"Database indexes creation completed - "
            f"created: {created_count}, existing: {existing_count}, errors: {error_count}"
        )


def get_database(mongo_client: Any | None, db_name: str = DB_NAME) -> Database | None:
    """
    获取数据库实例

    Returns:
        Database 实例，未连接时返回 None
    """
    if mongo_client is None:
        return None
    return Database(mongo_client, db_name)
