"""
测试公共夹具
"""

import pytest

from agent_meter.services.backends import BackendError
from agent_meter.services.repositories import RepositoryManager

from fakes import FakeBackend


@pytest.fixture
def repos() -> RepositoryManager:
    """内存模式 RepositoryManager"""
    return RepositoryManager(None)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def failing_backend() -> FakeBackend:
    return FakeBackend(
        BackendError("quota exceeded", payload={"code": 429, "status": "RESOURCE_EXHAUSTED"})
    )
