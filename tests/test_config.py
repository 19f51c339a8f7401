"""
配置与应用上下文测试
"""

import pytest

from agent_meter.config import AppConfig, BackendConfig, MeteringConfig, load_config
from agent_meter.container import AppContext
from agent_meter.models import AgentConfig, AgentStatus, ModelTier

from fakes import FakeBackend


CONFIG_ENV_VARS = [
    "MONGODB_URI",
    "MONGODB_DB_NAME",
    "GEMINI_API_KEY",
    "SMALL_MODEL",
    "PREMIUM_MODEL",
    "DEFAULT_TOTAL_CREDITS",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # 先 setenv 再 delenv，teardown 时连同 .env 写入的值一起还原
    for name in CONFIG_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestLoadConfig:
    """配置加载"""

    def test_defaults(self, clean_env):
        config = load_config()

        assert config.database.mongodb_uri is None
        assert config.backend.small_model == "gemini-2.0-flash"
        assert config.backend.premium_model == "gemini-1.5-pro"
        assert config.metering.default_total_credits == 100

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("PREMIUM_MODEL", "gemini-ultra")
        clean_env.setenv("DEFAULT_TOTAL_CREDITS", "500")

        config = load_config()

        assert config.backend.tier_models()[ModelTier.PREMIUM] == "gemini-ultra"
        assert config.metering.default_total_credits == 500

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "test.env"
        env_file.write_text("GEMINI_API_KEY=from-file\nSMALL_MODEL=gemini-lite\n")

        config = load_config(env_file)

        assert config.backend.gemini_api_key == "from-file"
        assert config.backend.small_model == "gemini-lite"


class TestAppContext:
    """应用上下文（内存模式）"""

    @pytest.mark.asyncio
    async def test_create_and_process(self):
        backend = FakeBackend()
        config = AppConfig(backend=BackendConfig(small_model="gemini-2.0-flash"))

        ctx = await AppContext.create(config, backend=backend)
        try:
            assert ctx.repository_manager.is_persistent is False

            agent = AgentConfig(id="agent-1", owner_id="owner-1", status=AgentStatus.ACTIVE)
            result = await ctx.pipeline.process(agent, "hi", caller_id="user-1")

            assert result.success is True
            assert (await ctx.ledger.get_account("user-1")).used_credits == 1
        finally:
            await ctx.shutdown()

        assert backend.closed is True

    @pytest.mark.asyncio
    async def test_contexts_are_independent(self):
        """每次 create 使用各自的配置、后端和账本"""
        first_backend, second_backend = FakeBackend(), FakeBackend()
        first = await AppContext.create(
            AppConfig(metering=MeteringConfig(default_total_credits=5)), backend=first_backend,
        )
        second = await AppContext.create(
            AppConfig(metering=MeteringConfig(default_total_credits=50)), backend=second_backend,
        )
        try:
            assert first is not second
            assert second.backend is second_backend
            assert (await first.ledger.get_account("user-1")).total_credits == 5
            assert (await second.ledger.get_account("user-1")).total_credits == 50
        finally:
            await first.shutdown()
            await second.shutdown()
