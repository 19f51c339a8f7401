"""
配置管理模块

支持从环境变量、.env 文件加载配置
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from agent_meter.models import ModelTier


class DatabaseConfig(BaseModel):
    """数据库配置"""

    # 未配置时使用内存模式
    mongodb_uri: str | None = Field(default=None)
    mongodb_db_name: str = Field(default="agent_meter")


class BackendConfig(BaseModel):
    """生成后端配置"""

    gemini_api_key: str | None = Field(default=None)
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")

    # 档位模型映射
    small_model: str = Field(default="gemini-2.0-flash", description="small 档（快速、低成本）")
    large_model: str = Field(default="gemini-1.5-pro", description="large 档（高质量）")
    premium_model: str = Field(default="gemini-1.5-pro", description="premium 档")

    request_timeout: float = Field(default=60.0, description="单次生成超时(秒)")

    def tier_models(self) -> dict[ModelTier, str]:
        return {
            ModelTier.SMALL: self.small_model,
            ModelTier.LARGE: self.large_model,
            ModelTier.PREMIUM: self.premium_model,
        }


class MeteringConfig(BaseModel):
    """计费配置"""

    default_total_credits: int = Field(default=100, ge=0, description="新账户默认额度")


class AppConfig(BaseModel):
    """应用配置"""

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="logs")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    metering: MeteringConfig = Field(default_factory=MeteringConfig)


def load_config(env_file: str | Path | None = None) -> AppConfig:
    """
    加载配置

    优先级：
    1. 环境变量
    2. .env 文件
    3. 默认值

    Args:
        env_file: .env 文件路径，默认为当前目录的 .env

    Example:
        ```python
        from agent_meter.config import load_config

        config = load_config()
        print(config.backend.small_model)
        print(config.database.mongodb_uri)
        ```
    """
    if env_file is None:
        env_file = Path.cwd() / ".env"

    if Path(env_file).exists():
        load_dotenv(env_file)

    return AppConfig(
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),

        database=DatabaseConfig(
            mongodb_uri=os.getenv("MONGODB_URI") or None,
            mongodb_db_name=os.getenv("MONGODB_DB_NAME", "agent_meter"),
        ),

        backend=BackendConfig(
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_base_url=os.getenv(
                "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
            ),
            small_model=os.getenv("SMALL_MODEL", "gemini-2.0-flash"),
            large_model=os.getenv("LARGE_MODEL", "gemini-1.5-pro"),
            premium_model=os.getenv("PREMIUM_MODEL", "gemini-1.5-pro"),
            request_timeout=float(os.getenv("BACKEND_REQUEST_TIMEOUT", "60")),
        ),

        metering=MeteringConfig(
            default_total_credits=int(os.getenv("DEFAULT_TOTAL_CREDITS", "100")),
        ),
    )
