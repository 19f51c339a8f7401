"""
Correlation ID 模块

为每次 Agent 请求提供请求追踪 ID：
- ContextualCorrelator: 上下文管理器，支持作用域嵌套
- 日志集成: 自动注入 correlation_id 到日志

使用示例:
    with correlator.scope(generate_request_id()):
        logger.info("Processing...")  # 日志自动包含 correlation_id
"""

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Generator, NewType

# ID 长度配置
ID_SIZE: int = 12

UniqueId = NewType("UniqueId", str)


# =============================================================================
# Correlation ID 上下文变量
# =============================================================================

# 协程安全
_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
_correlation_properties: contextvars.ContextVar[dict] = contextvars.ContextVar(
    "correlation_properties", default={}
)


def generate_id() -> UniqueId:
    """生成唯一 ID"""
    return UniqueId(uuid.uuid4().hex[:ID_SIZE])


def generate_request_id() -> str:
    """生成唯一请求 ID"""
    return f"R{generate_id()}"


# =============================================================================
# ContextualCorrelator
# =============================================================================


class ContextualCorrelator:
    """
    上下文关联器

    支持作用域嵌套，自动管理 correlation_id 的生命周期。

    使用示例:
        with correlator.scope("R1234xyz"):
            print(correlator.correlation_id)  # R1234xyz

            with correlator.scope("dispatch"):
                print(correlator.correlation_id)  # R1234xyz::dispatch
    """

    @contextmanager
    def scope(
        self,
        scope_id: str,
        properties: dict[str, Any] | None = None
    ) -> Generator[str, None, None]:
        """
        进入新的作用域

        Args:
            scope_id: 作用域标识符
            properties: 附加属性（如 agent_id, caller_id 等）

        Yields:
            当前完整的 correlation_id
        """
        current = _correlation_id.get()
        new_scope = f"{current}::{scope_id}" if current else scope_id

        current_props = _correlation_properties.get().copy()
        if properties:
            current_props.update(properties)

        token_id = _correlation_id.set(new_scope)
        token_props = _correlation_properties.set(current_props)

        try:
            yield new_scope
        finally:
            _correlation_id.reset(token_id)
            _correlation_properties.reset(token_props)

    @property
    def correlation_id(self) -> str:
        """获取当前 correlation_id"""
        return _correlation_id.get() or "-"

    @property
    def properties(self) -> dict[str, Any]:
        """获取当前属性"""
        return _correlation_properties.get().copy()

    def get_property(self, key: str, default: Any = None) -> Any:
        """获取指定属性"""
        return _correlation_properties.get().get(key, default)


correlator = ContextualCorrelator()

