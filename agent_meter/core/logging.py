"""
日志模块

在标准 logging 之上注入请求上下文：
- correlation id（每次流水线调用一个）
- agent_id / caller_id
- 当前操作作用域，如 agent_request

使用示例:
    logger = get_logger(__name__)

    with LogContext(agent_id="agent-1", caller_id="user-1"):
        with LogContext.operation("agent_request", model_tier="small"):
            logger.info("Dispatching")

    # 2026-03-10 12:00:00,123 [INFO    ] [R1a2b3c4d5e6f] [agent-1/user-1:agent_request] Dispatching
"""

from __future__ import annotations
import asyncio
import contextvars
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from agent_meter.core.correlation import correlator

# 上下文属性与作用域栈（每个 asyncio 任务独立）
_attributes: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_attributes", default={}
)
_scopes: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "log_scopes", default=()
)

# 上下文中 agent / caller 标识的最大显示长度
_ID_DISPLAY_LENGTH = 20


class LogContext:
    """
    日志上下文

    作为上下文管理器使用时附加属性；scope / operation 额外压入命名作用域。
    """

    def __init__(self, **attributes: Any):
        self._attributes = attributes
        self._token: contextvars.Token | None = None

    def __enter__(self) -> "LogContext":
        self._token = _attributes.set({**_attributes.get(), **self._attributes})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _attributes.reset(self._token)
            self._token = None

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return dict(_attributes.get())

    @classmethod
    @contextmanager
    def scope(cls, name: str, **attributes: Any) -> Iterator[None]:
        scope_token = _scopes.set(_scopes.get() + (name,))
        attr_token = _attributes.set({**_attributes.get(), **attributes})
        try:
            yield
        finally:
            _attributes.reset(attr_token)
            _scopes.reset(scope_token)

    @classmethod
    @contextmanager
    def operation(cls, name: str, **attributes: Any) -> Iterator[None]:
        """
        计时作用域

        正常结束记 INFO；取消记 WARNING；异常记 ERROR 后原样抛出。
        attributes 同时进入上下文和结束日志。
        """
        logger = logging.getLogger("agent_meter.operation")
        detail = "".join(f" {k}={v}" for k, v in attributes.items())
        started = time.perf_counter()

        with cls.scope(name, **attributes):
            try:
                yield
            except asyncio.CancelledError:
                logger.warning(f"{name} cancelled after {time.perf_counter() - started:.3f}s{detail}")
                raise
            except Exception as e:
                logger.error(
                    f"{name} failed after {time.perf_counter() - started:.3f}s{detail}: "
                    f"{type(e).__name__}: {e}"
                )
                raise
            logger.info(f"{name} completed in {time.perf_counter() - started:.3f}s{detail}")


class ContextFormatter(logging.Formatter):
    """
    上下文感知的格式化器，提供 %(ctx)s 字段

        [correlation] [agent/caller:scope]
    """

    def format(self, record: logging.LogRecord) -> str:
        cid = correlator.correlation_id
        parts = [f"[{cid if cid and cid != '-' else '*'}]"]

        attributes = _attributes.get()
        ids = "/".join(
            _shorten(str(attributes[key]))
            for key in ("agent_id", "caller_id")
            if attributes.get(key)
        )
        scopes = _scopes.get()
        if ids and scopes:
            parts.append(f"[{ids}:{scopes[-1]}]")
        elif ids:
            parts.append(f"[{ids}]")

        record.ctx = " ".join(parts)
        return super().format(record)


def _shorten(value: str) -> str:
    if len(value) <= _ID_DISPLAY_LENGTH:
        return value
    return value[:_ID_DISPLAY_LENGTH - 3] + "..."


_configured = False


def setup_logging(
    log_dir: str | None = None,
    log_level: str = "INFO",
    console: bool = True,
    file: bool = False,
) -> str | None:
    """
    配置根日志器（只生效一次）

    Args:
        log_dir: 文件日志目录，默认 LOG_DIR 或 "logs"
        log_level: 日志级别，LOG_LEVEL 环境变量优先
        console: 输出到 stderr
        file: 输出到 {log_dir}/{日期}/{时间}.log

    Returns:
        文件日志路径；未启用文件输出时为 None
    """
    global _configured
    if _configured:
        return None

    level = getattr(logging, os.getenv("LOG_LEVEL", log_level).upper(), logging.INFO)
    formatter = ContextFormatter("%(asctime)s [%(levelname)-8s] %(ctx)s %(message)s")

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())

    log_file_path = None
    if file:
        now = datetime.now()
        directory = Path(log_dir or os.getenv("LOG_DIR", "logs")) / now.strftime("%Y-%m-%d")
        directory.mkdir(parents=True, exist_ok=True)
        log_file_path = str(directory / f"{now.strftime('%H-%M-%S')}.log")
        handlers.append(logging.FileHandler(log_file_path, encoding="utf-8"))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    _configured = True
    return log_file_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "LogContext",
    "ContextFormatter",
    "setup_logging",
    "get_logger",
]
