"""
生成调度

职责：
- 模型档位 → 后端模型 ID（可由配置覆盖）
- 按 BackendProfile 能力构造请求（是否支持独立的 system 角色）
- 单次后端调用（不重试），本地计时
- 响应统一为 GenerationResult；除任务取消外不向外抛异常
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from agent_meter.models import (
    GenerationParams,
    GenerationResult,
    HistoryRole,
    HistoryTurn,
    ModelTier,
)
from agent_meter.services.backends import BackendError, BackendRequest, GenerationBackend

logger = logging.getLogger(__name__)


# =============================================================================
# 后端能力描述
# =============================================================================


@dataclass(frozen=True)
class BackendProfile:
    """后端模型能力"""
    model_id: str
    supports_system_role: bool = True


DEFAULT_TIER_MODELS: dict[ModelTier, str] = {
    ModelTier.SMALL: "gemini-2.0-flash",
    ModelTier.LARGE: "gemini-1.5-pro",
    ModelTier.PREMIUM: "gemini-1.5-pro",
}

KNOWN_PROFILES: dict[str, BackendProfile] = {
    "gemini-2.0-flash": BackendProfile("gemini-2.0-flash", supports_system_role=False),
    "gemini-1.5-pro": BackendProfile("gemini-1.5-pro", supports_system_role=True),
}


def user_text(system_prompt: str, query: str) -> str:
    """不支持 system 角色时，把 system prompt 拼到用户输入前"""
    if not system_prompt:
        return query
    return f"{system_prompt}\n\nUser Query: {query}"


def build_request(
    profile: BackendProfile,
    system_prompt: str,
    query: str,
    history: Sequence[HistoryTurn],
    params: GenerationParams,
) -> BackendRequest:
    """
    构造后端请求

    历史轮次按原顺序（最旧在前）原样传递，当前用户输入放在最后。
    """
    contents = [
        {"role": turn.role.value, "parts": [{"text": turn.text}]}
        for turn in history
    ]

    if profile.supports_system_role:
        text = query
        system_instruction = system_prompt or None
    else:
        text = user_text(system_prompt, query)
        system_instruction = None

    contents.append({"role": HistoryRole.USER.value, "parts": [{"text": text}]})

    return BackendRequest(
        model_id=profile.model_id,
        contents=contents,
        generation_config={
            "temperature": params.temperature,
            "maxOutputTokens": params.max_tokens,
            "topK": params.top_k,
        },
        system_instruction=system_instruction,
    )


def _token_usage(data: Mapping[str, Any]) -> int:
    usage = data.get("usageMetadata") or {}
    prompt = usage.get("promptTokenCount") or 0
    completion = usage.get("candidatesTokenCount") or 0
    if prompt or completion:
        return int(prompt) + int(completion)
    return int(usage.get("totalTokenCount") or 0)


def normalize(data: Any, model_id: str, elapsed: float) -> GenerationResult:
    """
    原始响应 → GenerationResult

    没有候选文本的响应视为失败。
    """
    if not isinstance(data, Mapping):
        return GenerationResult(
            success=False,
            model_used=model_id,
            response_time_seconds=elapsed,
            error_detail={"reason": "malformed_response"},
        )

    candidates = data.get("candidates") or []
    first = candidates[0] if candidates and isinstance(candidates[0], Mapping) else {}
    parts = (first.get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if isinstance(p, Mapping))

    if not text:
        detail: dict[str, Any] = {"reason": "empty_response"}
        if first.get("finishReason"):
            detail["finish_reason"] = first["finishReason"]
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            detail["block_reason"] = feedback["blockReason"]
        return GenerationResult(
            success=False,
            token_usage=_token_usage(data),
            model_used=model_id,
            response_time_seconds=elapsed,
            error_detail=detail,
        )

    return GenerationResult(
        success=True,
        text=text,
        token_usage=_token_usage(data),
        model_used=model_id,
        response_time_seconds=elapsed,
    )


# =============================================================================
# GenerationDispatcher
# =============================================================================


class GenerationDispatcher:
    """
    生成调度器

    Usage:
        dispatcher = GenerationDispatcher(GeminiBackend(api_key))
        result = await dispatcher.dispatch(
            ModelTier.SMALL, system_prompt, "hello", history=[], params=GenerationParams(),
        )
    """

    def __init__(
        self,
        backend: GenerationBackend,
        tier_models: Optional[Mapping[ModelTier, str]] = None,
        profiles: Optional[Mapping[str, BackendProfile]] = None,
    ):
        self._backend = backend
        self._tier_models = {**DEFAULT_TIER_MODELS, **(tier_models or {})}
        self._profiles = {**KNOWN_PROFILES, **(profiles or {})}

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    def model_for(self, tier: ModelTier | str) -> str:
        """档位对应的后端模型 ID"""
        return self._tier_models[ModelTier(tier)]

    def profile_for(self, model_id: str) -> BackendProfile:
        """模型能力；未登记的模型按支持 system 角色处理"""
        return self._profiles.get(model_id) or BackendProfile(model_id, supports_system_role=True)

    async def dispatch(
        self,
        model_tier: ModelTier | str,
        system_prompt: str,
        query: str,
        history: Sequence[HistoryTurn] = (),
        params: GenerationParams | None = None,
    ) -> GenerationResult:
        """
        执行一次生成

        后端失败、响应异常都以 success=False 返回；只有任务取消会向外传播。
        """
        model_id = self.model_for(model_tier)
        profile = self.profile_for(model_id)
        request = build_request(profile, system_prompt, query, history, params or GenerationParams())

        logger.info(
            f"Dispatching generation: tier={ModelTier(model_tier).value}, model={model_id}, "
            f"system_role={profile.supports_system_role}, history={len(history)}"
        )

        t_start = time.perf_counter()
        try:
            data = await self._backend.generate(request)
        except asyncio.CancelledError:
            raise
        except BackendError as e:
            elapsed = time.perf_counter() - t_start
            logger.warning(f"Generation failed after {elapsed:.3f}s: {e.message}")
            return GenerationResult(
                success=False,
                model_used=model_id,
                response_time_seconds=elapsed,
                error_detail=e.payload,
            )
        except Exception as e:
            elapsed = time.perf_counter() - t_start
            logger.error(f"Unexpected backend error after {elapsed:.3f}s: {e}", exc_info=True)
            return GenerationResult(
                success=False,
                model_used=model_id,
                response_time_seconds=elapsed,
                error_detail=str(e),
            )

        result = normalize(data, model_id, time.perf_counter() - t_start)
        if result.success:
            logger.info(
                f"Generation completed: model={model_id}, tokens={result.token_usage}, "
                f"time={result.response_time_seconds:.3f}s"
            )
        else:
            logger.warning(f"Generation returned no text: {result.error_detail}")
        return result
