"""
生成后端

- BackendRequest: 后端无关的单次生成请求（contents / systemInstruction / generationConfig）
- GenerationBackend: 后端抽象，返回原始响应 JSON，失败时抛 BackendError
- GeminiBackend: Gemini generateContent 接口（httpx，复用连接）
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class BackendError(Exception):
    """后端调用失败，payload 为后端返回的错误内容（或异常描述）"""

    def __init__(self, message: str, payload: Any = None, status_code: int | None = None):
        self.message = message
        self.payload = payload if payload is not None else message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class BackendRequest:
    """单次生成请求"""
    model_id: str
    contents: list[dict[str, Any]]
    generation_config: dict[str, Any] = field(default_factory=dict)
    system_instruction: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Gemini generateContent 请求体"""
        payload: dict[str, Any] = {
            "contents": self.contents,
            "generationConfig": self.generation_config,
        }
        if self.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return payload


class GenerationBackend(ABC):
    """生成后端抽象"""

    @abstractmethod
    async def generate(self, request: BackendRequest) -> dict[str, Any]:
        """
        执行一次生成

        Raises:
            BackendError: 传输失败或后端返回错误
        """

    async def aclose(self) -> None:
        """释放连接"""


class GeminiBackend(GenerationBackend):
    """
    Gemini 后端

    Usage:
        backend = GeminiBackend(api_key="...")
        data = await backend.generate(request)
        await backend.aclose()
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def endpoint(self, model_id: str) -> str:
        return f"{self._base_url}/models/{model_id}:generateContent"

    async def generate(self, request: BackendRequest) -> dict[str, Any]:
        if not self._api_key:
            raise BackendError("GEMINI_API_KEY not set")

        url = self.endpoint(request.model_id)
        logger.debug(f"Gemini REQ: model={request.model_id}, turns={len(request.contents)}")

        try:
            resp = await self._client.post(
                url,
                json=request.to_payload(),
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self._api_key,
                },
            )
        except httpx.HTTPError as e:
            raise BackendError(f"Gemini request failed: {e}") from e

        if resp.status_code != 200:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text[:500]
            error = body.get("error", body) if isinstance(body, dict) else body
            logger.warning(f"Gemini RESP: status={resp.status_code}, error={error}")
            raise BackendError(
                f"Gemini returned HTTP {resp.status_code}",
                payload=error,
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(f"Gemini returned invalid JSON: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
