"""Provider 抽象接口。

上层（api.service / api.streaming / api.embeddings）不直接依赖具体厂商的 HTTP 接口，
而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAIClient、GoogleClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult / 向量。
- 不支持的能力必须抛出 CapabilityNotSupportedError，而不是让调用方崩在 AttributeError 上。

另外提供上游 HTTP 状态码 -> 异常类型的统一映射，保证错误分类在抛出点完成。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from ollama_proxy.domain.exceptions import (
    ApiError,
    AuthError,
    CapabilityNotSupportedError,
    InvalidUpstreamResponseError,
    MissingCredentialsError,
    NetworkError,
    RateLimitError,
    UpstreamUnavailableError,
)
from ollama_proxy.domain.models import ChatRequest, ChatResult, ChatStreamChunk, ModelConfig


class ProviderClient(Protocol):
    """Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志与错误信息。
    - supports_embeddings: 是否支持向量生成。
    - generate(config, req): 一次非流式调用。
    - stream(config, req): 流式调用，逐步产出增量。
    - embed(config, text): 单条文本的向量。
    """

    name: str
    supports_embeddings: bool

    async def generate(self, config: ModelConfig, req: ChatRequest) -> ChatResult:
        ...

    def stream(self, config: ModelConfig, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        ...

    async def embed(self, config: ModelConfig, text: str) -> List[float]:
        ...

    def require_credentials(self) -> None:
        ...


class BaseProviderClient:
    """Provider 公共实现：凭证检查、HTTP 调用与不支持能力的快速失败。

    子类只需实现自己支持的能力；未覆盖的方法会抛出 CapabilityNotSupportedError。
    """

    name = "base"
    label = "Provider"
    api_key_env = "API_KEY"
    supports_embeddings = False

    def __init__(self, api_key: Optional[str], base_url: str, timeout: float):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def require_credentials(self) -> None:
        if not self._api_key:
            raise MissingCredentialsError(
                code="MISSING_API_KEY",
                message=f"{self.label} API key ({self.api_key_env}) is required for {self.label} models",
                provider=self.name,
            )

    # ---- 默认：不支持 ----

    async def generate(self, config: ModelConfig, req: ChatRequest) -> ChatResult:
        raise CapabilityNotSupportedError(
            code="CAPABILITY_NOT_SUPPORTED",
            message=f"Text generation is not supported by provider {self.name}",
            provider=self.name,
        )

    def stream(self, config: ModelConfig, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        raise CapabilityNotSupportedError(
            code="CAPABILITY_NOT_SUPPORTED",
            message=f"Streaming generation is not supported by provider {self.name}",
            provider=self.name,
        )

    async def embed(self, config: ModelConfig, text: str) -> List[float]:
        raise CapabilityNotSupportedError(
            code="CAPABILITY_NOT_SUPPORTED",
            message=f"Embedding models are not supported for provider {self.name}",
            provider=self.name,
        )

    # ---- HTTP 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST 一次 JSON 请求并返回解析后的响应体。"""

        try:
            async with httpx.AsyncClient(timeout=self._timeout, trust_env=False) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            # 超时单独归类，便于日志区分
            raise UpstreamUnavailableError(code="TIMEOUT", message=f"{self.label} request timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        raise_for_upstream_status(self.label, self.api_key_env, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned a non-JSON response",
            )
        if not isinstance(data, dict):
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned an unexpected response body",
            )
        return data

    async def _stream_sse(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """POST 一次流式请求，逐条产出 SSE data 中的 JSON 对象。

        生成器被提前关闭（客户端断开）时，async with 负责关闭上游连接。
        """

        try:
            async with httpx.AsyncClient(timeout=self._timeout, trust_env=False) as client:
                async with client.stream("POST", url, json=payload, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise_for_upstream_status(self.label, self.api_key_env, resp.status_code, body)
                    async for data in aiter_sse_payloads(resp.aiter_lines()):
                        yield data
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(code="TIMEOUT", message=f"{self.label} request timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))


def raise_for_upstream_status(label: str, api_key_env: str, status_code: int, body: str) -> None:
    """按上游状态码抛出带分类标签的异常；2xx/3xx 直接返回。"""

    if status_code < 400:
        return
    if status_code in (401, 403):
        raise AuthError(
            code="UPSTREAM_AUTH",
            message=f"{label} API authentication failed. Please check your {api_key_env}.",
            http_status=status_code,
            upstream_body=body,
        )
    if status_code == 429:
        raise RateLimitError(
            code="RATE_LIMIT",
            message=f"{label} API rate limit exceeded",
            http_status=status_code,
            upstream_body=body,
        )
    if status_code == 408 or status_code >= 500:
        raise UpstreamUnavailableError(
            code="UPSTREAM_UNAVAILABLE",
            message=f"{label} API unavailable ({status_code})",
            http_status=status_code,
            upstream_body=body,
        )
    raise ApiError(
        code="API_ERROR",
        message=f"{label} API error ({status_code}): {body}",
        http_status=status_code,
    )


async def aiter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    """把 SSE 的 data 行解析为 JSON 对象；忽略空行、注释行与 [DONE]。"""

    async for line in lines:
        if not line:
            continue
        data_str = line.strip()
        if data_str.startswith(":"):
            continue
        if data_str.startswith("data:"):
            data_str = data_str[5:].strip()
        if not data_str or data_str == "[DONE]":
            continue
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload
