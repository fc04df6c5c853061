"""OpenAI 兼容 Provider 适配器（OpenAI / OpenRouter）。

两者都使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/stream。
OpenRouter 与部分推理模型会在 message/delta 中额外返回 reasoning
（或 reasoning_content），这里统一解析到 ChatResult.reasoning。
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from ollama_proxy.domain.exceptions import InvalidUpstreamResponseError
from ollama_proxy.domain.models import ChatMessage, ChatRequest, ChatResult, ChatStreamChunk, ModelConfig
from ollama_proxy.providers.base import BaseProviderClient, raise_for_upstream_status


class OpenAIClient(BaseProviderClient):
    """OpenAI Provider 客户端实现。"""

    name = "openai"
    label = "OpenAI"
    api_key_env = "OPENAI_API_KEY"
    supports_embeddings = True

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.openai.com/v1", timeout: float = 120.0):
        super().__init__(api_key, base_url, timeout)

    # ---- 非流式 ----

    async def generate(self, config: ModelConfig, req: ChatRequest) -> ChatResult:
        self.require_credentials()
        payload = self._build_payload(config, req, stream=False)
        data = await self._post_json(f"{self._base_url}/chat/completions", payload)
        return self._parse_response(data)

    # ---- 流式 ----

    async def stream(self, config: ModelConfig, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        self.require_credentials()
        payload = self._build_payload(config, req, stream=True)
        async for data in self._stream_sse(f"{self._base_url}/chat/completions", payload):
            chunk = self._parse_stream_chunk(data)
            if chunk is not None:
                yield chunk

    # ---- 向量 ----

    async def embed(self, config: ModelConfig, text: str) -> List[float]:
        self.require_credentials()
        data = await self._post_json(
            f"{self._base_url}/embeddings",
            {"model": config.upstream_model, "input": text},
        )
        items = data.get("data") or []
        if not items or not isinstance(items[0], dict):
            return []
        return items[0].get("embedding") or []

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, config: ModelConfig, req: ChatRequest, stream: bool) -> dict:
        payload: Dict[str, Any] = {
            "model": config.upstream_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": stream,
        }
        # 未设置的参数不下发，交给上游使用自己的默认值
        if req.options.temperature is not None:
            payload["temperature"] = req.options.temperature
        if req.options.max_tokens is not None:
            payload["max_tokens"] = req.options.max_tokens
        if req.options.top_p is not None:
            payload["top_p"] = req.options.top_p
        return payload

    def _parse_response(self, data: dict) -> ChatResult:
        choice = self._first_choice(data)
        if choice is None:
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned no choices",
            )
        msg = choice.get("message") or {}
        if not isinstance(msg, dict):
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned a malformed message",
            )
        # 部分兼容网关（如带工具循环的代理）会额外返回完整 transcript
        transcript = data.get("messages")
        return ChatResult(
            text=msg.get("content") or "",
            reasoning=self._reasoning_of(msg),
            messages=transcript_from_payload(transcript) if isinstance(transcript, list) else None,
            raw=data,
        )

    def _parse_stream_chunk(self, data: dict) -> Optional[ChatStreamChunk]:
        error = data.get("error")
        if error:
            # OpenRouter 在已建立的流中以 error 对象报告上游失败
            status = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise_for_upstream_status(
                self.label,
                self.api_key_env,
                status if isinstance(status, int) and status >= 400 else 502,
                message or "",
            )
        if not data.get("choices"):
            # 只携带 usage 的收尾分片
            return None
        choice = self._first_choice(data)
        delta = (choice.get("delta") or {}) if choice is not None else None
        if not isinstance(delta, dict):
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned a malformed stream chunk",
            )
        content = delta.get("content")
        return ChatStreamChunk(
            content=content if isinstance(content, str) else "",
            reasoning=self._reasoning_of(delta),
            finish_reason=choice.get("finish_reason"),
            raw=data,
        )

    @staticmethod
    def _first_choice(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        return choices[0]

    @staticmethod
    def _reasoning_of(payload: Dict[str, Any]) -> Optional[str]:
        reasoning = payload.get("reasoning") or payload.get("reasoning_content")
        return reasoning if isinstance(reasoning, str) and reasoning else None


class OpenRouterClient(OpenAIClient):
    """OpenRouter：OpenAI 兼容接口，不提供 embedding。"""

    name = "openrouter"
    label = "OpenRouter"
    api_key_env = "OPENROUTER_API_KEY"
    supports_embeddings = False

    def __init__(self, api_key: Optional[str], base_url: str = "https://openrouter.ai/api/v1", timeout: float = 120.0):
        super().__init__(api_key, base_url, timeout)

    async def embed(self, config: ModelConfig, text: str) -> List[float]:
        return await BaseProviderClient.embed(self, config, text)

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["X-Title"] = "ollama-proxy"
        return headers


def transcript_from_payload(messages: List[Dict[str, Any]]) -> List[ChatMessage]:
    """把上游返回的 messages 数组转换为 ChatMessage 列表，忽略无法识别的条目。"""

    transcript: List[ChatMessage] = []
    for item in messages:
        if not isinstance(item, dict):
            continue
        role = "assistant" if item.get("role") == "assistant" else "user"
        content = item.get("content") or item.get("text") or ""
        if not isinstance(content, str):
            continue
        transcript.append(ChatMessage(role=role, content=content, reasoning=OpenAIClient._reasoning_of(item)))
    return transcript
