"""Google Gemini Provider 适配器。

使用 Generative Language REST API：
- 非流式: POST {base_url}/models/{model}:generateContent
- 流式:   POST {base_url}/models/{model}:streamGenerateContent?alt=sse
- 向量:   POST {base_url}/models/{model}:embedContent
- 认证:   x-goog-api-key: <api_key>

Gemini 的角色只有 user/model 两种；思考内容以 thought=true 的 part 返回，
这里解析到 reasoning，不混入正文。
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ollama_proxy.domain.exceptions import InvalidUpstreamResponseError, ValidationError
from ollama_proxy.domain.models import ChatRequest, ChatResult, ChatStreamChunk, ModelConfig
from ollama_proxy.providers.base import BaseProviderClient


# 已知的 Google embedding 模型，仅用于加载注册表时给出提示
KNOWN_EMBEDDING_MODELS = (
    "text-embedding-004",
    "text-embedding-001",
    "textembedding-gecko",
    "textembedding-gecko-multilingual",
    "gemini-embedding-001",
)


class GoogleClient(BaseProviderClient):
    """Google Gemini Provider 客户端实现。"""

    name = "google"
    label = "Google"
    api_key_env = "GEMINI_API_KEY"
    supports_embeddings = True

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
    ):
        super().__init__(api_key, base_url, timeout)

    async def generate(self, config: ModelConfig, req: ChatRequest) -> ChatResult:
        self.require_credentials()
        url = f"{self._base_url}/{self._model_path(config)}:generateContent"
        data = await self._post_json(url, self._build_payload(req))
        text, reasoning = self._split_parts(self._first_candidate(data))
        return ChatResult(text=text, reasoning=reasoning, raw=data)

    async def stream(self, config: ModelConfig, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        self.require_credentials()
        url = f"{self._base_url}/{self._model_path(config)}:streamGenerateContent?alt=sse"
        async for data in self._stream_sse(url, self._build_payload(req)):
            candidates = data.get("candidates") or []
            if not candidates:
                continue
            candidate = self._require_mapping(candidates[0] if isinstance(candidates, list) else None)
            text, reasoning = self._split_parts(candidate)
            yield ChatStreamChunk(
                content=text,
                reasoning=reasoning,
                finish_reason=candidate.get("finishReason"),
                raw=data,
            )

    async def embed(self, config: ModelConfig, text: str) -> List[float]:
        self.require_credentials()
        model_path = self._model_path(config)
        data = await self._post_json(
            f"{self._base_url}/{model_path}:embedContent",
            {"model": model_path, "content": {"parts": [{"text": text}]}},
        )
        embedding = data.get("embedding") or {}
        if not isinstance(embedding, dict):
            return []
        return embedding.get("values") or []

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key or "",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _model_path(config: ModelConfig) -> str:
        model = config.upstream_model
        return model if model.startswith("models/") else f"models/{model}"

    @staticmethod
    def _build_payload(req: ChatRequest) -> Dict[str, Any]:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in req.messages
        ]
        generation_config: Dict[str, Any] = {}
        if req.options.temperature is not None:
            generation_config["temperature"] = req.options.temperature
        if req.options.max_tokens is not None:
            generation_config["maxOutputTokens"] = req.options.max_tokens
        if req.options.top_p is not None:
            generation_config["topP"] = req.options.top_p
        payload: Dict[str, Any] = {"contents": contents}
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    def _first_candidate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        candidates = data.get("candidates") or []
        if candidates:
            return self._require_mapping(candidates[0] if isinstance(candidates, list) else None)
        feedback = data.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise ValidationError(
                code="PROMPT_BLOCKED",
                message=f"Prompt blocked by Google: {feedback['blockReason']}",
            )
        raise InvalidUpstreamResponseError(
            code="INVALID_UPSTREAM_RESPONSE",
            message=f"{self.label} returned no candidates",
        )

    def _require_mapping(self, candidate: Any) -> Dict[str, Any]:
        if not isinstance(candidate, dict):
            raise InvalidUpstreamResponseError(
                code="INVALID_UPSTREAM_RESPONSE",
                message=f"{self.label} returned a malformed candidate",
            )
        return candidate

    @staticmethod
    def _split_parts(candidate: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        """拆分 candidate 的 parts：普通文本归入正文，thought 归入 reasoning。"""

        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            return "", None
        text_parts: List[str] = []
        thought_parts: List[str] = []
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            value = part.get("text")
            if not isinstance(value, str):
                continue
            if part.get("thought"):
                thought_parts.append(value)
            else:
                text_parts.append(value)
        return "".join(text_parts), ("".join(thought_parts) or None)
