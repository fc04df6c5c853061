"""对外服务模块。

封装非流式生成与 Ollama 响应信封的组装，以及 /api/tags 的模型列表。
HTTP 路由层（api.app）只负责读写请求，具体逻辑都在这里。
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ollama_proxy.domain.exceptions import NoValidMessagesError
from ollama_proxy.domain.models import ChatMessage, ChatRequest, ChatResult, ModelConfig, ResponseKey
from ollama_proxy.infrastructure.logging.logger import logger
from ollama_proxy.providers.base import ProviderClient
from ollama_proxy.providers.registry import ModelRegistry


def utc_now_iso() -> str:
    """ISO 8601 UTC 时间戳，例如 2024-05-01T12:00:00.123456Z。"""

    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def generate_reply(handle: ProviderClient, config: ModelConfig, req: ChatRequest) -> ChatResult:
    """执行一次非流式生成，并确定最终回答。

    上游若返回结构化 transcript，则以最后一条 assistant 消息为准
    （覆盖原始 text），并优先使用该消息上的 reasoning。
    """

    if not req.messages:
        raise NoValidMessagesError(code="NO_VALID_MESSAGES", message="No valid messages found")

    logger.debug(
        "Generating reply",
        extra={"extra": {"model": req.model_name, "provider": config.provider, "messages": len(req.messages)}},
    )
    result = await handle.generate(config, req)

    text = result.text
    reasoning = result.reasoning
    if result.messages:
        assistant = [m for m in result.messages if m.role == "assistant"]
        if assistant:
            last = assistant[-1]
            text = last.content or text
            if last.reasoning:
                reasoning = last.reasoning
    return ChatResult(text=text or "", reasoning=reasoning, messages=result.messages, raw=result.raw)


def _serialize_message(message: ChatMessage) -> Dict[str, Any]:
    data: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.reasoning:
        data["reasoning"] = message.reasoning
    return data


def build_envelope(model_name: str, result: ChatResult, response_key: ResponseKey) -> Dict[str, Any]:
    """组装非流式响应信封。

    /api/chat: {"message": {"role": "assistant", "content": ..., "reasoning"?}}
    /api/generate: {"response": "...", "reasoning"?}
    """

    envelope: Dict[str, Any] = {
        "model": model_name,
        "created_at": utc_now_iso(),
        "done": True,
    }
    if response_key == "message":
        message: Dict[str, Any] = {"role": "assistant", "content": result.text}
        if result.reasoning:
            message["reasoning"] = result.reasoning
        envelope["message"] = message
    else:
        envelope["response"] = result.text
        if result.reasoning:
            envelope["reasoning"] = result.reasoning
    if result.messages:
        envelope["messages"] = [_serialize_message(m) for m in result.messages]
    return envelope


def _digest(name: str) -> str:
    return "sha256:" + re.sub(r"[^a-zA-Z0-9]", "", name)


def list_tags(registry: ModelRegistry, now: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
    """/api/tags：同时列出 chat 与 embedding 模型，details.family 区分两者。"""

    modified_at = now or utc_now_iso()
    models = []
    for config in registry.all_models():
        is_embedding = config.kind == "embedding"
        models.append(
            {
                "name": config.name,
                "model": config.name,
                "modified_at": modified_at,
                "size": 500000000 if is_embedding else 1000000000,
                "digest": _digest(config.name),
                "details": {
                    "family": config.kind,
                    "format": "gguf",
                    "parameter_size": "4B" if is_embedding else "7B",
                    "quantization_level": "Q4_K_M",
                },
            }
        )
    return {"models": models}
