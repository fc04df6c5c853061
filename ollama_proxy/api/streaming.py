"""NDJSON 流式响应。

每个客户端连接对应一个 StreamResponder，状态机为 OPEN -> EMITTING* -> DONE：

- OPEN: 响应头已由 HTTP 层写出（application/x-ndjson），尚未产生内容。
- EMITTING: 每收到一个上游增量，写出一行 {"done": false, ...}。
- DONE: 写出唯一一行 {"done": true, ...}，内容为空，可能携带 reasoning；
  若上游在流开始后失败，则改为写出 {"done": true, "error": ...} 并结束。

响应头一旦发出就无法再改状态码，所以所有结束条件都编码在最后一行里。
"""

import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ollama_proxy.api.errors import classify_and_log
from ollama_proxy.api.service import utc_now_iso
from ollama_proxy.domain.exceptions import NoValidMessagesError
from ollama_proxy.domain.models import ChatRequest, ModelConfig, ResponseKey
from ollama_proxy.infrastructure.logging.logger import logger
from ollama_proxy.providers.base import ProviderClient


NDJSON_MEDIA_TYPE = "application/x-ndjson"


class StreamState(str, Enum):
    OPEN = "open"
    EMITTING = "emitting"
    DONE = "done"


class StreamResponder:
    """驱动一次流式生成并产出 NDJSON 行。

    Args:
        handle: Provider 客户端。
        config: 已解析的模型配置。
        req: 已校验的请求；消息为空时在构造阶段就失败，此时响应头尚未发出。
        response_key: "message"（/api/chat）或 "response"（/api/generate）。
        is_disconnected: 可选的断开检测回调；每次写出前检查，断开后立即停止读取上游。
    """

    def __init__(
        self,
        handle: ProviderClient,
        config: ModelConfig,
        req: ChatRequest,
        response_key: ResponseKey,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        if not req.messages:
            raise NoValidMessagesError(code="NO_VALID_MESSAGES", message="No valid messages found")
        self._handle = handle
        self._config = config
        self._req = req
        self._response_key = response_key
        self._is_disconnected = is_disconnected
        self.state = StreamState.OPEN
        self.emitted = 0

    async def iter_lines(self) -> AsyncIterator[str]:
        reasoning_parts: List[str] = []
        failure: Optional[Exception] = None
        upstream = None
        try:
            upstream = self._handle.stream(self._config, self._req)
            async for delta in upstream:
                # 每个上游增量都检查一次，纯 reasoning 的增量也不例外
                if await self._client_gone():
                    logger.info(
                        "Client disconnected, aborting upstream stream",
                        extra={"extra": {"model": self._req.model_name, "emitted": self.emitted}},
                    )
                    self.state = StreamState.DONE
                    return
                if delta.reasoning:
                    reasoning_parts.append(delta.reasoning)
                if not delta.content:
                    continue
                self.state = StreamState.EMITTING
                self.emitted += 1
                yield self._encode(self._chunk(delta.content, done=False))
        except Exception as exc:
            failure = exc
        finally:
            if upstream is not None:
                aclose = getattr(upstream, "aclose", None)
                if aclose is not None:
                    await aclose()

        self.state = StreamState.DONE
        if failure is not None:
            classified = classify_and_log(
                failure,
                "Streaming error",
                {"model": self._req.model_name, "provider": self._config.provider, "emitted": self.emitted},
            )
            yield self._encode(
                {
                    "model": self._req.model_name,
                    "created_at": utc_now_iso(),
                    "done": True,
                    "error": classified.message,
                }
            )
            return

        yield self._encode(self._chunk("", done=True, reasoning="".join(reasoning_parts) or None))

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    def _chunk(self, content: str, done: bool, reasoning: Optional[str] = None) -> Dict[str, Any]:
        chunk: Dict[str, Any] = {
            "model": self._req.model_name,
            "created_at": utc_now_iso(),
            "done": done,
        }
        if self._response_key == "message":
            message: Dict[str, Any] = {"role": "assistant", "content": content}
            if reasoning:
                message["reasoning"] = reasoning
            chunk["message"] = message
        else:
            chunk["response"] = content
            if reasoning:
                chunk["reasoning"] = reasoning
        return chunk

    @staticmethod
    def _encode(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, ensure_ascii=False) + "\n"
