"""统一的请求与结果数据模型。

本模块定义了代理内部在 HTTP 层与各 Provider 之间共享的标准数据结构：

- ChatMessage / ChatRequest: 校验、归一化之后的对话请求。
- ChatResult / ChatStreamChunk: Provider 解析后的统一响应。
- EmbeddingRequest / EmbeddingResult: 向量生成的请求与结果。
- ModelConfig: 注册表中的一条模型配置。

所有 Provider 适配器（如 OpenAIClient、GoogleClient）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# Ollama 协议只区分用户与助手两种角色，其它角色在校验阶段归为 user
Role = Literal["user", "assistant"]

ModelKind = Literal["chat", "embedding"]

# 响应体里承载内容的字段名：/api/chat 用 message，/api/generate 用 response
ResponseKey = Literal["message", "response"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于上游返回的 transcript。

    - role: 消息角色。
    - content: 纯文本内容（请求侧已 trim 且非空）。
    - reasoning: 上游返回的思考过程（仅响应侧可能存在）。
    """

    role: Role
    content: str
    reasoning: Optional[str] = None


@dataclass
class GenerationOptions:
    """Ollama options 中被透传给上游的生成参数。

    数值不做裁剪，各 Provider 自行处理取值范围。
    """

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None  # 对应 Ollama 的 num_predict
    top_p: Optional[float] = None


@dataclass
class ChatRequest:
    """一次完整的对话请求（/api/generate 也会归一化成这个结构）。"""

    model_name: str  # 客户端请求的模型名，由 registry 映射为上游模型 ID
    messages: List[ChatMessage]
    options: GenerationOptions = field(default_factory=GenerationOptions)
    stream: bool = False


@dataclass
class ChatResult:
    """一次非流式调用的结果。

    - text: 上游返回的原始文本。
    - reasoning: 上游单独返回的思考过程。
    - messages: 上游暴露的结构化 transcript（多数 Provider 没有）。
    - raw: 原始响应 JSON，仅用于调试。
    """

    text: str
    reasoning: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None
    raw: Optional[dict] = None


@dataclass
class ChatStreamChunk:
    """流式调用中的单个增量。

    content 为本次新增的文本（非累计）；reasoning 为本次新增的思考内容。
    """

    content: str = ""
    reasoning: Optional[str] = None
    finish_reason: Optional[str] = None
    raw: Optional[dict] = None


@dataclass
class EmbeddingRequest:
    """校验后的向量请求。

    single_text 仅当输入来自 prompt 字段时为 True；
    input 字段即使只有一个元素也为 False，两者对应不同的响应结构。
    """

    model_name: str
    input_texts: List[str]
    single_text: bool


@dataclass
class EmbeddingResult:
    """一批向量的生成结果，顺序与输入一致。"""

    vectors: List[List[float]]
    upstream_model: str
    dimensions: int


@dataclass(frozen=True)
class ModelConfig:
    """注册表中的单条模型配置。"""

    name: str
    provider: str
    upstream_model: str
    kind: ModelKind = "chat"

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "provider": self.provider,
            "upstream_model": self.upstream_model,
            "kind": self.kind,
        }
