"""请求体校验与归一化。

把 Ollama 的 /api/chat、/api/generate、/api/embeddings 请求体转换为内部统一模型。
所有校验都在调用上游之前完成，非法输入不会产生任何网络请求。
"""

from typing import Any, Dict, List, Tuple

from ollama_proxy.domain.exceptions import (
    InputTooLongError,
    MissingInputError,
    NoValidMessagesError,
    TooManyInputsError,
    ValidationError,
)
from ollama_proxy.domain.models import (
    ChatMessage,
    ChatRequest,
    EmbeddingRequest,
    GenerationOptions,
    ModelConfig,
)
from ollama_proxy.providers.registry import ModelRegistry


MAX_EMBEDDING_INPUTS = 100
MAX_EMBEDDING_TEXT_LENGTH = 10000


def _invalid(message: str, code: str = "INVALID_REQUEST") -> ValidationError:
    return ValidationError(code=code, message=message)


def _require_object(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise _invalid("Request body must be a JSON object")
    return body


def _require_model(body: Dict[str, Any]) -> str:
    model = body.get("model")
    if not model:
        raise _invalid("Missing required field: model", code="MISSING_FIELD")
    if not isinstance(model, str):
        raise _invalid("Field model must be a string")
    return model


def _parse_stream(body: Dict[str, Any]) -> bool:
    stream = body.get("stream")
    if stream is None:
        return False
    if not isinstance(stream, bool):
        raise _invalid("Field stream must be a boolean")
    return stream


def _parse_number(options: Dict[str, Any], key: str):
    value = options.get(key)
    if value is None:
        return None
    # bool 是 int 的子类，需要单独排除
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _invalid(f"Option {key} must be a number")
    return value


def parse_options(body: Dict[str, Any]) -> GenerationOptions:
    """读取 options 中透传给上游的生成参数。"""

    options = body.get("options")
    if options is None:
        return GenerationOptions()
    if not isinstance(options, dict):
        raise _invalid("Field options must be an object")
    max_tokens = _parse_number(options, "num_predict")
    if isinstance(max_tokens, float):
        if not max_tokens.is_integer():
            raise _invalid("Option num_predict must be an integer")
        max_tokens = int(max_tokens)
    return GenerationOptions(
        temperature=_parse_number(options, "temperature"),
        max_tokens=max_tokens,
        top_p=_parse_number(options, "top_p"),
    )


def prepare_messages(raw_messages: List[Any]) -> List[ChatMessage]:
    """过滤空消息并归一化角色：assistant 保留，其余一律视为 user。"""

    messages: List[ChatMessage] = []
    for index, raw in enumerate(raw_messages):
        if not isinstance(raw, dict):
            raise _invalid(f"Message at index {index} must be an object")
        content = raw.get("content")
        if content is None:
            continue
        text = str(content).strip()
        if not text:
            continue
        role = "assistant" if raw.get("role") == "assistant" else "user"
        messages.append(ChatMessage(role=role, content=text))
    return messages


def _non_empty(messages: List[ChatMessage]) -> List[ChatMessage]:
    if not messages:
        raise NoValidMessagesError(code="NO_VALID_MESSAGES", message="No valid messages found")
    return messages


def validate_chat(body: Any) -> ChatRequest:
    body = _require_object(body)
    model = _require_model(body)
    raw_messages = body.get("messages")
    if raw_messages is None:
        raise _invalid("Missing required field: messages", code="MISSING_FIELD")
    if not isinstance(raw_messages, list) or not raw_messages:
        raise _invalid("Messages must be a non-empty array")
    return ChatRequest(
        model_name=model,
        messages=_non_empty(prepare_messages(raw_messages)),
        options=parse_options(body),
        stream=_parse_stream(body),
    )


def validate_generate(body: Any) -> ChatRequest:
    """/api/generate 归一化为只有一条 user 消息的 ChatRequest。"""

    body = _require_object(body)
    model = _require_model(body)
    prompt = body.get("prompt")
    if prompt is None:
        raise _invalid("Missing required field: prompt", code="MISSING_FIELD")
    if not isinstance(prompt, str):
        raise _invalid("Prompt must be a string")
    return ChatRequest(
        model_name=model,
        messages=_non_empty(prepare_messages([{"role": "user", "content": prompt}])),
        options=parse_options(body),
        stream=_parse_stream(body),
    )


def validate_embedding(body: Any, registry: ModelRegistry) -> Tuple[EmbeddingRequest, ModelConfig]:
    """校验 embedding 请求。

    支持两种输入形式（同时存在时以 prompt 为准）：
    - prompt: 单个字符串，响应使用 embedding 字段；
    - input: 字符串或字符串数组，响应使用 embeddings 数组，即使只有一个元素。
    """

    body = _require_object(body)
    model = _require_model(body)
    config = registry.lookup_embedding(model)

    prompt = body.get("prompt")
    raw_input = body.get("input")
    if prompt is not None:
        if not isinstance(prompt, str) or not prompt.strip():
            raise _invalid("Prompt must be a non-empty string")
        texts = [prompt.strip()]
        single_text = True
    elif raw_input is not None:
        texts = _parse_input(raw_input)
        single_text = False
    else:
        raise MissingInputError(
            code="MISSING_INPUT",
            message='Missing required field: either "prompt" or "input" must be provided',
        )

    for index, text in enumerate(texts):
        if len(text) > MAX_EMBEDDING_TEXT_LENGTH:
            raise InputTooLongError(
                code="INPUT_TOO_LONG",
                message=(
                    f"Input text at index {index} is too long. "
                    f"Maximum length: {MAX_EMBEDDING_TEXT_LENGTH} characters"
                ),
                index=index,
            )
    return EmbeddingRequest(model_name=model, input_texts=texts, single_text=single_text), config


def _parse_input(raw_input: Any) -> List[str]:
    if isinstance(raw_input, str):
        if not raw_input.strip():
            raise _invalid("Input cannot be empty")
        return [raw_input.strip()]
    if not isinstance(raw_input, list):
        raise _invalid("Input must be a string or array of strings")
    if not raw_input:
        raise _invalid("Input array cannot be empty")
    if len(raw_input) > MAX_EMBEDDING_INPUTS:
        raise TooManyInputsError(
            code="TOO_MANY_INPUTS",
            message=f"Too many input texts. Maximum allowed: {MAX_EMBEDDING_INPUTS}",
        )
    texts: List[str] = []
    for index, text in enumerate(raw_input):
        if not isinstance(text, str):
            raise _invalid(f"Input at index {index} must be a string")
        trimmed = text.strip()
        if not trimmed:
            raise _invalid(f"Input at index {index} cannot be empty")
        texts.append(trimmed)
    return texts
