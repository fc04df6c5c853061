"""Embedding 批量生成与响应组装。

- EmbeddingOrchestrator.generate: 每条输入调用一次上游，结果顺序与输入一致；
  任意一条失败立即中止整批，不返回部分结果。
- format_embedding_response: 按 single_text 组装 Ollama 的两种响应结构。
- validate_embedding_response: 发送前对组装结果做结构校验，每次响应都必须通过。
"""

import asyncio
import numbers
from typing import Any, Dict, List, Optional

from ollama_proxy.api.service import utc_now_iso
from ollama_proxy.domain.exceptions import (
    CapabilityNotSupportedError,
    InternalError,
    InvalidUpstreamEmbeddingError,
    ResponseShapeError,
)
from ollama_proxy.domain.models import EmbeddingResult, ModelConfig
from ollama_proxy.infrastructure.logging.logger import logger
from ollama_proxy.providers.base import ProviderClient


class EmbeddingOrchestrator:
    """按输入顺序逐条生成向量。

    concurrency 为同一请求内同时发往上游的最大条目数，默认 1（严格串行，
    避免对上游造成突发流量）；大于 1 时并发执行，但输出顺序不变，
    且任一条目失败会取消其余条目。
    """

    def __init__(self, concurrency: int = 1):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency

    async def generate(self, handle: ProviderClient, config: ModelConfig, texts: List[str]) -> EmbeddingResult:
        if not getattr(handle, "supports_embeddings", False):
            raise CapabilityNotSupportedError(
                code="CAPABILITY_NOT_SUPPORTED",
                message=f"Embedding models are not supported for provider {config.provider}",
                provider=config.provider,
            )
        handle.require_credentials()

        if self.concurrency == 1:
            vectors = [await self._embed_one(handle, config, i, text, len(texts)) for i, text in enumerate(texts)]
        else:
            vectors = await self._embed_bounded(handle, config, texts)

        if not vectors:
            raise InvalidUpstreamEmbeddingError(
                code="INVALID_UPSTREAM_EMBEDDING",
                message="No embeddings were generated",
            )
        logger.info(
            f"Successfully generated {len(vectors)} embeddings using {config.upstream_model}",
            extra={"extra": {"model": config.name, "provider": config.provider}},
        )
        return EmbeddingResult(vectors=vectors, upstream_model=config.upstream_model, dimensions=len(vectors[0]))

    async def _embed_bounded(self, handle: ProviderClient, config: ModelConfig, texts: List[str]) -> List[List[float]]:
        semaphore = asyncio.Semaphore(self.concurrency)
        results: List[Optional[List[float]]] = [None] * len(texts)

        async def run(index: int, text: str) -> None:
            async with semaphore:
                results[index] = await self._embed_one(handle, config, index, text, len(texts))

        tasks = [asyncio.ensure_future(run(i, text)) for i, text in enumerate(texts)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        vectors: List[List[float]] = []
        for index, vector in enumerate(results):
            if vector is None:
                raise InternalError(
                    code="EMBEDDING_MISSING",
                    message=f"Embedding for text {index + 1} was not produced",
                    http_status=500,
                    index=index,
                )
            vectors.append(vector)
        return vectors

    async def _embed_one(
        self, handle: ProviderClient, config: ModelConfig, index: int, text: str, total: int
    ) -> List[float]:
        logger.debug(f"Generating embedding {index + 1}/{total} for model {config.upstream_model}")
        try:
            vector = await handle.embed(config, text)
        except Exception as exc:
            logger.error(
                f"Failed to generate embedding for text {index + 1}: {exc}",
                extra={"extra": {"model": config.name, "provider": config.provider, "index": index}},
            )
            raise
        if not _is_vector(vector):
            raise InvalidUpstreamEmbeddingError(
                code="INVALID_UPSTREAM_EMBEDDING",
                message=f"Invalid embedding response for text {index + 1}: missing or invalid embedding array",
                index=index,
            )
        return [float(v) for v in vector]


def _is_vector(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    return all(isinstance(v, numbers.Real) and not isinstance(v, bool) for v in value)


def format_embedding_response(result: EmbeddingResult, model_name: str, single_text: bool) -> Dict[str, Any]:
    """组装 Ollama 响应结构。

    single_text:  {"embedding": [...], "model": ..., "created_at": ...}
    否则:         {"embeddings": [{"embedding": [...]}, ...], "model": ..., "created_at": ...}
    """

    timestamp = utc_now_iso()
    if single_text:
        return {"embedding": result.vectors[0], "model": model_name, "created_at": timestamp}
    return {
        "embeddings": [{"embedding": vector} for vector in result.vectors],
        "model": model_name,
        "created_at": timestamp,
    }


def _shape_error(message: str) -> ResponseShapeError:
    return ResponseShapeError(code="INVALID_RESPONSE_SHAPE", message=message, http_status=500)


def validate_embedding_response(response: Dict[str, Any], expected_count: int) -> None:
    """发送前校验响应结构，独立于生成阶段的校验。"""

    if not response:
        raise _shape_error("Empty embedding response")

    if "embedding" in response:
        embedding = response["embedding"]
        if not isinstance(embedding, list):
            raise _shape_error("Single embedding must be an array")
        if not embedding:
            raise _shape_error("Embedding array cannot be empty")
        if expected_count != 1:
            raise _shape_error(f"Expected {expected_count} embeddings but got single embedding")
    elif "embeddings" in response:
        embeddings = response["embeddings"]
        if not isinstance(embeddings, list):
            raise _shape_error("Embeddings must be an array")
        if len(embeddings) != expected_count:
            raise _shape_error(f"Expected {expected_count} embeddings but got {len(embeddings)}")
        for index, item in enumerate(embeddings):
            vector = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(vector, list):
                raise _shape_error(f"Embedding at index {index} is invalid or missing")
            if not vector:
                raise _shape_error(f"Embedding at index {index} is empty")
    else:
        raise _shape_error('Response must contain either "embedding" or "embeddings" field')

    if not isinstance(response.get("model"), str) or not response["model"]:
        raise _shape_error("Response must contain valid model name")
    if not isinstance(response.get("created_at"), str) or not response["created_at"]:
        raise _shape_error("Response must contain valid created_at timestamp")
