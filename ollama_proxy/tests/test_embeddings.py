import asyncio

import pytest

from ollama_proxy.api.embeddings import (
    EmbeddingOrchestrator,
    format_embedding_response,
    validate_embedding_response,
)
from ollama_proxy.domain.exceptions import (
    CapabilityNotSupportedError,
    InvalidUpstreamEmbeddingError,
    MissingCredentialsError,
    NetworkError,
    ResponseShapeError,
)
from ollama_proxy.domain.models import EmbeddingResult, ModelConfig
from ollama_proxy.providers.base import BaseProviderClient
from ollama_proxy.providers.openai_client import OpenRouterClient


CONFIG = ModelConfig(name="text-embedding-004", provider="google", upstream_model="text-embedding-004", kind="embedding")


class FakeEmbedder(BaseProviderClient):
    name = "google"
    label = "Google"
    api_key_env = "GEMINI_API_KEY"
    supports_embeddings = True

    def __init__(self, fail_on=None, vectors=None, delays=None, api_key="AIza-test-123456"):
        super().__init__(api_key, "http://upstream.invalid", 1.0)
        self.fail_on = fail_on
        self.vectors = vectors or {}
        self.delays = delays or {}
        self.calls = []

    async def embed(self, config, text):
        self.calls.append(text)
        if text in self.delays:
            await asyncio.sleep(self.delays[text])
        if text == self.fail_on:
            raise NetworkError(code="NETWORK_ERROR", message="connection reset")
        return self.vectors.get(text, [float(len(text)), 0.5, 1])


def test_vectors_follow_input_order():
    handle = FakeEmbedder()
    result = asyncio.run(EmbeddingOrchestrator().generate(handle, CONFIG, ["a", "bb", "ccc"]))
    assert [v[0] for v in result.vectors] == [1.0, 2.0, 3.0]
    assert all(isinstance(x, float) for x in result.vectors[0])
    assert result.dimensions == 3
    assert result.upstream_model == "text-embedding-004"
    assert handle.calls == ["a", "bb", "ccc"]


def test_failure_aborts_remaining_texts():
    handle = FakeEmbedder(fail_on="b")
    with pytest.raises(NetworkError):
        asyncio.run(EmbeddingOrchestrator().generate(handle, CONFIG, ["a", "b", "c"]))
    assert handle.calls == ["a", "b"]


class DriftingEmbedder(FakeEmbedder):
    """每次调用返回不同的向量。"""

    async def embed(self, config, text):
        self.calls.append(text)
        return [float(len(self.calls))]


def test_identical_requests_hit_upstream_every_time():
    handle = DriftingEmbedder()
    orchestrator = EmbeddingOrchestrator()
    first = asyncio.run(orchestrator.generate(handle, CONFIG, ["same"]))
    second = asyncio.run(orchestrator.generate(handle, CONFIG, ["same"]))
    assert handle.calls == ["same", "same"]
    assert first.vectors != second.vectors


@pytest.mark.parametrize("bad", [[], None, ["x", 1], [True, False], {"values": [1.0]}])
def test_invalid_vector_is_rejected(bad):
    handle = FakeEmbedder(vectors={"second": bad})
    with pytest.raises(InvalidUpstreamEmbeddingError) as exc:
        asyncio.run(EmbeddingOrchestrator().generate(handle, CONFIG, ["first", "second"]))
    assert "text 2" in exc.value.message


def test_provider_without_embeddings_is_rejected_before_any_call():
    config = ModelConfig(name="r1-embed", provider="openrouter", upstream_model="x", kind="embedding")
    with pytest.raises(CapabilityNotSupportedError, match="openrouter"):
        asyncio.run(EmbeddingOrchestrator().generate(OpenRouterClient("sk-or-1234567890"), config, ["a"]))


def test_missing_credentials_fail_fast():
    handle = FakeEmbedder(api_key=None)
    with pytest.raises(MissingCredentialsError, match="GEMINI_API_KEY"):
        asyncio.run(EmbeddingOrchestrator().generate(handle, CONFIG, ["a"]))
    assert handle.calls == []


def test_bounded_concurrency_preserves_order():
    handle = FakeEmbedder(delays={"a": 0.03, "bb": 0.01, "ccc": 0.0})
    result = asyncio.run(EmbeddingOrchestrator(concurrency=3).generate(handle, CONFIG, ["a", "bb", "ccc"]))
    assert [v[0] for v in result.vectors] == [1.0, 2.0, 3.0]


def test_bounded_concurrency_aborts_on_failure():
    handle = FakeEmbedder(fail_on="bb", delays={"a": 0.05, "ccc": 0.05})
    with pytest.raises(NetworkError):
        asyncio.run(EmbeddingOrchestrator(concurrency=2).generate(handle, CONFIG, ["a", "bb", "ccc"]))


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        EmbeddingOrchestrator(concurrency=0)


# ---- 响应组装与校验 ----


def _result(*vectors):
    return EmbeddingResult(vectors=list(vectors), upstream_model="text-embedding-004", dimensions=len(vectors[0]))


def test_single_text_shape():
    response = format_embedding_response(_result([0.1, 0.2]), "text-embedding-004", single_text=True)
    assert response["embedding"] == [0.1, 0.2]
    assert response["model"] == "text-embedding-004"
    assert response["created_at"].endswith("Z")
    assert "embeddings" not in response
    validate_embedding_response(response, 1)


def test_batch_shape():
    response = format_embedding_response(_result([0.1], [0.2]), "text-embedding-004", single_text=False)
    assert response["embeddings"] == [{"embedding": [0.1]}, {"embedding": [0.2]}]
    assert "embedding" not in response
    validate_embedding_response(response, 2)


def test_batch_of_one_keeps_array_shape():
    response = format_embedding_response(_result([0.1]), "m", single_text=False)
    assert response["embeddings"] == [{"embedding": [0.1]}]
    validate_embedding_response(response, 1)


@pytest.mark.parametrize(
    "response, expected, message",
    [
        ({}, 1, "Empty embedding response"),
        ({"embedding": [], "model": "m", "created_at": "t"}, 1, "cannot be empty"),
        ({"embedding": [0.1], "model": "m", "created_at": "t"}, 2, "Expected 2 embeddings but got single embedding"),
        ({"embeddings": [{"embedding": [0.1]}], "model": "m", "created_at": "t"}, 2, "Expected 2 embeddings but got 1"),
        ({"embeddings": [{"embedding": []}], "model": "m", "created_at": "t"}, 1, "index 0 is empty"),
        ({"embeddings": [{}], "model": "m", "created_at": "t"}, 1, "index 0 is invalid or missing"),
        ({"model": "m", "created_at": "t"}, 1, "either"),
        ({"embedding": [0.1], "model": "", "created_at": "t"}, 1, "valid model name"),
        ({"embedding": [0.1], "model": "m"}, 1, "created_at"),
    ],
)
def test_response_shape_errors(response, expected, message):
    with pytest.raises(ResponseShapeError) as exc:
        validate_embedding_response(response, expected)
    assert message in exc.value.message
