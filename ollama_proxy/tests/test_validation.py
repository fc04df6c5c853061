import pytest

from ollama_proxy.api.validation import validate_chat, validate_embedding, validate_generate
from ollama_proxy.domain.exceptions import (
    InputTooLongError,
    MissingInputError,
    ModelNotFoundError,
    NoValidMessagesError,
    TooManyInputsError,
    ValidationError,
    WrongKindError,
)
from ollama_proxy.providers.dispatcher import ProviderDispatcher
from ollama_proxy.providers.registry import ModelRegistry


def _registry():
    raw = {
        "gpt-4o-mini": {"provider": "openai", "model": "gpt-4o-mini"},
        "text-embedding-004": {"provider": "google", "model": "text-embedding-004", "type": "embedding"},
    }
    return ModelRegistry.load(raw, ProviderDispatcher({"openai": object(), "google": object()}))


# ---- chat / generate ----


def test_validate_chat_drops_empty_messages_and_normalizes_roles():
    req = validate_chat(
        {
            "model": "gpt-4o-mini",
            "messages": [
                {"role": "system", "content": "  be brief "},
                {"role": "user", "content": "   "},
                {"role": "assistant", "content": "ok"},
                {"role": "user"},
            ],
            "options": {"temperature": 0.2, "num_predict": 64, "top_p": 0.9},
            "stream": True,
        }
    )
    assert [(m.role, m.content) for m in req.messages] == [("user", "be brief"), ("assistant", "ok")]
    assert req.options.temperature == 0.2
    assert req.options.max_tokens == 64
    assert req.options.top_p == 0.9
    assert req.stream is True


def test_validate_chat_all_empty_messages_rejected():
    with pytest.raises(NoValidMessagesError) as exc:
        validate_chat({"model": "m", "messages": [{"role": "user", "content": " \n "}]})
    assert exc.value.message == "No valid messages found"


def test_validate_chat_requires_model_and_messages():
    with pytest.raises(ValidationError, match="Missing required field: model"):
        validate_chat({"messages": [{"role": "user", "content": "hi"}]})
    with pytest.raises(ValidationError, match="Missing required field: messages"):
        validate_chat({"model": "m"})
    with pytest.raises(ValidationError, match="non-empty array"):
        validate_chat({"model": "m", "messages": []})


def test_validate_chat_rejects_bad_options_and_stream():
    base = {"model": "m", "messages": [{"role": "user", "content": "hi"}]}
    with pytest.raises(ValidationError, match="Option temperature must be a number"):
        validate_chat({**base, "options": {"temperature": "hot"}})
    with pytest.raises(ValidationError, match="options must be an object"):
        validate_chat({**base, "options": [1]})
    with pytest.raises(ValidationError, match="stream must be a boolean"):
        validate_chat({**base, "stream": "yes"})
    assert validate_chat(base).stream is False


def test_num_predict_must_be_whole_number():
    base = {"model": "m", "messages": [{"role": "user", "content": "hi"}]}
    with pytest.raises(ValidationError, match="Option num_predict must be an integer"):
        validate_chat({**base, "options": {"num_predict": 1.5}})
    assert validate_chat({**base, "options": {"num_predict": 64.0}}).options.max_tokens == 64
    assert validate_chat({**base, "options": {"num_predict": 64}}).options.max_tokens == 64


def test_validate_generate_wraps_prompt():
    req = validate_generate({"model": "m", "prompt": "  Why is the sky blue? "})
    assert len(req.messages) == 1
    assert req.messages[0].role == "user"
    assert req.messages[0].content == "Why is the sky blue?"

    with pytest.raises(ValidationError, match="Missing required field: prompt"):
        validate_generate({"model": "m"})
    with pytest.raises(NoValidMessagesError):
        validate_generate({"model": "m", "prompt": "   "})


def test_body_must_be_object():
    with pytest.raises(ValidationError, match="JSON object"):
        validate_chat(["model"])


# ---- embeddings ----


def test_prompt_and_input_string_differ_only_in_single_text_flag():
    registry = _registry()
    by_prompt, _ = validate_embedding({"model": "text-embedding-004", "prompt": " x "}, registry)
    by_input, _ = validate_embedding({"model": "text-embedding-004", "input": "x"}, registry)
    assert by_prompt.input_texts == by_input.input_texts == ["x"]
    assert by_prompt.single_text is True
    assert by_input.single_text is False


def test_one_element_array_is_not_single_text():
    req, config = validate_embedding({"model": "text-embedding-004", "input": ["only"]}, _registry())
    assert req.single_text is False
    assert config.upstream_model == "text-embedding-004"


def test_input_array_trimmed_in_order():
    req, _ = validate_embedding({"model": "text-embedding-004", "input": [" a", "b ", " c "]}, _registry())
    assert req.input_texts == ["a", "b", "c"]


def test_embedding_input_errors():
    registry = _registry()
    model = "text-embedding-004"
    with pytest.raises(ValidationError, match="cannot be empty"):
        validate_embedding({"model": model, "input": []}, registry)
    with pytest.raises(ValidationError, match="Input at index 1 cannot be empty"):
        validate_embedding({"model": model, "input": ["a", "  "]}, registry)
    with pytest.raises(ValidationError, match="Input at index 0 must be a string"):
        validate_embedding({"model": model, "input": [3]}, registry)
    with pytest.raises(ValidationError, match="Input must be a string or array of strings"):
        validate_embedding({"model": model, "input": {"text": "a"}}, registry)
    with pytest.raises(ValidationError, match="Prompt must be a non-empty string"):
        validate_embedding({"model": model, "prompt": "   "}, registry)
    with pytest.raises(MissingInputError):
        validate_embedding({"model": model}, registry)


def test_embedding_limits():
    registry = _registry()
    model = "text-embedding-004"
    validate_embedding({"model": model, "input": ["t"] * 100}, registry)
    with pytest.raises(TooManyInputsError, match="Maximum allowed"):
        validate_embedding({"model": model, "input": ["t"] * 101}, registry)
    validate_embedding({"model": model, "input": ["a" * 10000]}, registry)
    with pytest.raises(InputTooLongError) as exc:
        validate_embedding({"model": model, "input": ["ok", "a" * 10001]}, registry)
    assert "index 1 is too long" in exc.value.message


def test_embedding_model_checks():
    registry = _registry()
    with pytest.raises(ValidationError, match="Missing required field: model"):
        validate_embedding({"prompt": "Hello world"}, registry)
    with pytest.raises(ModelNotFoundError, match="Embedding model nomic not supported"):
        validate_embedding({"model": "nomic", "prompt": "x"}, registry)
    with pytest.raises(WrongKindError):
        validate_embedding({"model": "gpt-4o-mini", "prompt": "x"}, registry)
