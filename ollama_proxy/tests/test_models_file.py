import json

import pytest

from ollama_proxy.config.models_file import BUILTIN_MODELS, find_models_file, load_models_file
from ollama_proxy.domain.exceptions import ValidationError


def test_builtin_models_when_no_file(tmp_path):
    raw, source = load_models_file(cwd=tmp_path)
    assert source is None
    assert raw == BUILTIN_MODELS
    # 返回副本，修改不会影响内置表
    raw["extra"] = {}
    assert "extra" not in BUILTIN_MODELS


def test_loads_models_json_from_cwd(tmp_path):
    data = {"my-model": {"provider": "openai", "model": "gpt-4.1-mini"}}
    (tmp_path / "models.json").write_text(json.dumps(data), encoding="utf-8")
    raw, source = load_models_file(cwd=tmp_path)
    assert raw == data
    assert source == tmp_path / "models.json"


def test_yaml_takes_precedence(tmp_path):
    (tmp_path / "models.json").write_text("{}", encoding="utf-8")
    (tmp_path / "models.yaml").write_text(
        "embed:\n  provider: google\n  model: text-embedding-004\n  type: embedding\n",
        encoding="utf-8",
    )
    assert find_models_file(cwd=tmp_path) == tmp_path / "models.yaml"
    raw, _ = load_models_file(cwd=tmp_path)
    assert raw["embed"]["type"] == "embedding"


def test_explicit_path_must_exist(tmp_path):
    with pytest.raises(ValidationError, match="does not exist"):
        load_models_file(str(tmp_path / "nope.json"))


def test_invalid_file_contents(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not: [valid", encoding="utf-8")
    with pytest.raises(ValidationError, match="Error loading"):
        load_models_file(str(broken))

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValidationError, match="must contain a mapping"):
        load_models_file(str(listing))
