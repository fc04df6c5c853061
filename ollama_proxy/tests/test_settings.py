import json
import logging

import pydantic
import pytest

from ollama_proxy.config.settings import Settings
from ollama_proxy.infrastructure.logging.logger import JsonFormatter, setup_logger


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in ("OPENAI_API_KEY", "GEMINI_API_KEY", "OPENROUTER_API_KEY", "LOG_LEVEL", "PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OLLAMA_PROXY_CONFIG_FILE", str(tmp_path / "config.yaml"))
    monkeypatch.chdir(tmp_path)


def test_defaults():
    cfg = Settings(_env_file=None)
    assert cfg.port == 11434
    assert cfg.ollama_version == "1.0.1e"
    assert cfg.embedding_concurrency == 1
    assert cfg.credentialed_providers() == {}


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "  AIza-test-123456  ")
    monkeypatch.setenv("PORT", "8080")
    cfg = Settings(_env_file=None)
    assert cfg.port == 8080
    assert cfg.credentialed_providers() == {"google": "AIza-test-123456"}


def test_blank_key_means_unset():
    assert Settings(_env_file=None, openai_api_key="   ").openai_api_key is None


def test_short_key_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, openai_api_key="short")


def test_log_level_normalized():
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, log_level="chatty")


def test_yaml_config_file(tmp_path):
    (tmp_path / "config.yaml").write_text("port: 9000\nembedding_concurrency: 4\n", encoding="utf-8")
    cfg = Settings(_env_file=None)
    assert cfg.port == 9000
    assert cfg.embedding_concurrency == 4


def test_env_beats_yaml(monkeypatch, tmp_path):
    (tmp_path / "config.yaml").write_text("port: 9000\n", encoding="utf-8")
    monkeypatch.setenv("PORT", "9100")
    assert Settings(_env_file=None).port == 9100


# ---- 日志 ----


def _record(msg, **extra):
    record = logging.LogRecord("ollama_proxy", logging.INFO, __file__, 1, msg, None, None)
    if extra:
        record.extra = extra
    return record


def test_json_formatter_merges_extra():
    line = json.loads(JsonFormatter().format(_record("Embedding request", model="m", input_count=2)))
    assert line["level"] == "INFO"
    assert line["msg"] == "Embedding request"
    assert line["model"] == "m"
    assert line["input_count"] == 2
    assert line["ts"].endswith("Z")


def test_json_formatter_redacts_long_messages():
    line = json.loads(JsonFormatter(redact=True).format(_record("x" * 200)))
    assert line["msg"] == "x" * 64


def test_setup_logger_writes_file(tmp_path):
    cfg = Settings(_env_file=None, log_dir=str(tmp_path / "logs"), log_level="warning")
    logger = setup_logger(cfg)
    try:
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 2
        logger.warning("disk check")
        for handler in logger.handlers:
            handler.flush()
        assert "disk check" in (tmp_path / "logs" / "proxy.log").read_text(encoding="utf-8")
    finally:
        setup_logger()
