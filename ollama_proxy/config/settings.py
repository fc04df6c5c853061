"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
模型注册表文件（models.json / models.yaml）由 config.models_file 单独负责。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("OLLAMA_PROXY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 凭证与地址 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API 基础URL",
    )
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API 基础URL（OpenAI 兼容）",
    )

    # ---- HTTP 服务 ----
    host: str = Field(default="0.0.0.0", description="监听地址")
    port: int = Field(default=11434, ge=1, le=65535, description="监听端口（与 Ollama 默认一致）")
    ollama_version: str = Field(default="1.0.1e", description="/api/version 返回的版本号")
    http_timeout: float = Field(default=120.0, ge=1.0, description="上游 HTTP 超时时间（秒）")

    # ---- 模型注册表 ----
    models_file: Optional[str] = Field(
        default=None,
        description="模型注册表文件路径；为空时依次查找当前目录下的 models.yaml / models.json",
    )
    embedding_concurrency: int = Field(
        default=1,
        ge=1,
        le=16,
        description="单个 embedding 请求内同时发往上游的条目数（1 表示严格串行）",
    )

    # ---- 日志 ----
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Optional[str] = Field(default=None, description="日志目录；为空时只输出到 stderr")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "gemini_api_key", "openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip() or None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def credentialed_providers(self) -> Dict[str, str]:
        """返回已配置凭证的 Provider 名称 -> API Key。"""

        keys = {
            "openai": self.openai_api_key,
            "google": self.gemini_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return {name: key for name, key in keys.items() if key}


settings = Settings()
