"""模型注册表。

本模块将“客户端模型名”与“具体厂商模型名”解耦：

- name：Ollama 客户端请求中使用的模型名，例如 "gemini-2.5-flash"。
- upstream_model：厂商实际提供的模型 ID，例如 "deepseek/deepseek-r1-0528:free"。

注册表在启动时构建一次，按类型拆分为 chat / embedding 两个互不相交的只读视图，
之后任意并发请求都可以无锁读取。
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from ollama_proxy.domain.exceptions import ModelNotFoundError, WrongKindError
from ollama_proxy.domain.models import ModelConfig
from ollama_proxy.infrastructure.logging.logger import logger
from ollama_proxy.providers.dispatcher import ProviderDispatcher
from ollama_proxy.providers.google_client import KNOWN_EMBEDDING_MODELS


@dataclass(frozen=True)
class ModelRegistry:
    """只读模型注册表。"""

    chat_models: Mapping[str, ModelConfig]
    embedding_models: Mapping[str, ModelConfig]
    dispatcher: Optional[ProviderDispatcher] = None

    @classmethod
    def load(cls, raw_config: Mapping[str, Any], dispatcher: ProviderDispatcher) -> "ModelRegistry":
        """从原始配置构建注册表。

        非法条目只记录警告并跳过，不会中断加载：
        - 缺少 provider 或 model；
        - provider 启动时没有配置凭证；
        - type 既不是 chat 也不是 embedding。
        """

        chat: dict = {}
        embedding: dict = {}
        for name, entry in raw_config.items():
            if not isinstance(entry, Mapping):
                logger.warning(f"Invalid model configuration for {name}: expected a mapping")
                continue
            provider = entry.get("provider")
            upstream_model = entry.get("model")
            if not provider or not upstream_model:
                logger.warning(f"Invalid model configuration for {name}: missing provider or model")
                continue
            if not isinstance(provider, str) or not isinstance(upstream_model, str):
                logger.warning(f"Invalid model configuration for {name}: provider and model must be strings")
                continue
            if not dispatcher.is_available(provider):
                logger.warning(f"Provider {provider} not available for model {name}")
                continue

            kind = entry.get("type") or entry.get("kind") or "chat"
            if kind not in ("chat", "embedding"):
                logger.warning(f"Unknown model type '{kind}' for {name}, skipping")
                continue

            config = ModelConfig(name=str(name), provider=provider, upstream_model=str(upstream_model), kind=kind)
            if kind == "embedding":
                if provider == "google" and config.upstream_model not in KNOWN_EMBEDDING_MODELS:
                    logger.warning(f"Unknown Google embedding model: {config.upstream_model} for {name}")
                embedding[config.name] = config
            else:
                chat[config.name] = config
            logger.debug("Loaded model", extra={"extra": config.describe()})

        logger.info(
            f"Loaded {len(chat)} chat models and {len(embedding)} embedding models",
            extra={"extra": {"providers": dispatcher.available()}},
        )
        return cls(
            chat_models=MappingProxyType(chat),
            embedding_models=MappingProxyType(embedding),
            dispatcher=dispatcher,
        )

    def lookup_chat(self, name: str) -> ModelConfig:
        config = self.chat_models.get(name)
        if config is None:
            if name in self.embedding_models:
                raise WrongKindError(code="WRONG_MODEL_KIND", message=f"Model {name} is not a chat model")
            raise ModelNotFoundError(code="MODEL_NOT_FOUND", message=f"Chat model {name} not supported")
        self._check_provider(config)
        return config

    def lookup_embedding(self, name: str) -> ModelConfig:
        config = self.embedding_models.get(name)
        if config is None:
            if name in self.chat_models:
                raise WrongKindError(code="WRONG_MODEL_KIND", message=f"Model {name} is not an embedding model")
            raise ModelNotFoundError(code="MODEL_NOT_FOUND", message=f"Embedding model {name} not supported")
        self._check_provider(config)
        return config

    def all_models(self) -> Iterator[ModelConfig]:
        """先 chat 后 embedding，按加载顺序。"""

        yield from self.chat_models.values()
        yield from self.embedding_models.values()

    def _check_provider(self, config: ModelConfig) -> None:
        # 加载时已过滤过一次，这里按请求再确认 provider 句柄仍可解析
        if self.dispatcher is not None:
            self.dispatcher.resolve(config.provider)
