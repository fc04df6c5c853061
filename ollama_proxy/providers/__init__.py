"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供各厂商的具体实现 (openai_client、google_client)。
- 按名称分发 Provider 实例 (dispatcher)。
- 维护客户端模型名与厂商模型的映射 (registry)。
"""

from typing import Dict

from ollama_proxy.config.settings import settings
from ollama_proxy.providers.base import ProviderClient
from ollama_proxy.providers.google_client import GoogleClient
from ollama_proxy.providers.openai_client import OpenAIClient, OpenRouterClient


def create_providers(cfg=settings) -> Dict[str, ProviderClient]:
    """为每个配置了 API Key 的 Provider 创建客户端实例。"""

    keys = cfg.credentialed_providers()
    providers: Dict[str, ProviderClient] = {}
    if "openai" in keys:
        providers["openai"] = OpenAIClient(keys["openai"], cfg.openai_base_url, cfg.http_timeout)
    if "google" in keys:
        providers["google"] = GoogleClient(keys["google"], cfg.gemini_base_url, cfg.http_timeout)
    if "openrouter" in keys:
        providers["openrouter"] = OpenRouterClient(keys["openrouter"], cfg.openrouter_base_url, cfg.http_timeout)
    return providers
