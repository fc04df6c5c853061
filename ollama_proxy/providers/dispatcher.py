"""Provider 分发。

启动时为每个已配置凭证的 Provider 创建一个客户端实例，运行期只读。
"""

from types import MappingProxyType
from typing import List, Mapping

from ollama_proxy.domain.exceptions import ProviderUnavailableError
from ollama_proxy.providers.base import ProviderClient


class ProviderDispatcher:
    """Provider 名称 -> 客户端实例。"""

    def __init__(self, handles: Mapping[str, ProviderClient]):
        self._handles = MappingProxyType(dict(handles))

    def resolve(self, name: str) -> ProviderClient:
        handle = self._handles.get(name)
        if handle is None:
            raise ProviderUnavailableError(
                code="PROVIDER_UNAVAILABLE",
                message=f"Provider {name} not available",
                provider=name,
            )
        return handle

    def is_available(self, name: str) -> bool:
        return name in self._handles

    def available(self) -> List[str]:
        return list(self._handles)
