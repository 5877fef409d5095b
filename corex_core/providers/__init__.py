"""补全与索引 Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (openai_compat、local_index)。
"""

from typing import Optional

from corex_core.config.settings import settings
from corex_core.providers.base import CompletionProvider, IndexProvider
from corex_core.providers.local_index import LocalProjectIndex
from corex_core.providers.openai_compat import OpenAICompatibleClient
from corex_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> CompletionProvider:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "ollama")).lower()
    return OpenAICompatibleClient(get_provider_config(provider_name), settings)


__all__ = [
    "CompletionProvider",
    "IndexProvider",
    "LocalProjectIndex",
    "OpenAICompatibleClient",
    "create_provider",
]
