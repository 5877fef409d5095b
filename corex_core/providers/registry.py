"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体服务模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "default"。
- provider_model：服务实际提供的模型 ID，例如 "qwen2.5-coder:7b"。

请求里未在 registry 中登记的模型名会原样透传给服务端，
这样 shell 端可以直接指定本地已下载的任意模型。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]
    requires_api_key: bool = False

    def resolve_model(self, model: str) -> ModelConfig:
        """逻辑名 -> ModelConfig；未登记的名称视为服务端真实模型 ID。"""

        key = model or "default"
        if key in self.models:
            return self.models[key]
        default = self.models["default"]
        return ModelConfig(
            logical_name=key,
            provider_model=key,
            max_tokens=default.max_tokens,
            default_temperature=default.default_temperature,
        )


# Ollama（OpenAI 兼容接口）
OLLAMA_CONFIG = ProviderConfig(
    name="ollama",
    base_url="http://localhost:11434/v1",
    models={
        "default": ModelConfig(
            logical_name="default",
            provider_model="qwen2.5-coder:7b",
            max_tokens=4096,
            default_temperature=0.7,
        )
    },
)

# LM Studio 本地服务
LMSTUDIO_CONFIG = ProviderConfig(
    name="lmstudio",
    base_url="http://localhost:1234/v1",
    models={
        "default": ModelConfig(
            logical_name="default",
            provider_model="local-model",
            max_tokens=4096,
            default_temperature=0.7,
        )
    },
)

# 远端 OpenAI
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "default": ModelConfig(
            logical_name="default",
            provider_model="gpt-4o-mini",
            max_tokens=8192,
            default_temperature=0.7,
        )
    },
    requires_api_key=True,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "ollama": OLLAMA_CONFIG,
    "lmstudio": LMSTUDIO_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
