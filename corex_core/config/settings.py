"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 config.yaml 加载配置。
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
    explicit = os.getenv("COREX_CONFIG_FILE")
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

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="ollama",
        description="默认使用的 Provider 名称，例如 ollama、lmstudio、openai",
    )
    default_model: str = Field(
        default="default",
        description="逻辑模型名，由 registry 映射为具体模型",
    )
    ollama_base_url: str = Field(default="http://localhost:11434/v1", description="Ollama OpenAI 兼容地址")
    lmstudio_base_url: str = Field(default="http://localhost:1234/v1", description="LM Studio 地址")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 上下文选择 ----
    workspace_root: str = Field(
        default_factory=lambda: str(Path.cwd()),
        description="默认项目根目录（即 IndexProvider 的 project_id）",
    )
    context_max_files: int = Field(default=5, ge=1, description="单次上下文最多文件数")
    context_max_tokens: int = Field(default=4000, ge=1, description="单次上下文 token 预算")

    # ---- 流式与重试 ----
    stream_word_delay: float = Field(default=0.03, ge=0.0, description="模拟流式输出时每个词之间的间隔（秒）")
    chat_retry_attempts: int = Field(default=2, ge=1, le=5)
    chat_retry_delay: float = Field(default=0.5, ge=0.0)
    context_retry_attempts: int = Field(default=3, ge=1, le=5)
    context_retry_delay: float = Field(default=0.5, ge=0.0)
    plan_retry_attempts: int = Field(default=3, ge=1, le=5)
    plan_retry_delay: float = Field(default=1.0, ge=0.0)
    step_retry_attempts: int = Field(default=2, ge=1, le=5)
    step_retry_delay: float = Field(default=0.5, ge=0.0)
    plan_fallback_max_steps: int = Field(
        default=10,
        ge=1,
        description="计划响应不是 JSON 时，按行拆分得到的最大步骤数",
    )

    # ---- 诊断缓冲 ----
    error_log_max: int = Field(default=500, ge=1, description="错误日志环形缓冲容量")
    metrics_max: int = Field(default=1000, ge=1, description="性能指标保留条数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

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


settings = Settings()
