"""引擎运行时上下文。

错误日志、性能计时器与最近访问文件表在一个引擎实例内是共享的，
它们集中在 CoreRuntime 里，通过构造函数传给各组件，而不是做成模块级单例。
同一进程内可以并存多个互不干扰的引擎。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from corex_core.config.settings import Settings, settings as default_settings
from corex_core.infrastructure.errors import ErrorHandler
from corex_core.infrastructure.performance import PerformanceMonitor


@dataclass
class CoreRuntime:
    settings: Settings
    errors: ErrorHandler
    performance: PerformanceMonitor
    # path -> 最近访问时间戳（秒），本会话内累积
    recent_files: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def create(cls, settings: Optional[Settings] = None, **overrides) -> "CoreRuntime":
        """按配置构造运行时；overrides 会覆盖 settings 中的同名字段。"""

        base = settings or default_settings
        if overrides:
            base = base.model_copy(update=overrides)
        return cls(
            settings=base,
            errors=ErrorHandler(max_errors=base.error_log_max),
            performance=PerformanceMonitor(max_metrics=base.metrics_max),
        )
