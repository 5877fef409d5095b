"""性能计时工具。

只用于埋点，不参与控制流：start/end 成对出现，生成以毫秒为单位的耗时指标。
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, List, Optional, Tuple, TypeVar

from corex_core.infrastructure.logging.logger import logger

T = TypeVar("T")


@dataclass
class PerformanceMetric:
    name: str
    duration: float  # 毫秒
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class PerformanceMonitor:
    """命名计时器。

    计时器以 (name, timer_id) 为键，同名的并发请求可以各自传入 timer_id
    （例如 message id）而互不覆盖；指标统一记在 name 下。
    """

    def __init__(self, max_metrics: int = 1000):
        self._metrics: Deque[PerformanceMetric] = deque(maxlen=max_metrics)
        self._timers: Dict[Tuple[str, Optional[Hashable]], float] = {}

    def start(self, name: str, timer_id: Optional[Hashable] = None) -> None:
        self._timers[(name, timer_id)] = time.perf_counter()

    def end(
        self,
        name: str,
        metadata: Optional[Dict[str, Any]] = None,
        timer_id: Optional[Hashable] = None,
    ) -> float:
        """结束计时并记录指标，返回耗时（毫秒）；没有对应 start 时返回 0。"""

        started = self._timers.pop((name, timer_id), None)
        if started is None:
            logger.warning(f'Performance: No start time for "{name}"')
            return 0.0
        duration = (time.perf_counter() - started) * 1000.0
        self._metrics.append(
            PerformanceMetric(name=name, duration=duration, timestamp=time.time(), metadata=dict(metadata or {}))
        )
        logger.info(
            f"Performance: {name} took {duration:.2f}ms",
            extra={"extra": {"metric": name, "duration_ms": round(duration, 2)}},
        )
        return duration

    async def measure(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> T:
        timer_id = object()
        self.start(name, timer_id)
        try:
            result = await operation()
        except BaseException:
            self.end(name, {**(metadata or {}), "error": True}, timer_id)
            raise
        self.end(name, metadata, timer_id)
        return result

    def is_running(self, name: str, timer_id: Optional[Hashable] = None) -> bool:
        return (name, timer_id) in self._timers

    def get_metrics(self, name: Optional[str] = None) -> List[PerformanceMetric]:
        if name is not None:
            return [m for m in self._metrics if m.name == name]
        return list(self._metrics)

    def get_average(self, name: str) -> float:
        metrics = self.get_metrics(name)
        if not metrics:
            return 0.0
        return sum(m.duration for m in metrics) / len(metrics)

    def get_stats(self, name: str) -> Dict[str, float]:
        durations = [m.duration for m in self.get_metrics(name)]
        if not durations:
            return {"count": 0, "average": 0.0, "min": 0.0, "max": 0.0, "total": 0.0}
        total = sum(durations)
        return {
            "count": len(durations),
            "average": total / len(durations),
            "min": min(durations),
            "max": max(durations),
            "total": total,
        }

    def clear(self) -> None:
        self._metrics.clear()
        self._timers.clear()

    def get_report(self) -> str:
        lines = ["Performance Report:", ""]
        names = list(dict.fromkeys(m.name for m in self._metrics))
        for name in names:
            stats = self.get_stats(name)
            lines.extend(
                [
                    f"{name}:",
                    f"  Count: {stats['count']}",
                    f"  Average: {stats['average']:.2f}ms",
                    f"  Min: {stats['min']:.2f}ms",
                    f"  Max: {stats['max']:.2f}ms",
                    f"  Total: {stats['total']:.2f}ms",
                    "",
                ]
            )
        return "\n".join(lines)
