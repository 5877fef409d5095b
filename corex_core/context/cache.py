"""带 TTL 的 LRU 缓存，用于保存上下文相关数据（例如文件内容）。

过期与淘汰交给 cachetools.TTLCache；这里只在其上记录访问次数等统计信息。
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

from corex_core.infrastructure.logging.logger import logger

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    timestamp: float
    access_count: int = 0


class ContextCache(Generic[T]):
    def __init__(self, max_size: int = 100, ttl: float = 60 * 60, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl = ttl  # 秒
        self._clock = clock
        self._entries: TTLCache = TTLCache(maxsize=max_size, ttl=ttl, timer=clock)

    def get(self, key: str) -> Optional[T]:
        entry: Optional[CacheEntry[T]] = self._entries.get(key)
        if entry is None:
            return None
        entry.access_count += 1
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def has(self, key: str) -> bool:
        return key in self._entries

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        self._entries.expire()
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def cleanup(self) -> int:
        """清除所有过期条目，返回清除数量。"""

        expired = self._entries.expire()
        if expired:
            logger.info(f"ContextCache: Cleaned up {len(expired)} expired entries")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        entries = self._live_entries()
        return {
            "size": len(entries),
            "max_size": self.max_size,
            "usage": f"{len(entries) / self.max_size * 100:.1f}%",
            "total_accesses": sum(e.access_count for _, e in entries),
            "average_age": sum(now - e.timestamp for _, e in entries) / len(entries) if entries else 0.0,
            "oldest_entry": min((e.timestamp for _, e in entries), default=None),
        }

    def get_most_accessed(self, count: int = 10) -> List[Dict[str, Any]]:
        ranked = sorted(self._live_entries(), key=lambda kv: kv[1].access_count, reverse=True)
        return [{"key": k, "access_count": e.access_count} for k, e in ranked[:count]]

    def invalidate(self, predicate: Callable[[str, T], bool]) -> int:
        doomed = [k for k, e in self._live_entries() if predicate(k, e.value)]
        for key in doomed:
            self._entries.pop(key, None)
        if doomed:
            logger.info(f"ContextCache: Invalidated {len(doomed)} entries")
        return len(doomed)

    def _live_entries(self) -> List[tuple]:
        self._entries.expire()
        return list(self._entries.items())
