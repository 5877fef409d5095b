"""上下文文件选择。

为一次查询给索引中的文件打分、排序，并在文件数与 token 预算内贪心选取。

打分规则（结果截断到 1.0）：
- 查询中长度 > 3 的关键词每命中一次文件内容 +0.1；
- 每命中一次文件路径 +0.15；
- 查询与路径同时包含 component / service / util 时各 +0.2。

排序键为 relevance_score，本会话访问过的文件额外 +0.2；同分保持索引顺序。
"""

from __future__ import annotations

import time
from typing import Any, List, Mapping, Optional

from corex_core.chat.streaming import Emit
from corex_core.context.cache import ContextCache
from corex_core.domain.models import ContextFile, IndexedFile, ProjectIndex, estimate_tokens
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.errors import ErrorContext, retry
from corex_core.infrastructure.logging.logger import logger
from corex_core.protocol import ContextUpdateData, Message
from corex_core.providers.base import IndexProvider

DOMAIN_KEYWORDS = ("component", "service", "util")
RECENCY_BONUS = 0.2


def extract_keywords(query: str) -> List[str]:
    return [k for k in query.lower().split() if len(k) > 3]


def calculate_relevance(path: str, content: str, query: str) -> float:
    """计算单个文件对查询的相关度，范围 [0, 1]。"""

    query_lower = query.lower()
    content_lower = content.lower()
    path_lower = path.lower()
    keywords = extract_keywords(query)

    score = 0.0
    for keyword in keywords:
        if keyword in content_lower:
            score += 0.1
    for keyword in keywords:
        if keyword in path_lower:
            score += 0.15
    for domain in DOMAIN_KEYWORDS:
        if domain in query_lower and domain in path_lower:
            score += 0.2
    return min(score, 1.0)


class ContextSelector:
    def __init__(
        self,
        index_provider: IndexProvider,
        emit: Emit,
        runtime: CoreRuntime,
        project_id: Optional[str] = None,
        cache: Optional[ContextCache[str]] = None,
    ):
        self._index_provider = index_provider
        self._emit = emit
        self._runtime = runtime
        self._project_id = project_id
        # path -> content，30 分钟过期
        self._file_cache: ContextCache[str] = cache or ContextCache(max_size=100, ttl=30 * 60)

    @property
    def project_id(self) -> str:
        return self._project_id or self._runtime.settings.workspace_root

    def set_project(self, project_id: str) -> None:
        self._project_id = project_id

    async def handle_context_request(
        self,
        request_id: str,
        query: str,
        max_files: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> List[ContextFile]:
        """选出相关文件并发出一条 context/update。失败向上抛给 Router。"""

        perf = self._runtime.performance
        timer = f"context-request-{request_id}"
        perf.start(timer)
        try:
            files = await self.select_relevant_files(query, max_files=max_files, max_tokens=max_tokens)
        except BaseException:
            perf.end(timer, {"request_id": request_id, "error": True})
            raise
        total_tokens = sum(estimate_tokens(f.content) for f in files)
        self._emit(
            Message(
                type="context/update",
                data=ContextUpdateData(request_id=request_id, files=files, total_tokens=total_tokens),
            )
        )
        perf.end(timer, {"request_id": request_id, "file_count": len(files), "total_tokens": total_tokens})
        return files

    async def select_relevant_files(
        self,
        query: str,
        max_files: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> List[ContextFile]:
        settings = self._runtime.settings
        max_files = max_files or settings.context_max_files
        max_tokens = max_tokens or settings.context_max_tokens

        index = await self._fetch_index()
        if not index.files:
            logger.warning("context.empty_index", extra={"extra": {"project_id": self.project_id}})
            return []

        recent = self._runtime.recent_files
        scored: List[ContextFile] = []
        for file in index.files:
            self._file_cache.set(file.path, file.content)
            scored.append(
                ContextFile(
                    path=file.path,
                    content=file.content,
                    relevance_score=calculate_relevance(file.path, file.content, query),
                    last_accessed=recent.get(file.path, 0.0),
                )
            )
        # sorted 是稳定排序，同分保持索引顺序
        ranked = sorted(
            scored,
            key=lambda f: f.relevance_score + (RECENCY_BONUS if f.last_accessed > 0 else 0.0),
            reverse=True,
        )

        selected: List[ContextFile] = []
        total_tokens = 0
        for file in ranked:
            if len(selected) >= max_files:
                break
            cost = estimate_tokens(file.content)
            if total_tokens + cost > max_tokens:
                break
            selected.append(file)
            total_tokens += cost

        logger.info(
            "context.selected",
            extra={"extra": {"total_files": len(index.files), "selected": len(selected), "total_tokens": total_tokens}},
        )
        return selected

    def track_file_access(self, path: str) -> None:
        """记录访问时间，只影响之后的查询。"""

        self._runtime.recent_files[path] = time.time()

    def invalidate_file(self, path: str) -> None:
        self._file_cache.delete(path)

    def cached_content(self, path: str) -> Optional[str]:
        return self._file_cache.get(path)

    def clear_cache(self) -> None:
        self._file_cache.clear()
        self._runtime.recent_files.clear()
        logger.info("context.cache_cleared")

    async def cleanup(self) -> None:
        self.clear_cache()

    async def _fetch_index(self) -> ProjectIndex:
        settings = self._runtime.settings
        project_id = self.project_id
        raw = await retry(
            lambda: self._index_provider.get_index(project_id),
            max_attempts=settings.context_retry_attempts,
            delay=settings.context_retry_delay,
            context=ErrorContext(
                component="ContextSelector",
                operation="get_index",
                metadata={"project_id": project_id},
            ),
        )
        return _normalize_index(raw)


def _normalize_index(raw: Any) -> ProjectIndex:
    if raw is None:
        return ProjectIndex()
    if isinstance(raw, ProjectIndex):
        return raw
    if isinstance(raw, Mapping):
        return ProjectIndex.from_dict(raw)
    return ProjectIndex(files=[f for f in raw if isinstance(f, IndexedFile)])
