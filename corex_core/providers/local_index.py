"""本地文件系统索引实现。"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List

from corex_core.domain.exceptions import IndexUnavailableError
from corex_core.domain.models import IndexedFile, ProjectIndex


DEFAULT_IGNORED_DIRS: FrozenSet[str] = frozenset(
    {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", "target", ".idea"}
)


@dataclass
class LocalProjectIndex:
    """把 project_id 当作项目根目录，遍历其中的文本文件。

    跳过版本控制/依赖目录、二进制文件和超过 max_file_bytes 的文件；
    返回的 path 为相对项目根目录的 POSIX 路径。
    """

    max_file_bytes: int = 200_000
    max_files: int = 2000
    ignored_dirs: FrozenSet[str] = field(default=DEFAULT_IGNORED_DIRS)

    async def get_index(self, project_id: str) -> ProjectIndex:
        return await asyncio.to_thread(self._scan, project_id)

    # ---- helpers -------------------------------------------------

    def _scan(self, project_id: str) -> ProjectIndex:
        if not project_id:
            return ProjectIndex()
        root = Path(project_id).expanduser().resolve()
        if not root.is_dir():
            raise IndexUnavailableError(code="INDEX_UNAVAILABLE", message=f"project root not found: {project_id}")
        files: List[IndexedFile] = []
        for file in sorted(root.rglob("*")):
            if not file.is_file():
                continue
            rel = file.relative_to(root)
            if any(part in self.ignored_dirs for part in rel.parts[:-1]):
                continue
            try:
                stat = file.stat()
                if stat.st_size > self.max_file_bytes:
                    continue
                raw = file.read_bytes()
            except OSError:
                continue
            if b"\x00" in raw[:1024]:
                continue
            files.append(
                IndexedFile(
                    path=rel.as_posix(),
                    content=raw.decode("utf-8", errors="ignore"),
                    last_modified=stat.st_mtime,
                )
            )
            if len(files) >= self.max_files:
                break
        return ProjectIndex(files=files)
