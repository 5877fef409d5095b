"""核心引擎共享的数据模型。

本模块定义了各组件之间流转的标准数据结构：

- ChatMessage: 发给 CompletionProvider 的一条历史消息（system/user/assistant）。
- IndexedFile / ProjectIndex: IndexProvider 返回的项目索引。
- ContextFile: 针对某次查询打分后的候选文件。
- PlanStep / Plan: 规划执行器拥有的计划及其步骤。

这些结构只存在于内存中，不做持久化；序列化为线路格式（camelCase）
由 protocol 模块负责。
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 OpenAI 风格接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

PlanStatus = Literal["planning", "executing", "completed", "failed"]
StepStatus = Literal["pending", "in-progress", "completed", "failed"]

# 步骤状态只能向前推进
_STEP_ORDER: Dict[str, int] = {"pending": 0, "in-progress": 1, "completed": 2, "failed": 2}


@dataclass
class ChatMessage:
    """一条对话消息。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexedFile:
    """索引中的单个文件。"""

    path: str
    content: str
    last_modified: float = 0.0


@dataclass
class ProjectIndex:
    """IndexProvider.get_index 的返回值。"""

    files: List[IndexedFile] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProjectIndex":
        """从 {files: [{path, content, lastModified}]} 结构构造索引。"""

        if not data:
            return cls()
        files = []
        for item in data.get("files") or []:
            files.append(
                IndexedFile(
                    path=str(item.get("path", "")),
                    content=str(item.get("content") or ""),
                    last_modified=float(item.get("lastModified") or item.get("last_modified") or 0),
                )
            )
        return cls(files=files)


@dataclass
class ContextFile:
    """针对一次查询选出的上下文文件。

    relevance_score 落在 [0, 1]；last_accessed 为 0 表示本会话内从未访问过。
    """

    path: str
    content: str
    relevance_score: float
    last_accessed: float = 0.0


@dataclass
class PlanStep:
    id: str
    description: str
    status: StepStatus = "pending"
    result: Optional[str] = None
    error: Optional[str] = None

    def advance(self, status: StepStatus) -> None:
        """推进步骤状态；不允许回退（例如 completed -> in-progress）。"""

        if _STEP_ORDER[status] < _STEP_ORDER[self.status]:
            raise ValueError(f"step {self.id} cannot move from {self.status} to {status}")
        self.status = status


@dataclass
class Plan:
    """由任务描述分解出的有序步骤列表。

    由 PlanExecutor 从创建一直持有到终态（completed/failed），之后丢弃。
    """

    id: str
    task: str
    steps: List[PlanStep]
    current_step: int = 0
    status: PlanStatus = "planning"

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == "completed")


def estimate_tokens(text: str) -> int:
    """粗略估算 token 数：词数 × 1.3，向上取整。"""

    return math.ceil(len(text.split()) * 1.3)
