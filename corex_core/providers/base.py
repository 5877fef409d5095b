"""Provider 抽象接口。

核心引擎不直接依赖具体模型服务或索引实现，而是依赖以下协议：

- CompletionProvider: 给定 prompt、模型名、历史消息与取消令牌，返回完整文本。
  被取消时必须抛出 RequestCancelledError。
- IndexProvider: 返回某个项目的全部已索引文件。

这样可以在不改引擎代码的前提下接入更多后端（本地 Ollama、LM Studio、远端 API 等）。
"""

from typing import Any, List, Protocol

from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.models import ChatMessage, ProjectIndex


class CompletionProvider(Protocol):
    """补全服务协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - complete(...): 执行一次非流式补全，返回完整文本。
    """

    name: str

    async def complete(
        self,
        prompt: str,
        model: str,
        history: List[ChatMessage],
        cancellation_token: CancellationToken,
        **options: Any,
    ) -> str:
        """options 可包含 temperature / max_tokens，实现者可以忽略不支持的项。"""

        ...


class IndexProvider(Protocol):
    """项目索引协议。"""

    async def get_index(self, project_id: str) -> ProjectIndex:
        ...
