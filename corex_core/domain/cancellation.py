"""协作式取消令牌。"""

from __future__ import annotations

import asyncio
from typing import Optional

from .exceptions import RequestCancelledError


class CancellationToken:
    """与一个进行中的请求一一对应的取消标记。

    只有 RequestManager.stop_generation / cleanup 会调用 cancel()；
    StreamingPipeline 与 Provider 在每个挂起点读取它。
    """

    def __init__(self, request_id: Optional[str] = None) -> None:
        self.request_id = request_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(request_id=self.request_id)

    async def wait(self) -> None:
        """挂起直到令牌被取消。"""

        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(request_id={self.request_id!r}, cancelled={self.cancelled})"
