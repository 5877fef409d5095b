"""流式输出管线。

从 CompletionProvider 取得完整回答后，按词切分并逐个发出 streaming/token，
最后发出一条 streaming/complete。逐词模拟由 WordChunker 完成：
接入真正支持 token 流的后端时，只需替换 chunker，RequestManager 无需改动。
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.models import ChatMessage, estimate_tokens
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.logging.logger import logger
from corex_core.protocol import Message, StreamingCompleteData, StreamingTokenData
from corex_core.providers.base import CompletionProvider

Emit = Callable[[Message], None]


class WordChunker:
    """把完整文本按空白拆成词逐个产出，词与词之间暂停 delay 秒。"""

    def __init__(self, delay: float = 0.03):
        self.delay = delay

    async def chunks(self, text: str, token: CancellationToken) -> AsyncIterator[str]:
        for word in text.split():
            token.raise_if_cancelled()
            yield word
            await asyncio.sleep(self.delay)


class StreamingPipeline:
    def __init__(
        self,
        provider: CompletionProvider,
        emit: Emit,
        runtime: CoreRuntime,
        chunker: Optional[WordChunker] = None,
    ):
        self._provider = provider
        self._emit = emit
        self._runtime = runtime
        self._chunker = chunker or WordChunker(runtime.settings.stream_word_delay)

    async def stream_response(
        self,
        *,
        request_id: str,
        message: str,
        cancellation_token: CancellationToken,
        context: Optional[List[str]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """获取回答并以 token 事件的形式发出，返回完整文本。

        在任一挂起点观察到取消时抛出 RequestCancelledError，之后不再发出任何事件。
        """

        started = time.monotonic()
        log_ctx = {"request_id": request_id, "model": model}
        logger.info("streaming.start", extra={"extra": log_ctx})

        response = await self._get_response(message, model, context, cancellation_token, temperature, max_tokens)
        cancellation_token.raise_if_cancelled()

        accumulated = ""
        async for word in self._chunker.chunks(response, cancellation_token):
            accumulated = f"{accumulated} {word}" if accumulated else word
            self._emit(
                Message(
                    type="streaming/token",
                    data=StreamingTokenData(request_id=request_id, token=word, accumulated=accumulated),
                )
            )
        cancellation_token.raise_if_cancelled()

        duration = int((time.monotonic() - started) * 1000)
        self._emit(
            Message(
                type="streaming/complete",
                data=StreamingCompleteData(
                    request_id=request_id,
                    full_response=response,
                    tokens_used=estimate_tokens(response),
                    duration=duration,
                ),
            )
        )
        logger.info("streaming.complete", extra={"extra": {**log_ctx, "duration_ms": duration}})
        return response

    async def _get_response(
        self,
        message: str,
        model: Optional[str],
        context: Optional[List[str]],
        token: CancellationToken,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> str:
        token.raise_if_cancelled()
        history: List[ChatMessage] = []
        if context:
            history.append(ChatMessage(role="system", content="Context:\n" + "\n\n".join(context)))
        options: Dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["max_tokens"] = max_tokens
        return await self._provider.complete(
            message,
            model or self._runtime.settings.default_model,
            history,
            token,
            **options,
        )
