"""聊天请求管理。

RequestManager 持有所有进行中的聊天请求（request_id -> CancellationToken），
把实际输出委托给 StreamingPipeline，并提供 stop / regenerate / cleanup。
"""

from __future__ import annotations

import traceback
from typing import Dict, List, Optional

from corex_core.chat.streaming import Emit, StreamingPipeline
from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.exceptions import RequestCancelledError
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.errors import ErrorContext, ErrorSeverity, retry
from corex_core.infrastructure.logging.logger import logger
from corex_core.protocol import Message, StreamingErrorData, StreamingStartData, generate_message_id

REGENERATE_REQUIRES_PROMPT = "Regeneration requires the original user message (newPrompt). Please provide it."


class RequestManager:
    def __init__(self, pipeline: StreamingPipeline, emit: Emit, runtime: CoreRuntime):
        self._pipeline = pipeline
        self._emit = emit
        self._runtime = runtime
        self._active: Dict[str, CancellationToken] = {}

    async def handle_chat_request(
        self,
        request_id: str,
        message: str,
        context: Optional[List[str]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        """处理一次聊天请求。

        发出 streaming/start，随后在有限重试下运行流式管线。
        取消只记录 info 追踪；其他失败记录 error 并发出 streaming/error。
        无论结果如何，令牌都会从活动表中移除。
        """

        settings = self._runtime.settings
        perf = self._runtime.performance
        timer = f"ai-chat-{request_id}"
        perf.start(timer)

        token = CancellationToken(request_id)
        context_info = ErrorContext(
            component="RequestManager",
            operation="handle_chat_request",
            metadata={"request_id": request_id, "model": model},
        )

        try:
            self._active[request_id] = token
            self._emit(
                Message(
                    type="streaming/start",
                    data=StreamingStartData(request_id=request_id, model=model or "default"),
                )
            )
            context_info = context_info.with_metadata(message_length=len(message))
            await retry(
                lambda: self._pipeline.stream_response(
                    request_id=request_id,
                    message=message,
                    context=context,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    cancellation_token=token,
                ),
                max_attempts=settings.chat_retry_attempts,
                delay=settings.chat_retry_delay,
                context=context_info,
            )
            logger.info("chat.complete", extra={"extra": {"request_id": request_id}})
            perf.end(timer, {"request_id": request_id, "model": model, "message_length": len(message)})
        except RequestCancelledError:
            logger.info("chat.cancelled", extra={"extra": {"request_id": request_id}})
            perf.end(timer, {"request_id": request_id, "aborted": True})
        except Exception as exc:  # noqa: BLE001 - 转换为 streaming/error
            self._runtime.errors.handle(
                exc,
                ErrorSeverity.ERROR,
                context_info.with_metadata(max_attempts=settings.chat_retry_attempts),
            )
            perf.end(timer, {"request_id": request_id, "error": True})
            self._emit(
                Message(
                    type="streaming/error",
                    data=StreamingErrorData(
                        request_id=request_id,
                        error=str(exc) or type(exc).__name__,
                        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                    ),
                )
            )
        finally:
            # stop_generation 可能已经移除；同一 request_id 被新请求复用时不误删
            if self._active.get(request_id) is token:
                del self._active[request_id]

    async def stop_generation(self, request_id: str) -> bool:
        """取消进行中的请求。未知或已结束的请求只记录 warning，不抛异常。"""

        token = self._active.pop(request_id, None)
        if token is None:
            self._runtime.errors.handle(
                f"No active request found: {request_id}",
                ErrorSeverity.WARNING,
                ErrorContext(component="RequestManager", operation="stop_generation", metadata={"request_id": request_id}),
            )
            return False
        token.cancel()
        logger.info("chat.stopped", extra={"extra": {"request_id": request_id}})
        return True

    async def regenerate_response(self, message_id: str, new_prompt: Optional[str] = None) -> Optional[str]:
        """用调用方提供的原始 prompt 重新生成回答。

        原始 prompt 必须由调用方提供；缺失时发出 streaming/error 并返回 None。
        成功时返回新生成的 request_id。
        """

        if not new_prompt:
            self._emit(
                Message(
                    type="streaming/error",
                    data=StreamingErrorData(request_id=f"regen-{message_id}", error=REGENERATE_REQUIRES_PROMPT),
                )
            )
            return None
        regen_request_id = generate_message_id(f"regen-{message_id}")
        logger.info(
            "chat.regenerate",
            extra={"extra": {"message_id": message_id, "request_id": regen_request_id}},
        )
        await self.handle_chat_request(request_id=regen_request_id, message=new_prompt)
        return regen_request_id

    def active_request_count(self) -> int:
        return len(self._active)

    def is_request_active(self, request_id: str) -> bool:
        return request_id in self._active

    async def cleanup(self) -> None:
        """取消所有进行中的请求并清空活动表。"""

        if self._active:
            logger.info("chat.cleanup", extra={"extra": {"active": len(self._active)}})
        for token in self._active.values():
            token.cancel()
        self._active.clear()
