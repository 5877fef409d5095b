"""核心引擎（Router）。

CoreEngine 是唯一的入口：dispatch 按 message.type 把入站消息路由到
RequestManager / ContextSelector / PlanExecutor，等待其完成，
并把组件发出的所有消息原样、按发出顺序转发给订阅者。

组件抛出的任何异常都会被转换为一条 error 消息，既不会被吞掉，也不会抛给调用方。
"""

from __future__ import annotations

import traceback
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from corex_core.chat.manager import RequestManager
from corex_core.chat.streaming import StreamingPipeline
from corex_core.context.selector import ContextSelector
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.errors import ErrorContext, ErrorSeverity
from corex_core.infrastructure.logging.logger import logger
from corex_core.planning.executor import PlanExecutor
from corex_core.protocol import INBOUND_TYPES, ErrorData, Message
from corex_core.providers.base import CompletionProvider, IndexProvider

Listener = Callable[[Message], None]

NOT_INITIALIZED = "Core engine not initialized, cannot handle message"


class CoreEngine:
    def __init__(
        self,
        completion_provider: CompletionProvider,
        index_provider: IndexProvider,
        runtime: Optional[CoreRuntime] = None,
        on_message: Optional[Listener] = None,
        project_id: Optional[str] = None,
    ):
        self.runtime = runtime or CoreRuntime.create()
        self._on_message = on_message
        self._listeners: List[Listener] = []
        if on_message is not None:
            self._listeners.append(on_message)
        self._initialized = False

        self.pipeline = StreamingPipeline(completion_provider, self.send_message, self.runtime)
        self.requests = RequestManager(self.pipeline, self.send_message, self.runtime)
        self.context = ContextSelector(index_provider, self.send_message, self.runtime, project_id=project_id)
        self.planner = PlanExecutor(completion_provider, self.send_message, self.runtime)

        self._handlers: Dict[str, Callable[[Any], Awaitable[Any]]] = {
            "chat/request": self._on_chat_request,
            "chat/stop": self._on_chat_stop,
            "chat/regenerate": self._on_chat_regenerate,
            "context/request": self._on_context_request,
            "planning/request": self._on_planning_request,
            "ide/file-open": self._on_file_open,
            "ide/file-edit": self._on_file_edit,
        }
        # 每个入站类型都必须有且只有一个处理器
        assert set(self._handlers) == set(INBOUND_TYPES)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("engine.already_initialized")
            return
        self._initialized = True
        logger.info(
            "engine.initialized",
            extra={"extra": {"project_id": self.context.project_id, "handlers": sorted(self._handlers)}},
        )

    async def shutdown(self) -> None:
        """取消所有进行中的请求与计划，清空上下文状态；重复调用无副作用。"""

        if not self._initialized:
            return
        await self.requests.cleanup()
        await self.planner.cleanup()
        await self.context.cleanup()
        self._initialized = False
        # 构造时传入的 on_message 保留，重新 initialize 后仍能收到消息
        self._listeners = [self._on_message] if self._on_message is not None else []
        logger.info("engine.shutdown")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """添加一个输出订阅者，返回取消订阅函数。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def send_message(self, message: Message) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:  # noqa: BLE001 - 一个订阅者失败不影响其他订阅者
                logger.exception("engine.listener_failed", extra={"extra": {"type": message.type}})

    async def dispatch(self, message: Union[Message, Mapping[str, Any]]) -> None:
        if not self._initialized:
            related_id = message.id if isinstance(message, Message) else message.get("id") or message.get("messageId")
            self.runtime.errors.handle(
                NOT_INITIALIZED,
                ErrorSeverity.ERROR,
                ErrorContext(component="CoreEngine", operation="dispatch", metadata={"message_id": related_id}),
            )
            self._send_error(NOT_INITIALIZED, related_id)
            return

        if not isinstance(message, Message):
            try:
                message = Message.from_dict(message)
            except Exception as exc:  # noqa: BLE001 - 非法消息转换为 error
                self.runtime.errors.handle(
                    exc, ErrorSeverity.ERROR, ErrorContext(component="CoreEngine", operation="dispatch")
                )
                self._send_error(str(exc), message.get("id") or message.get("messageId"))
                return

        perf = self.runtime.performance
        timer = f"handle-{message.type}"
        perf.start(timer, timer_id=message.id)
        context = ErrorContext(
            component="CoreEngine",
            operation="dispatch",
            metadata={"message_type": message.type, "message_id": message.id},
        )

        handler = self._handlers.get(message.type)
        if handler is None:
            unknown = f"Unknown message type: {message.type}"
            self.runtime.errors.handle(unknown, ErrorSeverity.WARNING, context)
            self._send_error(unknown, message.id)
            perf.end(timer, {"message_id": message.id, "unknown": True}, timer_id=message.id)
            return

        logger.info("engine.dispatch", extra={"extra": {"type": message.type, "message_id": message.id}})
        try:
            await handler(message.data)
        except Exception as exc:  # noqa: BLE001 - 转换为 error 消息
            self.runtime.errors.handle(exc, ErrorSeverity.ERROR, context)
            perf.end(timer, {"message_id": message.id, "error": True}, timer_id=message.id)
            self._send_error(
                str(exc) or type(exc).__name__,
                message.id,
                request_id=message.request_id,
                stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            )
            return
        perf.end(timer, {"message_id": message.id}, timer_id=message.id)

    def _send_error(
        self,
        error: str,
        related_message_id: Optional[str],
        request_id: Optional[str] = None,
        stack: Optional[str] = None,
    ) -> None:
        self.send_message(
            Message(
                type="error",
                data=ErrorData(
                    error=error,
                    request_id=request_id,
                    stack=stack,
                    context={"relatedMessageId": related_message_id},
                ),
            )
        )

    # ---- 路由表 ------------------------------------------------------

    async def _on_chat_request(self, data) -> None:
        await self.requests.handle_chat_request(
            request_id=data.request_id,
            message=data.message,
            context=data.context,
            model=data.model,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
        )

    async def _on_chat_stop(self, data) -> None:
        await self.requests.stop_generation(data.request_id)

    async def _on_chat_regenerate(self, data) -> None:
        await self.requests.regenerate_response(data.message_id, data.new_prompt)

    async def _on_context_request(self, data) -> None:
        await self.context.handle_context_request(
            request_id=data.request_id,
            query=data.query,
            max_files=data.max_files,
            max_tokens=data.max_tokens,
        )

    async def _on_planning_request(self, data) -> None:
        await self.planner.handle_plan_request(request_id=data.request_id, task=data.task, context=data.context)

    async def _on_file_open(self, data) -> None:
        self.context.track_file_access(data.file_path)

    async def _on_file_edit(self, data) -> None:
        self.context.invalidate_file(data.file_path)
        self.context.track_file_access(data.file_path)
