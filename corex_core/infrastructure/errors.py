"""集中式错误处理与重试工具。

- ErrorHandler: 分级记录错误，保存在容量有限的环形缓冲中，
  同时按级别写入 corex_core logger。它只用于事后排查，从不影响控制流。
- retry: 基于 tenacity 的异步重试包装器，所有组件共用。
  取消（RequestCancelledError）永远不会被重试。
"""

from __future__ import annotations

import logging
import time
import traceback
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar, Union
from uuid import uuid4

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_incrementing

from corex_core.domain.exceptions import RequestCancelledError
from corex_core.infrastructure.logging.logger import logger

T = TypeVar("T")


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"  # 预留：需要停机的情况，目前没有组件使用


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """错误发生的位置：组件、操作以及附加元数据。"""

    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, **extra: Any) -> "ErrorContext":
        return ErrorContext(
            component=self.component,
            operation=self.operation,
            metadata={**self.metadata, **extra},
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"component": self.component, "operation": self.operation, "metadata": dict(self.metadata)}


@dataclass
class ErrorLog:
    """一条错误记录。recovered 只能被 mark_recovered 显式置为 True。"""

    id: str
    message: str
    severity: ErrorSeverity
    timestamp: float
    context: Optional[ErrorContext] = None
    stack: Optional[str] = None
    recovered: bool = False


class ErrorHandler:
    def __init__(self, max_errors: int = 500):
        self._errors: Deque[ErrorLog] = deque(maxlen=max_errors)
        self._callbacks: List[Callable[[ErrorLog], None]] = []

    @property
    def max_errors(self) -> int:
        return self._errors.maxlen or 0

    def handle(
        self,
        error: Union[BaseException, str],
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
    ) -> ErrorLog:
        """记录一条错误，返回对应的 ErrorLog。"""

        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = _format_stack(error)
        else:
            message = error
            stack = None
        entry = ErrorLog(
            id=f"err-{int(time.time() * 1000)}-{uuid4().hex[:8]}",
            message=message,
            severity=severity,
            timestamp=time.time(),
            context=context,
            stack=stack,
        )
        self._log(entry)
        # deque(maxlen) 自动淘汰最旧的记录
        self._errors.append(entry)
        for callback in list(self._callbacks):
            try:
                callback(entry)
            except Exception:  # noqa: BLE001 - 订阅者异常不能影响调用方
                logger.exception("error_handler.callback_failed")
        return entry

    def mark_recovered(self, error_id: str) -> bool:
        for entry in self._errors:
            if entry.id == error_id:
                entry.recovered = True
                return True
        return False

    def get_errors(self, severity: Optional[ErrorSeverity] = None) -> List[ErrorLog]:
        if severity is not None:
            return [e for e in self._errors if e.severity == severity]
        return list(self._errors)

    def get_unrecovered(self) -> List[ErrorLog]:
        return [e for e in self._errors if not e.recovered]

    def clear(self) -> None:
        self._errors.clear()

    def on_error(self, callback: Callable[[ErrorLog], None]) -> Callable[[], None]:
        """订阅新错误，返回取消订阅函数。"""

        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def get_stats(self) -> Dict[str, Any]:
        by_severity = {s.value: 0 for s in ErrorSeverity}
        unrecovered = 0
        for entry in self._errors:
            by_severity[entry.severity.value] += 1
            if not entry.recovered:
                unrecovered += 1
        return {"total": len(self._errors), "by_severity": by_severity, "unrecovered": unrecovered}

    def get_report(self) -> str:
        stats = self.get_stats()
        lines = ["Error Report:", ""]
        lines.append(f"Total Errors: {stats['total']}")
        lines.append(f"Unrecovered: {stats['unrecovered']}")
        lines.append("")
        lines.append("By Severity:")
        for severity in ErrorSeverity:
            lines.append(f"  {severity.value.capitalize()}: {stats['by_severity'][severity.value]}")
        if stats["unrecovered"]:
            lines.append("")
            lines.append("Recent Unrecovered Errors:")
            for entry in self.get_unrecovered()[-5:]:
                lines.append(f"  - [{entry.severity.value}] {entry.message}")
        return "\n".join(lines)

    @staticmethod
    def _log(entry: ErrorLog) -> None:
        extra: Dict[str, Any] = {"error_id": entry.id, "severity": entry.severity.value}
        if entry.context is not None:
            extra.update(entry.context.as_dict())
        logger.log(
            _LOG_LEVELS[entry.severity],
            f"[{entry.severity.value.upper()}] {entry.message}",
            extra={"extra": extra},
        )


def _format_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def _is_retryable(exc: BaseException) -> bool:
    # asyncio.CancelledError 等 BaseException 以及显式取消都直接抛出
    return isinstance(exc, Exception) and not isinstance(exc, RequestCancelledError)


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    delay: float = 1.0,
    context: Optional[ErrorContext] = None,
) -> T:
    """带线性退避（delay × attempt）的异步重试。

    中间失败只写入 logger 作为追踪；最后一次失败原样抛出，
    由最终处理它的组件写入一条 ErrorLog。
    """

    ctx = context.as_dict() if context else {}

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"Attempt {state.attempt_number}/{max_attempts} failed, retrying...",
            extra={"extra": {**ctx, "attempt": state.attempt_number, "error": str(exc)}},
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_before_sleep,
        reraise=True,
    )
    # operation 常是返回协程的 lambda，必须在 attempt 内显式 await
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise RuntimeError("retry loop exited without a result")


async def with_error_handling(
    operation: Callable[[], Awaitable[T]],
    error_handler: ErrorHandler,
    context: Optional[ErrorContext] = None,
) -> Optional[T]:
    """执行 operation；失败时记录 error 并返回 None。"""

    try:
        return await operation()
    except RequestCancelledError:
        raise
    except Exception as exc:  # noqa: BLE001 - 转换为错误日志
        error_handler.handle(exc, ErrorSeverity.ERROR, context)
        return None
