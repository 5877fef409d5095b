import pytest

from corex_core.domain.exceptions import NetworkError, RequestCancelledError
from corex_core.infrastructure.errors import (
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    retry,
    with_error_handling,
)


def test_error_log_is_capped_ring_buffer():
    handler = ErrorHandler(max_errors=3)
    for i in range(5):
        handler.handle(f"e{i}", ErrorSeverity.WARNING)
    messages = [e.message for e in handler.get_errors()]
    assert messages == ["e2", "e3", "e4"]


def test_recovered_only_set_explicitly():
    handler = ErrorHandler()
    entry = handler.handle(ValueError("boom"), ErrorSeverity.ERROR, ErrorContext(component="X", operation="y"))
    assert entry.recovered is False
    assert entry.message == "boom"
    assert handler.get_unrecovered() == [entry]

    assert handler.mark_recovered(entry.id) is True
    assert handler.get_unrecovered() == []
    assert handler.mark_recovered("missing") is False


def test_stats_and_filters():
    handler = ErrorHandler()
    handler.handle("a", ErrorSeverity.INFO)
    handler.handle("b", ErrorSeverity.WARNING)
    handler.handle("c", ErrorSeverity.WARNING)
    stats = handler.get_stats()
    assert stats["total"] == 3
    assert stats["by_severity"]["warning"] == 2
    assert stats["by_severity"]["critical"] == 0
    assert len(handler.get_errors(ErrorSeverity.WARNING)) == 2
    assert "Total Errors: 3" in handler.get_report()
    handler.clear()
    assert handler.get_stats()["total"] == 0


def test_on_error_subscription():
    handler = ErrorHandler()
    seen = []
    unsubscribe = handler.on_error(seen.append)
    handler.handle("first")
    unsubscribe()
    handler.handle("second")
    assert [e.message for e in seen] == ["first"]


def test_callback_failure_does_not_break_handle():
    handler = ErrorHandler()

    def bad(_entry):
        raise RuntimeError("listener")

    handler.on_error(bad)
    entry = handler.handle("still recorded")
    assert handler.get_errors() == [entry]


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failure():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError(code="NETWORK_ERROR", message="down")
        return "ok"

    assert await retry(flaky, max_attempts=3, delay=0) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_awaits_lambda_returning_coroutine():
    calls = []

    async def compute(value):
        calls.append(value)
        if len(calls) == 1:
            raise NetworkError(code="NETWORK_ERROR", message="blip")
        return value * 2

    assert await retry(lambda: compute(21), max_attempts=2, delay=0) == 42
    assert calls == [21, 21]


@pytest.mark.asyncio
async def test_retry_reraises_last_failure():
    calls = []

    async def always_fails():
        calls.append(1)
        raise ValueError(f"attempt {len(calls)}")

    with pytest.raises(ValueError, match="attempt 2"):
        await retry(always_fails, max_attempts=2, delay=0)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_never_retries_cancellation():
    calls = []

    async def cancelled():
        calls.append(1)
        raise RequestCancelledError(request_id="r1")

    with pytest.raises(RequestCancelledError):
        await retry(cancelled, max_attempts=3, delay=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_does_not_write_error_log():
    handler = ErrorHandler()

    async def fails():
        raise ValueError("x")

    with pytest.raises(ValueError):
        await retry(fails, max_attempts=2, delay=0, context=ErrorContext(component="T"))
    assert handler.get_errors() == []


@pytest.mark.asyncio
async def test_with_error_handling_records_and_returns_none():
    handler = ErrorHandler()

    async def fails():
        raise ValueError("bad")

    async def works():
        return 42

    assert await with_error_handling(fails, handler, ErrorContext(component="T", operation="op")) is None
    assert await with_error_handling(works, handler) == 42
    errors = handler.get_errors()
    assert len(errors) == 1
    assert errors[0].context.operation == "op"
    assert errors[0].stack
