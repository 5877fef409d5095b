import asyncio

import pytest

from corex_core.domain.exceptions import IndexUnavailableError
from corex_core.domain.models import IndexedFile, ProjectIndex
from corex_core.engine.core import NOT_INITIALIZED, CoreEngine
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.errors import ErrorSeverity
from corex_core.protocol import (
    INBOUND_TYPES,
    create_chat_request,
    create_context_request,
    create_file_edit,
    create_file_open,
    create_plan_request,
    create_stop_generation,
    validate_message,
)


class EchoProvider:
    name = "echo"

    def __init__(self, text="hello world"):
        self.text = text
        self.started = asyncio.Event()
        self.release = None

    async def complete(self, prompt, model, history, cancellation_token, **options):
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        cancellation_token.raise_if_cancelled()
        if "Answer with JSON only" in prompt:
            return '{"steps": ["inspect", "fix"]}'
        return self.text


class MemoryIndex:
    def __init__(self, files=None, broken=False):
        self.files = files or []
        self.broken = broken

    async def get_index(self, project_id):
        if self.broken:
            raise IndexUnavailableError(code="INDEX_UNAVAILABLE", message="index offline")
        return ProjectIndex(files=[IndexedFile(path=p, content=c) for p, c in self.files])


def make_engine(provider=None, index=None):
    emitted = []
    runtime = CoreRuntime.create(
        stream_word_delay=0,
        chat_retry_delay=0,
        context_retry_delay=0,
        plan_retry_delay=0,
        step_retry_delay=0,
    )
    engine = CoreEngine(
        provider or EchoProvider(),
        index or MemoryIndex([("src/a.ts", "export const a = 1")]),
        runtime=runtime,
        on_message=emitted.append,
        project_id="proj",
    )
    return engine, emitted, runtime


@pytest.mark.asyncio
async def test_dispatch_before_initialize_reports_error():
    engine, emitted, runtime = make_engine()
    message = create_chat_request("hi", request_id="r1")

    await engine.dispatch(message)

    assert len(emitted) == 1
    assert emitted[0].type == "error"
    assert emitted[0].data.error == NOT_INITIALIZED
    assert emitted[0].data.context == {"relatedMessageId": message.id}
    assert len(runtime.errors.get_errors(ErrorSeverity.ERROR)) == 1


@pytest.mark.asyncio
async def test_chat_request_is_routed_and_forwarded():
    engine, emitted, runtime = make_engine()
    await engine.initialize()

    await engine.dispatch(create_chat_request("hi", request_id="r1"))

    assert [m.type for m in emitted] == [
        "streaming/start",
        "streaming/token",
        "streaming/token",
        "streaming/complete",
    ]
    assert all(validate_message(m) for m in emitted)
    assert runtime.performance.get_metrics("handle-chat/request")


@pytest.mark.asyncio
async def test_wire_dict_is_accepted():
    engine, emitted, _ = make_engine()
    await engine.initialize()

    await engine.dispatch(
        {"id": "m1", "type": "context/request", "timestamp": 1, "data": {"requestId": "c1", "query": "export"}}
    )

    assert [m.type for m in emitted] == ["context/update"]
    assert emitted[0].data.request_id == "c1"


@pytest.mark.asyncio
async def test_invalid_wire_payload_becomes_error():
    engine, emitted, _ = make_engine()
    await engine.initialize()

    await engine.dispatch({"id": "m1", "type": "chat/request", "data": {"requestId": "r1"}})

    assert [m.type for m in emitted] == ["error"]
    assert emitted[0].data.context == {"relatedMessageId": "m1"}


@pytest.mark.asyncio
async def test_mistyped_chat_payload_is_rejected_before_routing():
    engine, emitted, _ = make_engine()
    await engine.initialize()

    await engine.dispatch({"id": "m2", "type": "chat/request", "data": {"requestId": "r1", "message": None}})

    assert [m.type for m in emitted] == ["error"]
    assert "message" in emitted[0].data.error
    assert engine.requests.active_request_count() == 0


@pytest.mark.asyncio
async def test_constructor_listener_survives_restart():
    engine, emitted, _ = make_engine()
    extra = []
    engine.subscribe(extra.append)
    await engine.initialize()
    await engine.shutdown()
    await engine.initialize()

    await engine.dispatch(create_chat_request("hi", request_id="r1"))

    assert emitted[0].type == "streaming/start"
    assert emitted[-1].type == "streaming/complete"
    assert extra == []


@pytest.mark.asyncio
async def test_unknown_type_is_warning_plus_error_message():
    engine, emitted, runtime = make_engine()
    await engine.initialize()

    await engine.dispatch({"id": "m1", "type": "chat/teleport", "data": {}})

    assert len(emitted) == 1
    assert emitted[0].data.error == "Unknown message type: chat/teleport"
    assert len(runtime.errors.get_errors(ErrorSeverity.WARNING)) == 1
    assert runtime.errors.get_errors(ErrorSeverity.ERROR) == []


@pytest.mark.asyncio
async def test_component_failure_becomes_single_error_message():
    engine, emitted, runtime = make_engine(index=MemoryIndex(broken=True))
    await engine.initialize()
    message = create_context_request("anything", request_id="c1")

    await engine.dispatch(message)

    assert len(emitted) == 1
    error = emitted[0]
    assert error.type == "error"
    assert error.data.error == "index offline"
    assert error.data.request_id == "c1"
    assert error.data.context == {"relatedMessageId": message.id}
    assert "IndexUnavailableError" in error.data.stack
    assert len(runtime.errors.get_errors(ErrorSeverity.ERROR)) == 1
    metric = runtime.performance.get_metrics("handle-context/request")[0]
    assert metric.metadata["error"] is True


@pytest.mark.asyncio
async def test_stop_unknown_request_emits_nothing():
    engine, emitted, runtime = make_engine()
    await engine.initialize()

    await engine.dispatch(create_stop_generation("missing"))

    assert emitted == []
    assert len(runtime.errors.get_errors(ErrorSeverity.WARNING)) == 1


@pytest.mark.asyncio
async def test_concurrent_stop_cancels_chat():
    provider = EchoProvider("never streamed")
    provider.release = asyncio.Event()
    engine, emitted, _ = make_engine(provider)
    await engine.initialize()

    chat = asyncio.create_task(engine.dispatch(create_chat_request("hi", request_id="r1")))
    await provider.started.wait()
    await engine.dispatch(create_stop_generation("r1"))
    provider.release.set()
    await chat

    assert [m.type for m in emitted] == ["streaming/start"]
    assert engine.requests.active_request_count() == 0


@pytest.mark.asyncio
async def test_plan_request_is_routed():
    engine, emitted, _ = make_engine()
    await engine.initialize()

    await engine.dispatch(create_plan_request("repair build", request_id="p1"))

    assert emitted[-1].type == "planning/complete"
    assert emitted[-1].data.success is True
    assert emitted[-1].data.plan.total_steps == 2


@pytest.mark.asyncio
async def test_ide_messages_track_access_and_invalidate():
    engine, emitted, runtime = make_engine()
    await engine.initialize()
    await engine.dispatch(create_context_request("export", request_id="c1"))
    assert engine.context.cached_content("src/a.ts") is not None

    await engine.dispatch(create_file_open("src/b.ts"))
    await engine.dispatch(create_file_edit("src/a.ts", "changed"))

    assert set(runtime.recent_files) == {"src/a.ts", "src/b.ts"}
    assert engine.context.cached_content("src/a.ts") is None
    assert [m.type for m in emitted] == ["context/update"]


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe():
    engine, _, _ = make_engine()
    await engine.initialize()
    extra = []
    unsubscribe = engine.subscribe(extra.append)

    await engine.dispatch(create_file_open("x"))
    await engine.dispatch({"type": "nope"})
    unsubscribe()
    await engine.dispatch({"type": "nope"})

    assert len(extra) == 1


@pytest.mark.asyncio
async def test_initialize_and_shutdown_are_idempotent():
    engine, emitted, _ = make_engine()
    assert not engine.is_initialized
    await engine.initialize()
    await engine.initialize()
    assert engine.is_initialized

    await engine.shutdown()
    await engine.shutdown()
    assert not engine.is_initialized
    assert engine.requests.active_request_count() == 0
    assert engine.planner.active_plan_count() == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_chat():
    provider = EchoProvider("never streamed")
    provider.release = asyncio.Event()
    engine, emitted, runtime = make_engine(provider)
    await engine.initialize()

    chat = asyncio.create_task(engine.dispatch(create_chat_request("hi", request_id="r1")))
    await provider.started.wait()
    await engine.shutdown()
    provider.release.set()
    await chat

    assert [m.type for m in emitted] == ["streaming/start"]
    assert runtime.errors.get_errors(ErrorSeverity.ERROR) == []


def test_every_inbound_type_has_a_handler():
    engine, _, _ = make_engine()
    assert set(engine._handlers) == set(INBOUND_TYPES)
