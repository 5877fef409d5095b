import pytest

from corex_core.api import service


class StaticProvider:
    name = "static"

    async def complete(self, prompt, model, history, cancellation_token, **options):
        return "static answer"


class EmptyIndex:
    async def get_index(self, project_id):
        return None


@pytest.mark.asyncio
async def test_get_core_engine_is_singleton(monkeypatch):
    monkeypatch.setattr(service, "create_provider", lambda name=None: StaticProvider())
    await service.reset_core_engine()

    engine = service.get_core_engine()
    assert service.get_core_engine() is engine
    assert not engine.is_initialized

    await service.reset_core_engine()
    assert service.get_core_engine() is not engine
    await service.reset_core_engine()


@pytest.mark.asyncio
async def test_dispatch_message_returns_wire_messages(monkeypatch):
    monkeypatch.setattr(service, "create_provider", lambda name=None: StaticProvider())
    monkeypatch.setattr(service, "LocalProjectIndex", EmptyIndex)
    await service.reset_core_engine()

    out = await service.dispatch_message(
        {"type": "context/request", "data": {"requestId": "c1", "query": "anything"}}
    )

    assert out[0]["type"] == "context/update"
    assert out[0]["data"] == {"requestId": "c1", "files": [], "totalTokens": 0}
    await service.reset_core_engine()
