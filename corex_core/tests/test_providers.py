import pytest

from corex_core.domain.exceptions import IndexUnavailableError
from corex_core.providers import LocalProjectIndex, OpenAICompatibleClient, create_provider
from corex_core.providers.registry import get_provider_config


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "lmstudio"
        http_timeout = 1.0
        lmstudio_base_url = "http://localhost:1234/v1"

    monkeypatch.setattr("corex_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, OpenAICompatibleClient)
    assert provider.name == "lmstudio"


def test_create_provider_explicit(monkeypatch):
    class DummySettings:
        default_provider = "ollama"
        http_timeout = 1.0
        openai_api_key = "sk-1234567890"

    monkeypatch.setattr("corex_core.providers.settings", DummySettings())
    provider = create_provider("OpenAI")
    assert provider.name == "openai"
    assert provider.api_key == "sk-1234567890"


def test_unknown_provider():
    with pytest.raises(KeyError):
        get_provider_config("nope")


@pytest.mark.asyncio
async def test_local_index_reads_text_files(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_text("export const app = 1", encoding="utf-8")
    (tmp_path / "README.md").write_text("# readme", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("ignored", encoding="utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\x00\x00binary")

    index = await LocalProjectIndex().get_index(str(tmp_path))

    paths = [f.path for f in index.files]
    assert paths == ["README.md", "src/app.ts"]
    assert index.files[1].content == "export const app = 1"
    assert index.files[1].last_modified > 0


@pytest.mark.asyncio
async def test_local_index_limits(tmp_path):
    for i in range(5):
        (tmp_path / f"f{i}.txt").write_text("x" * (i * 10), encoding="utf-8")

    index = await LocalProjectIndex(max_file_bytes=25, max_files=2).get_index(str(tmp_path))

    assert [f.path for f in index.files] == ["f0.txt", "f1.txt"]


@pytest.mark.asyncio
async def test_local_index_missing_root(tmp_path):
    with pytest.raises(IndexUnavailableError):
        await LocalProjectIndex().get_index(str(tmp_path / "missing"))
    assert (await LocalProjectIndex().get_index("")).files == []
