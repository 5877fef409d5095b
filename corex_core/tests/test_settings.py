import pytest
from pydantic import ValidationError

from corex_core.config.settings import Settings
from corex_core.engine.runtime import CoreRuntime


def test_defaults():
    s = Settings(_env_file=None)
    assert s.default_provider == "ollama"
    assert s.context_max_files == 5
    assert s.context_max_tokens == 4000
    assert s.chat_retry_attempts == 2
    assert s.context_retry_attempts == 3
    assert s.plan_retry_attempts == 3
    assert s.step_retry_attempts == 2
    assert s.plan_fallback_max_steps == 10
    assert s.error_log_max == 500


def test_yaml_config_file(tmp_path, monkeypatch):
    config = tmp_path / "corex.yaml"
    config.write_text("default_provider: lmstudio\ncontext_max_files: 8\n", encoding="utf-8")
    monkeypatch.setenv("COREX_CONFIG_FILE", str(config))

    s = Settings(_env_file=None)

    assert s.default_provider == "lmstudio"
    assert s.context_max_files == 8


def test_env_overrides_yaml(tmp_path, monkeypatch):
    config = tmp_path / "corex.yaml"
    config.write_text("default_model: from-yaml\n", encoding="utf-8")
    monkeypatch.setenv("COREX_CONFIG_FILE", str(config))
    monkeypatch.setenv("DEFAULT_MODEL", "from-env")

    assert Settings(_env_file=None).default_model == "from-env"


def test_short_api_key_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, openai_api_key="short")


def test_runtime_overrides():
    runtime = CoreRuntime.create(Settings(_env_file=None), error_log_max=7, stream_word_delay=0)
    assert runtime.settings.stream_word_delay == 0
    assert runtime.errors.max_errors == 7
    assert runtime.recent_files == {}
