import dataclasses

import pytest

from shared.config import DEFAULT_PROMPT_TEMPLATE, ExplainSettings, get_bool_env, load_settings
from shared.exceptions import ConfigurationError

_ENV_KEYS = (
    "OPENROUTER_API_KEY",
    "OPENROUTER_MODEL",
    "OPENROUTER_BASE_URL",
    "EXPLAIN_PROMPT_TEMPLATE",
    "EXPLAIN_MIN_TEXT_LENGTH",
    "EXPLAIN_MAX_TEXT_LENGTH",
    "ALLOWED_ORIGINS",
    "RATE_LIMIT_ENABLED",
    "RATE_LIMIT_MAX_REQUESTS",
    "RATE_LIMIT_WINDOW_SECONDS",
    "UPSTREAM_MAX_RETRIES",
    "UPSTREAM_TIMEOUT_SECONDS",
    "EXPLAIN_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = load_settings()

    assert settings.api_key == ""
    assert settings.min_text_length == 10
    assert settings.max_text_length == 15000
    assert settings.allowed_origins == ("*",)
    assert settings.max_retries == 2
    assert settings.prompt_template == DEFAULT_PROMPT_TEMPLATE
    assert settings.completions_url == "https://openrouter.ai/api/v1/chat/completions"
    assert settings.debug is False


def test_reads_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "  sk-or-env  ")
    monkeypatch.setenv("OPENROUTER_BASE_URL", "https://llm.internal/v1/")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("UPSTREAM_MAX_RETRIES", "4")
    monkeypatch.setenv("EXPLAIN_DEBUG", "1")

    settings = load_settings()

    assert settings.api_key == "sk-or-env"
    assert settings.completions_url == "https://llm.internal/v1/chat/completions"
    assert settings.allowed_origins == ("https://a.example.com", "https://b.example.com")
    assert settings.rate_limit_enabled is False
    assert settings.max_retries == 4
    assert settings.debug is True


def test_malformed_number_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("UPSTREAM_TIMEOUT_SECONDS", "soon")

    with pytest.raises(ConfigurationError):
        load_settings()


def test_inconsistent_lengths_raise(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPLAIN_MIN_TEXT_LENGTH", "100")
    monkeypatch.setenv("EXPLAIN_MAX_TEXT_LENGTH", "50")

    with pytest.raises(ConfigurationError):
        load_settings()


@pytest.mark.parametrize(
    "key, value",
    [("RATE_LIMIT_MAX_REQUESTS", "0"), ("RATE_LIMIT_WINDOW_SECONDS", "-5"), ("UPSTREAM_TIMEOUT_SECONDS", "0")],
)
def test_non_positive_limits_raise(monkeypatch: pytest.MonkeyPatch, key, value):
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigurationError):
        load_settings()


def test_bool_env_rejects_garbage(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "maybe")

    with pytest.raises(ConfigurationError):
        get_bool_env("RATE_LIMIT_ENABLED", True)


def test_settings_are_immutable():
    settings = ExplainSettings()

    with pytest.raises(dataclasses.FrozenInstanceError):
        settings.model = "other"  # type: ignore[misc]


def test_overall_timeout_covers_all_attempts():
    settings = ExplainSettings(timeout_seconds=10, max_retries=2, retry_base_delay_seconds=1.0)

    assert settings.overall_timeout_seconds == 33.0
