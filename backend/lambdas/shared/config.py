"""Environment configuration helpers for Lambda functions."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

from .exceptions import ConfigurationError


DEFAULT_PROMPT_TEMPLATE = (
    "Explain the following text from page {page_number} of a PDF. "
    "Be concise, clear, and focus on the main points (around 100-150 words). "
    "Write for a non-expert reader.\n\n"
    'TEXT: "{text}"'
)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def get_env(key: str, default: str | None = None, *, required: bool = False) -> str:
    value = os.getenv(key, default)
    if required and (value is None or value == ""):
        raise ConfigurationError(f"Environment variable {key} must be set")
    return value


def get_int_env(key: str, default: int | None = None, *, required: bool = False) -> int:
    value = os.getenv(key)
    if value is None:
        if required and default is None:
            raise ConfigurationError(f"Environment variable {key} must be set")
        if default is None:
            raise ConfigurationError(f"Environment variable {key} is missing and no default provided")
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {key} must be an integer") from exc


def get_float_env(key: str, default: float | None = None, *, required: bool = False) -> float:
    value = os.getenv(key)
    if value is None:
        if required and default is None:
            raise ConfigurationError(f"Environment variable {key} must be set")
        if default is None:
            raise ConfigurationError(f"Environment variable {key} is missing and no default provided")
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {key} must be numeric") from exc


def get_bool_env(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ConfigurationError(f"Environment variable {key} must be a boolean")


def get_list_env(key: str, default: str = "") -> Tuple[str, ...]:
    raw = os.getenv(key, default) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class ExplainSettings:
    """Process-wide configuration for the explain endpoint, loaded once at cold start."""

    api_key: str = ""
    api_key_secret_name: str = ""
    api_key_prefix: str = "sk-or-"
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-flash-1.5"
    temperature: float = 0.3
    max_tokens: int = 400
    app_title: str = "AI PDF Explainer"
    site_url: str = ""
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    min_text_length: int = 10
    max_text_length: int = 15000
    max_body_bytes: int = 262144
    allowed_origins: Tuple[str, ...] = ("*",)
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 10
    rate_limit_max_clients: int = 10000
    timeout_seconds: float = 20.0
    connect_timeout_seconds: float = 5.0
    max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    error_preview_chars: int = 500
    debug: bool = False
    region: str = "ap-northeast-1"

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    @property
    def overall_timeout_seconds(self) -> float:
        attempts = self.max_retries + 1
        backoff = sum(attempt * self.retry_base_delay_seconds for attempt in range(1, attempts))
        return attempts * self.timeout_seconds + backoff


def load_settings() -> ExplainSettings:
    """Read the explain endpoint configuration from the environment."""
    settings = ExplainSettings(
        api_key=(get_env("OPENROUTER_API_KEY", "") or "").strip(),
        api_key_secret_name=get_env("OPENROUTER_API_KEY_SECRET_NAME", "") or "",
        api_key_prefix=get_env("OPENROUTER_API_KEY_PREFIX", "sk-or-") or "",
        base_url=get_env("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        model=get_env("OPENROUTER_MODEL", "google/gemini-flash-1.5"),
        temperature=get_float_env("OPENROUTER_TEMPERATURE", 0.3),
        max_tokens=get_int_env("OPENROUTER_MAX_TOKENS", 400),
        app_title=get_env("OPENROUTER_APP_TITLE", "AI PDF Explainer"),
        site_url=get_env("OPENROUTER_SITE_URL", "") or "",
        prompt_template=get_env("EXPLAIN_PROMPT_TEMPLATE", "") or DEFAULT_PROMPT_TEMPLATE,
        min_text_length=get_int_env("EXPLAIN_MIN_TEXT_LENGTH", 10),
        max_text_length=get_int_env("EXPLAIN_MAX_TEXT_LENGTH", 15000),
        max_body_bytes=get_int_env("EXPLAIN_MAX_BODY_BYTES", 262144),
        allowed_origins=get_list_env("ALLOWED_ORIGINS", "*") or ("*",),
        rate_limit_enabled=get_bool_env("RATE_LIMIT_ENABLED", True),
        rate_limit_window_seconds=get_float_env("RATE_LIMIT_WINDOW_SECONDS", 60.0),
        rate_limit_max_requests=get_int_env("RATE_LIMIT_MAX_REQUESTS", 10),
        rate_limit_max_clients=get_int_env("RATE_LIMIT_MAX_CLIENTS", 10000),
        timeout_seconds=get_float_env("UPSTREAM_TIMEOUT_SECONDS", 20.0),
        connect_timeout_seconds=get_float_env("UPSTREAM_CONNECT_TIMEOUT_SECONDS", 5.0),
        max_retries=get_int_env("UPSTREAM_MAX_RETRIES", 2),
        retry_base_delay_seconds=get_float_env("UPSTREAM_RETRY_BASE_DELAY_SECONDS", 1.0),
        error_preview_chars=get_int_env("UPSTREAM_ERROR_PREVIEW_CHARS", 500),
        debug=get_bool_env("EXPLAIN_DEBUG", False),
        region=get_env("AWS_REGION", "ap-northeast-1"),
    )
    if settings.min_text_length < 1 or settings.max_text_length < settings.min_text_length:
        raise ConfigurationError("EXPLAIN_MIN_TEXT_LENGTH/EXPLAIN_MAX_TEXT_LENGTH are inconsistent")
    if settings.max_retries < 0:
        raise ConfigurationError("UPSTREAM_MAX_RETRIES must not be negative")
    if settings.rate_limit_max_requests < 1 or settings.rate_limit_window_seconds <= 0:
        raise ConfigurationError("RATE_LIMIT_MAX_REQUESTS and RATE_LIMIT_WINDOW_SECONDS must be positive")
    if settings.timeout_seconds <= 0:
        raise ConfigurationError("UPSTREAM_TIMEOUT_SECONDS must be positive")
    return settings
