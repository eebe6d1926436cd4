"""
Shared helpers for calling the OpenRouter chat-completions API.

Any provider exposing the same request/response shape
(``{model, messages, temperature, max_tokens}`` in, ``{choices[0].message.content}``
out) can be substituted by pointing ``OPENROUTER_BASE_URL`` elsewhere.
"""
from __future__ import annotations

import concurrent.futures
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import requests
from requests import RequestException

from .config import ExplainSettings
from .exceptions import ConfigurationError, ErrorKind
from .logging import mask_secret
from .retry import RetriesExhausted, RetryPolicy


LOGGER = logging.getLogger(__name__)

_KEY_CACHE: dict[str, str] = {}


class UpstreamHTTPError(RuntimeError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str, data: Any) -> None:
        super().__init__(f"Provider returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.data = data


class UpstreamMalformedError(RuntimeError):
    """The provider answered 2xx but the payload lacks the expected content."""

    def __init__(self, message: str, data: Any) -> None:
        super().__init__(message)
        self.data = data


@dataclass
class ProviderSuccess:
    explanation: str
    model: str
    latency_ms: int
    attempts: int
    usage: Optional[Dict[str, Any]] = None


@dataclass
class ProviderFailure:
    kind: ErrorKind
    message: str
    retries_attempted: int
    latency_ms: int
    http_status: Optional[int] = None
    api_error: Any = None
    raw_preview: Optional[str] = None


ProviderResult = Union[ProviderSuccess, ProviderFailure]


def clear_key_cache() -> None:
    _KEY_CACHE.clear()


def _secrets_manager_client(region: str):
    return boto3.client("secretsmanager", region_name=region)


def resolve_api_key(settings: ExplainSettings, *, secrets_manager_client=None) -> str:
    """
    Resolve the provider credential from the inline env var or Secrets Manager, with basic caching.
    """
    inline = (settings.api_key or "").strip()
    if inline:
        return inline

    secret_name = settings.api_key_secret_name
    if not secret_name:
        raise ConfigurationError(
            "Provider API key is not configured",
            details={"hint": "Set OPENROUTER_API_KEY or OPENROUTER_API_KEY_SECRET_NAME on the function."},
        )

    cached = _KEY_CACHE.get(secret_name)
    if cached:
        return cached

    try:
        client = secrets_manager_client or _secrets_manager_client(settings.region)
        response = client.get_secret_value(SecretId=secret_name)
    except (ClientError, BotoCoreError) as exc:
        raise ConfigurationError(
            f"Failed to load provider API key secret: {exc}",
            details={"hint": "The API key secret could not be read from Secrets Manager."},
        ) from exc

    secret_string = (response.get("SecretString") or "").strip()
    if secret_string.startswith("{"):
        try:
            parsed = json.loads(secret_string)
        except json.JSONDecodeError:
            parsed = {}
        if not isinstance(parsed, dict):
            parsed = {}
        candidate = parsed.get("api_key") or parsed.get("token")
        if isinstance(candidate, str) and candidate.strip():
            secret_string = candidate.strip()

    if not secret_string:
        raise ConfigurationError(
            "Provider API key secret is empty",
            details={"hint": "The configured API key secret has no value."},
        )

    _KEY_CACHE[secret_name] = secret_string
    return secret_string


def validate_api_key(api_key: str, prefix: str) -> str:
    key = (api_key or "").strip()
    if not key:
        raise ConfigurationError(
            "Provider API key is empty",
            details={"hint": "Set OPENROUTER_API_KEY on the function."},
        )
    if prefix and not key.startswith(prefix):
        raise ConfigurationError(
            f"Provider API key {mask_secret(key)} has an invalid format",
            details={"hint": f'The API key format is invalid. It must start with "{prefix}".'},
        )
    return key


def build_payload(text: str, page_number: int, settings: ExplainSettings) -> Dict[str, Any]:
    """Prepare the chat-completions request body; ``text`` must already be truncated."""
    try:
        content = settings.prompt_template.format(page_number=page_number, text=text)
    except (KeyError, IndexError) as exc:
        raise ConfigurationError(f"Prompt template has an unknown placeholder: {exc}") from exc
    return {
        "model": settings.model,
        "messages": [{"role": "user", "content": content}],
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
    }


def build_headers(api_key: str, *, referer: str, title: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": referer,
        "X-Title": title,
    }


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def extract_error_message(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    message = data.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


def parse_completion(data: Any) -> Dict[str, Any]:
    """Pull the explanation text, model and usage out of a 2xx provider payload."""
    if not isinstance(data, dict):
        raise UpstreamMalformedError("Provider returned a non-object JSON payload", data)
    choices = data.get("choices")
    content = None
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        if isinstance(message, dict):
            content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        raise UpstreamMalformedError("Provider response missing choices[0].message.content", data)
    usage = data.get("usage")
    return {
        "explanation": content.strip(),
        "model": data.get("model") or "",
        "usage": usage if isinstance(usage, dict) else None,
    }


def _close_response(response: Any) -> None:
    close = getattr(response, "close", None)
    if callable(close):
        close()


class _InFlightCall:
    """Tracks the response of one attempt so it can be closed from outside the worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._response: Any = None
        self._aborted = False

    def attach(self, response: Any) -> None:
        with self._lock:
            self._response = response
            aborted = self._aborted
        if aborted:
            _close_response(response)
            raise requests.Timeout("Provider call aborted after its deadline")

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            response = self._response
        if response is not None:
            _close_response(response)


def _post_once(
    post: Callable[..., Any],
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    timeout: tuple[float, float],
    call: _InFlightCall,
) -> Dict[str, Any]:
    response = post(url, headers=headers, json=payload, timeout=timeout, stream=True)
    call.attach(response)
    try:
        body = response.text
    finally:
        _close_response(response)
    try:
        data = json.loads(body) if body else None
    except ValueError:
        data = None
    if response.status_code >= 400:
        raise UpstreamHTTPError(response.status_code, body, data)
    if data is None:
        raise UpstreamMalformedError("Provider returned non-JSON payload", body)
    return parse_completion(data)


def _post_with_deadline(
    post: Callable[..., Any],
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    timeout: tuple[float, float],
    deadline_seconds: float,
) -> Dict[str, Any]:
    """
    Run one attempt under a wall-clock deadline.

    The ``requests`` timeout only bounds the gap between received bytes, so a
    provider trickling its body could hold the attempt open indefinitely. On
    expiry the in-flight response is closed, which aborts the socket read in
    the worker thread.
    """
    call = _InFlightCall()
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="provider-call")
    future = executor.submit(_post_once, post, url, headers, payload, timeout, call)
    try:
        return future.result(timeout=deadline_seconds)
    except concurrent.futures.TimeoutError as exc:
        call.abort()
        raise requests.Timeout(f"Provider call exceeded {deadline_seconds:.1f}s deadline") from exc
    finally:
        executor.shutdown(wait=False)


def dispatch(
    payload: Dict[str, Any],
    *,
    settings: ExplainSettings,
    api_key: str,
    referer: str,
    post: Callable[..., Any] = requests.post,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ProviderResult:
    """Send ``payload`` with bounded retries and map the outcome; never raises for provider failures."""
    url = settings.completions_url
    headers = build_headers(api_key, referer=referer, title=settings.app_title)
    timeout = (settings.connect_timeout_seconds, settings.timeout_seconds)
    policy = RetryPolicy(
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay_seconds,
        is_transient=is_transient,
        deadline_seconds=settings.overall_timeout_seconds,
        sleep=sleep,
        clock=clock,
    )
    attempts_made = 0

    def _attempt(attempt: int) -> Dict[str, Any]:
        nonlocal attempts_made
        attempts_made = attempt
        LOGGER.info("Calling provider model=%s attempt=%s referer=%s", payload.get("model"), attempt, referer)
        return _post_with_deadline(post, url, headers, payload, timeout, settings.timeout_seconds)

    started = clock()

    def _elapsed_ms() -> int:
        return int(round((clock() - started) * 1000))

    try:
        parsed, attempts = policy.run(_attempt)
    except RetriesExhausted as exc:
        kind = ErrorKind.UPSTREAM_TIMEOUT if isinstance(exc.last_error, requests.Timeout) else ErrorKind.UPSTREAM_UNREACHABLE
        LOGGER.error("Provider unavailable after %s attempt(s): %s", exc.attempts, exc.last_error)
        return ProviderFailure(
            kind=kind,
            message=str(exc.last_error),
            retries_attempted=exc.retries_attempted,
            latency_ms=_elapsed_ms(),
        )
    except UpstreamHTTPError as exc:
        api_error = extract_error_message(exc.data)
        preview = exc.body[: settings.error_preview_chars] if exc.body else ""
        LOGGER.error("Provider returned HTTP %s: %s", exc.status_code, api_error or preview)
        return ProviderFailure(
            kind=ErrorKind.UPSTREAM_ERROR,
            message=api_error or preview or str(exc),
            retries_attempted=attempts_made - 1,
            latency_ms=_elapsed_ms(),
            http_status=exc.status_code,
            api_error=api_error,
            raw_preview=preview,
        )
    except UpstreamMalformedError as exc:
        raw = exc.data if isinstance(exc.data, str) else json.dumps(exc.data, ensure_ascii=False, default=str)
        LOGGER.error("Unexpected provider response structure: %s", raw[:200])
        return ProviderFailure(
            kind=ErrorKind.UPSTREAM_MALFORMED,
            message=str(exc),
            retries_attempted=attempts_made - 1,
            latency_ms=_elapsed_ms(),
            raw_preview=raw[: settings.error_preview_chars],
        )
    except RequestException as exc:
        LOGGER.error("Provider request could not be sent: %s", exc)
        return ProviderFailure(
            kind=ErrorKind.UPSTREAM_UNREACHABLE,
            message=str(exc),
            retries_attempted=attempts_made - 1,
            latency_ms=_elapsed_ms(),
        )

    return ProviderSuccess(
        explanation=parsed["explanation"],
        model=parsed["model"] or settings.model,
        usage=parsed["usage"],
        latency_ms=_elapsed_ms(),
        attempts=attempts,
    )


__all__ = [
    "ProviderFailure",
    "ProviderResult",
    "ProviderSuccess",
    "build_headers",
    "build_payload",
    "clear_key_cache",
    "dispatch",
    "extract_error_message",
    "is_transient",
    "parse_completion",
    "resolve_api_key",
    "validate_api_key",
]
