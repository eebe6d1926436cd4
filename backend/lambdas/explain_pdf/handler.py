"""
Explain PDF Lambda.

Exposes ``POST /explain-pdf`` behind an API Gateway HTTP API (payload format
version 2.0). The body carries the text extracted from one PDF page; the
function forwards it to an OpenRouter-compatible chat-completions provider and
returns a plain-language explanation.

Every invocation produces exactly one JSON envelope. Request gates run in a
fixed order (preflight, method, rate limit, configuration, content type, body)
and the first failing gate short-circuits to an error envelope carrying a
random ``errorId`` that is also written to the function log.
"""
from __future__ import annotations

import base64
import binascii
import json
import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from shared.config import ExplainSettings, load_settings
from shared.exceptions import ConfigurationError, ErrorKind, PipelineError
from shared.logging import get_logger
from shared.openrouter import (
    ProviderFailure,
    ProviderSuccess,
    build_payload,
    dispatch,
    resolve_api_key,
    validate_api_key,
)
from shared.rate_limit import SlidingWindowRateLimiter


LOGGER = get_logger(__name__)

try:
    SETTINGS = load_settings()
    SETTINGS_ERROR: Optional[ConfigurationError] = None
except ConfigurationError as exc:
    # Reported per request by the configuration gate instead of failing the import.
    SETTINGS = ExplainSettings()
    SETTINGS_ERROR = exc
RATE_LIMITER = SlidingWindowRateLimiter(
    max_requests=SETTINGS.rate_limit_max_requests,
    window_seconds=SETTINGS.rate_limit_window_seconds,
    max_clients=SETTINGS.rate_limit_max_clients,
)

ALLOWED_METHODS = ("POST", "OPTIONS")
ALLOWED_HEADERS = ("Content-Type", "Authorization")
PREFLIGHT_MAX_AGE_SECONDS = 86400


@dataclass
class ExplainRequest:
    text: str
    page_number: int = 1
    truncated: bool = False
    original_length: int = 0


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _new_error_id() -> str:
    return uuid.uuid4().hex[:12]


def _request_headers(event: Dict[str, Any]) -> Dict[str, str]:
    headers = event.get("headers") or {}
    if not isinstance(headers, dict):
        return {}
    return {str(key).lower(): str(value) for key, value in headers.items() if value is not None}


def _request_method(event: Dict[str, Any]) -> str:
    http = (event.get("requestContext") or {}).get("http") or {}
    method = http.get("method") or event.get("httpMethod") or ""
    return str(method).upper()


def _cors_headers(settings: ExplainSettings, origin: Optional[str]) -> Dict[str, str]:
    allowed = settings.allowed_origins or ("*",)
    headers = {
        "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
        "Access-Control-Allow-Headers": ", ".join(ALLOWED_HEADERS),
    }
    if "*" in allowed:
        headers["Access-Control-Allow-Origin"] = "*"
    else:
        headers["Access-Control-Allow-Origin"] = origin if origin in allowed else allowed[0]
        headers["Vary"] = "Origin"
    return headers


def _response(
    status_code: int,
    body: Any,
    *,
    cors: Dict[str, str],
    extra_headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    headers = {"Content-Type": "application/json", **cors}
    if extra_headers:
        headers.update(extra_headers)
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, ensure_ascii=False),
    }


def _error_response(
    error: PipelineError,
    settings: ExplainSettings,
    cors: Dict[str, str],
    *,
    extra_headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    error_id = _new_error_id()
    status_code = error.status_code
    log = LOGGER.error if status_code >= 500 else LOGGER.warning
    log("API Error [%s][%s] %s: %s", status_code, error_id, error.kind.value, error.message)

    details = dict(error.details)
    if not settings.debug:
        details.pop("raw_response", None)
        details.pop("traceback", None)

    return _response(
        status_code,
        {
            "success": False,
            "error": error.public_message,
            "code": error.kind.value,
            "errorId": error_id,
            "details": details,
            "timestampIso": _timestamp(),
        },
        cors=cors,
        extra_headers=extra_headers,
    )


def _client_key(event: Dict[str, Any], headers: Dict[str, str]) -> str:
    # API Gateway sets sourceIp from the TCP peer; X-Forwarded-For hops before
    # the last one are supplied by the client.
    http = (event.get("requestContext") or {}).get("http") or {}
    source_ip = str(http.get("sourceIp") or "").strip()
    if source_ip:
        return source_ip
    hops = [hop.strip() for hop in headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    return hops[-1] if hops else "unknown"


def _check_rate_limit(limiter: SlidingWindowRateLimiter, key: str, settings: ExplainSettings) -> None:
    decision = limiter.check(key)
    if decision.allowed:
        return
    raise PipelineError(
        ErrorKind.RATE_LIMITED,
        f"Rate limit exceeded for client {key}",
        details={
            "retry_after": decision.retry_after,
            "limit": decision.limit,
            "window_seconds": settings.rate_limit_window_seconds,
        },
    )


def _check_configuration(settings: ExplainSettings, settings_error: Optional[ConfigurationError] = None) -> str:
    if settings_error is not None:
        raise settings_error
    api_key = resolve_api_key(settings)
    return validate_api_key(api_key, settings.api_key_prefix)


def _check_content_type(headers: Dict[str, str]) -> None:
    content_type = headers.get("content-type")
    if content_type is None:
        return
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json" or (media_type.startswith("application/") and media_type.endswith("+json")):
        return
    raise PipelineError(
        ErrorKind.UNSUPPORTED_MEDIA_TYPE,
        f"Unsupported content type {content_type!r}",
        details={"hint": "Send the request body as application/json.", "content_type": content_type},
    )


def _decode_body(event: Dict[str, Any], settings: ExplainSettings) -> Any:
    body = event.get("body")
    if body is None:
        raise PipelineError(ErrorKind.INVALID_INPUT, "Missing request body", details={"hint": "Request body is empty."})
    if not isinstance(body, (str, bytes)):
        return body

    raw = body.encode("utf-8") if isinstance(body, str) else body
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PipelineError(
                ErrorKind.INVALID_INPUT,
                f"Body is not valid base64: {exc}",
                details={"hint": "Could not decode request body."},
            ) from exc

    if len(raw) > settings.max_body_bytes:
        raise PipelineError(
            ErrorKind.PAYLOAD_TOO_LARGE,
            f"Request body of {len(raw)} bytes exceeds limit",
            details={"max_bytes": settings.max_body_bytes, "actual_bytes": len(raw)},
        )

    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PipelineError(
            ErrorKind.INVALID_INPUT,
            f"Body is not valid JSON: {exc}",
            details={"hint": "Could not parse request body. Ensure it is valid JSON."},
        ) from exc


def _coerce_page_number(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    try:
        number = int(value) if isinstance(value, (int, float)) else int(str(value).strip())
    except (TypeError, ValueError, OverflowError):
        return 1
    return number if number >= 1 else 1


def parse_explain_request(payload: Any, settings: ExplainSettings) -> ExplainRequest:
    """Validate a decoded body; over-long text is truncated rather than rejected."""
    if not isinstance(payload, dict):
        raise PipelineError(
            ErrorKind.INVALID_INPUT,
            "Body must be a JSON object",
            details={"hint": 'Send {"text": "...", "page_number": 1}.'},
        )

    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        raise PipelineError(
            ErrorKind.INVALID_INPUT,
            "Missing or empty text",
            details={"hint": 'Missing or empty "text" parameter in the request body.'},
        )

    text = text.strip()
    original_length = len(text)
    if original_length < settings.min_text_length:
        raise PipelineError(
            ErrorKind.INPUT_TOO_SHORT,
            f"Text of {original_length} characters is below the minimum",
            details={"min_length": settings.min_text_length, "actual_length": original_length},
        )

    truncated = original_length > settings.max_text_length
    if truncated:
        text = text[: settings.max_text_length]

    page_value = payload.get("page_number", payload.get("pageNumber"))
    return ExplainRequest(
        text=text,
        page_number=_coerce_page_number(page_value),
        truncated=truncated,
        original_length=original_length,
    )


def _referer(settings: ExplainSettings, headers: Dict[str, str]) -> str:
    if settings.site_url:
        return settings.site_url
    host = headers.get("host")
    return f"https://{host}" if host else "http://localhost:3000"


def _failure_to_error(failure: ProviderFailure) -> PipelineError:
    details: Dict[str, Any] = {
        "retries_attempted": failure.retries_attempted,
        "latency_ms": failure.latency_ms,
    }
    if failure.kind is ErrorKind.UPSTREAM_ERROR:
        details["upstream_status"] = failure.http_status
        details["api_error"] = failure.api_error or failure.raw_preview or None
        details["hint"] = "Check the provider dashboard for API key status or credit balance."
    if failure.raw_preview:
        details["raw_response"] = failure.raw_preview
    if failure.kind in (ErrorKind.UPSTREAM_TIMEOUT, ErrorKind.UPSTREAM_UNREACHABLE):
        details["hint"] = "The AI service could not be reached in time. Please retry shortly."
    return PipelineError(failure.kind, failure.message, details=details)


def _success_body(request: ExplainRequest, result: ProviderSuccess) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": True,
        "explanation": result.explanation,
        "model": result.model,
        "pageNumber": request.page_number,
        "latencyMs": result.latency_ms,
        "timestampIso": _timestamp(),
    }
    if result.usage:
        body["usage"] = result.usage
    if request.truncated:
        body["truncated"] = True
    return body


def _run_pipeline(
    event: Dict[str, Any],
    settings: ExplainSettings,
    limiter: SlidingWindowRateLimiter,
    cors: Dict[str, str],
    headers: Dict[str, str],
    *,
    post: Callable[..., Any],
    sleep: Callable[[float], None],
    clock: Callable[[], float],
    settings_error: Optional[ConfigurationError] = None,
) -> Dict[str, Any]:
    method = _request_method(event)
    if method != "POST":
        raise PipelineError(ErrorKind.METHOD_NOT_ALLOWED, f"Method {method} is not supported")

    if settings.rate_limit_enabled:
        _check_rate_limit(limiter, _client_key(event, headers), settings)

    api_key = _check_configuration(settings, settings_error)
    _check_content_type(headers)
    request = parse_explain_request(_decode_body(event, settings), settings)
    if request.truncated:
        LOGGER.info("Truncated text from %s to %s characters", request.original_length, len(request.text))

    payload = build_payload(request.text, request.page_number, settings)
    result = dispatch(
        payload,
        settings=settings,
        api_key=api_key,
        referer=_referer(settings, headers),
        post=post,
        sleep=sleep,
        clock=clock,
    )
    if isinstance(result, ProviderFailure):
        raise _failure_to_error(result)

    LOGGER.info(
        "Explained page=%s chars=%s model=%s attempts=%s latency_ms=%s",
        request.page_number,
        len(request.text),
        result.model,
        result.attempts,
        result.latency_ms,
    )
    return _response(200, _success_body(request, result), cors=cors)


def handle(
    event: Dict[str, Any],
    _context: Any,
    *,
    settings: Optional[ExplainSettings] = None,
    limiter: Optional[SlidingWindowRateLimiter] = None,
    post: Callable[..., Any] = requests.post,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    settings_error = None
    if settings is None:
        settings, settings_error = SETTINGS, SETTINGS_ERROR
    limiter = limiter if limiter is not None else RATE_LIMITER
    if not isinstance(event, dict):
        event = {}
    headers = _request_headers(event)
    cors = _cors_headers(settings, headers.get("origin"))

    method = _request_method(event)
    LOGGER.info("Received request method=%s path=%s", method, event.get("rawPath") or "/")
    if method == "OPTIONS":
        return {
            "statusCode": 204,
            "headers": {**cors, "Access-Control-Max-Age": str(PREFLIGHT_MAX_AGE_SECONDS)},
            "body": "",
        }

    try:
        return _run_pipeline(
            event,
            settings,
            limiter,
            cors,
            headers,
            post=post,
            sleep=sleep,
            clock=clock,
            settings_error=settings_error,
        )
    except PipelineError as exc:
        extra_headers = None
        if exc.kind is ErrorKind.RATE_LIMITED:
            extra_headers = {"Retry-After": str(exc.details.get("retry_after", 1))}
        return _error_response(exc, settings, cors, extra_headers=extra_headers)
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.exception("Unhandled error while explaining page: %s", exc)
        error = PipelineError(
            ErrorKind.INTERNAL,
            str(exc),
            details={"hint": "Unexpected server error.", "traceback": traceback.format_exc()},
        )
        return _error_response(error, settings, cors)


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    if isinstance(event, str):
        try:
            event = json.loads(event)
        except json.JSONDecodeError:
            LOGGER.error("Received string event that is not valid JSON")
            event = {}
    return handle(event, context)
