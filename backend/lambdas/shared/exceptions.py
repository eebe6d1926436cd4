"""Custom exceptions shared across Lambda handlers."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    METHOD_NOT_ALLOWED = "MethodNotAllowed"
    RATE_LIMITED = "RateLimited"
    CONFIGURATION = "ConfigurationError"
    UNSUPPORTED_MEDIA_TYPE = "UnsupportedMediaType"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    INVALID_INPUT = "InvalidInput"
    INPUT_TOO_SHORT = "InputTooShort"
    UPSTREAM_TIMEOUT = "UpstreamTimeout"
    UPSTREAM_UNREACHABLE = "UpstreamUnreachable"
    UPSTREAM_ERROR = "UpstreamError"
    UPSTREAM_MALFORMED = "UpstreamResponseMalformed"
    INTERNAL = "InternalError"


HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: 415,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INPUT_TOO_SHORT: 400,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.UPSTREAM_UNREACHABLE: 500,
    ErrorKind.UPSTREAM_ERROR: 502,
    ErrorKind.UPSTREAM_MALFORMED: 502,
    ErrorKind.INTERNAL: 500,
}

# Stable, client-facing strings. Free-form detail goes into the envelope details.
PUBLIC_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.METHOD_NOT_ALLOWED: "Method Not Allowed",
    ErrorKind.RATE_LIMITED: "Too Many Requests",
    ErrorKind.CONFIGURATION: "Server Configuration Error",
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: "Unsupported Media Type",
    ErrorKind.PAYLOAD_TOO_LARGE: "Payload Too Large",
    ErrorKind.INVALID_INPUT: "Bad Request",
    ErrorKind.INPUT_TOO_SHORT: "Text Too Short",
    ErrorKind.UPSTREAM_TIMEOUT: "AI service timed out",
    ErrorKind.UPSTREAM_UNREACHABLE: "Failed to connect to the AI service",
    ErrorKind.UPSTREAM_ERROR: "AI service returned an error",
    ErrorKind.UPSTREAM_MALFORMED: "Unexpected AI service response",
    ErrorKind.INTERNAL: "Internal Server Error",
}


class PipelineError(RuntimeError):
    """Raised by a request stage; converted to an error envelope at the handler boundary."""

    def __init__(self, kind: ErrorKind, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def public_message(self) -> str:
        return PUBLIC_MESSAGES[self.kind]


class ConfigurationError(PipelineError):
    """Raised when required environment settings are missing or invalid."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(ErrorKind.CONFIGURATION, message, details=details)
