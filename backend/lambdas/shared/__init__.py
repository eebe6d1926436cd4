"""Shared helpers reused across Lambda handlers."""

from .config import ExplainSettings, get_env, get_int_env, get_float_env, get_bool_env, load_settings
from .exceptions import ConfigurationError, ErrorKind, PipelineError
from .logging import get_logger

__all__ = [
    "ExplainSettings",
    "get_env",
    "get_int_env",
    "get_float_env",
    "get_bool_env",
    "load_settings",
    "ConfigurationError",
    "ErrorKind",
    "PipelineError",
    "get_logger",
]
