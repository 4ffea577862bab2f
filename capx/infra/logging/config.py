from __future__ import annotations

import logging
import os
import sys
from typing import Any, Mapping, MutableMapping, cast

import structlog

_configured: bool = False


def _add_msg_from_event(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Mirror structlog's `event` into `msg` so every line carries both keys."""

    if "msg" not in event_dict and isinstance(event_dict.get("event"), str):
        event_dict["msg"] = event_dict["event"]
    return event_dict


_SENSITIVE_KEYS = {
    "token",
    "api_token",
    "authorization",
    "auth",
    "credentials",
    "password",
    "secret",
    "api_key",
    "apikey",
}


def _mask_sensitive_values(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Redact secret-bearing values (case-insensitive keys, nested dicts and lists)."""

    def mask_value(key: str, value: Any) -> Any:
        if key.lower() in _SENSITIVE_KEYS:
            return "[REDACTED]"
        if isinstance(value, Mapping):
            typed_mapping = cast(Mapping[str, Any], value)
            return {
                nested_key: mask_value(str(nested_key), nested_value)
                for nested_key, nested_value in typed_mapping.items()
            }
        if isinstance(value, list):
            typed_list = cast(list[Any], value)
            return [mask_value(key, item) for item in typed_list]
        return value

    return {key: mask_value(key, value) for key, value in event_dict.items()}


def configure_logging(level: str | None = None) -> None:
    """Configure structlog/stdlib logging for JSON Lines output.

    - Keys: ts, level, msg, event
    - Timestamp: UTC ISO-8601
    - Output: one JSON object per line on stdout
    """

    global _configured

    raw_level: str = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, raw_level.upper(), logging.INFO)

    # force=True lets tests using capsys rebind the handler to the swapped stdout.
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            _add_msg_from_event,
            _mask_sensitive_values,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configured = True


def is_configured() -> bool:
    return _configured
