"""Rust-style Result helpers and the error hierarchy of the capacity cache.

This module provides:
- ``Ok`` / ``Err`` wrappers and the ``Result`` union
- the base ``Error`` type and the cache's error taxonomy
- a decorator that turns raised exceptions into ``Err`` values
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Mapping,
    ParamSpec,
    TypeVar,
    Union,
    cast,
)

import structlog

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")

P = ParamSpec("P")


_SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "auth",
    "credentials",
)

_ERROR_COUNTERS: Counter[str] = Counter()


def _sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Mask values whose key names look secret-bearing, recursing into dicts."""
    if not context:
        return {}

    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            mapping = cast(Mapping[str, Any], value)
            sanitized_inner: dict[str, Any] = {}
            for k, v in mapping.items():
                key_lower = str(k).lower()
                sanitized_inner[k] = _sanitize(
                    "***redacted***" if any(sk in key_lower for sk in _SENSITIVE_KEYS) else v
                )
            return sanitized_inner
        return value

    sanitized: dict[str, Any] = {}
    for key, value in context.items():
        key_lower = str(key).lower()
        if any(sk in key_lower for sk in _SENSITIVE_KEYS):
            sanitized[key] = "***redacted***"
        else:
            sanitized[key] = _sanitize(value)
    return sanitized


def _record_error(error: "Error") -> None:
    key = type(error).__name__
    _ERROR_COUNTERS[key] += 1
    _ERROR_COUNTERS["__total__"] += 1


def get_error_metrics() -> dict[str, int]:
    """Return error counts grouped by error type name."""
    return dict(_ERROR_COUNTERS)


def reset_error_metrics() -> None:
    """Reset error counters (tests only)."""
    _ERROR_COUNTERS.clear()


# --- Error hierarchy ---


class Error(Exception):
    """Base error carried by ``Err``: a message, optional context and a cause."""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause: BaseException | None = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "context": dict(self.context),
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:  # pragma: no cover - delegates to message
        return self.message

    def log_safe_context(self) -> dict[str, Any]:
        """Context with secret-bearing keys masked, safe to write to logs."""
        return _sanitize_context(self.context)


class TransportError(Error):
    """Network failure or timeout talking to an upstream collaborator."""


class MalformedResponseError(Error):
    """An upstream collaborator answered with an unexpected payload shape."""


class CacheCorruptionError(Error):
    """A persisted snapshot could not be read back into a tree."""


class CapacityUnavailableError(Error):
    """The root listing could not be obtained, so no tree can be built."""


# --- Result / Ok / Err ---


@dataclass(slots=True)
class Ok(Generic[T, E]):
    """Successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> E:
        raise RuntimeError("Called unwrap_err() on Ok value.")


@dataclass(slots=True)
class Err(Generic[T, E]):
    """Failed result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise RuntimeError(f"Called unwrap() on Err value: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T, E], Err[T, E]]


def _select_error_type(
    exc: Exception,
    default_error_type: type[Error],
    exception_map: Mapping[type[Exception], type[Error]] | None,
) -> type[Error]:
    if exception_map:
        for exc_type, err_type in exception_map.items():
            if isinstance(exc, exc_type):
                return err_type
    return default_error_type


def async_returns_result(
    error_type: type[Error] = Error,
    *,
    exception_map: Mapping[type[Exception], type[Error]] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[Result[T, Error]]]]:
    """Wrap an async function that may raise so that it returns a Result.

    - A plain return value ``T`` becomes ``Ok(T)``.
    - A returned ``Ok`` / ``Err`` is passed through without nesting.
    - A raised ``Error`` subclass is returned as is inside ``Err``.
    - Any other exception is mapped through ``exception_map`` (falling back to
      ``error_type``) and kept as ``cause``.
    """

    def decorator(
        func: Callable[P, Awaitable[T]],
    ) -> Callable[P, Awaitable[Result[T, Error]]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T, Error]:
            try:
                value = await func(*args, **kwargs)
                if isinstance(value, (Ok, Err)):
                    return cast(Result[T, Error], value)
                return Ok(value)
            except Error as exc:
                _record_error(exc)
                LOGGER.warning(
                    "result.async_returns_result.error",
                    function=getattr(func, "__name__", "<unknown>"),
                    error_type=type(exc).__name__,
                    error=str(exc),
                    context=exc.log_safe_context(),
                )
                return cast(Result[T, Error], Err(exc))
            except Exception as exc:
                selected_error_type = _select_error_type(exc, error_type, exception_map)
                error_obj = selected_error_type(str(exc) or type(exc).__name__, cause=exc)
                _record_error(error_obj)
                LOGGER.warning(
                    "result.async_returns_result.error",
                    function=getattr(func, "__name__", "<unknown>"),
                    error_type=type(error_obj).__name__,
                    error=str(error_obj),
                    context=error_obj.log_safe_context(),
                )
                return cast(Result[T, Error], Err(error_obj))

        wrapper.__name__ = getattr(func, "__name__", "wrapper")
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


__all__ = [
    "Ok",
    "Err",
    "Result",
    "Error",
    "TransportError",
    "MalformedResponseError",
    "CacheCorruptionError",
    "CapacityUnavailableError",
    "async_returns_result",
    "get_error_metrics",
    "reset_error_metrics",
]
