"""Centralised error taxonomy and helpers for the recommendation service."""

from __future__ import annotations

from collections import Counter
from enum import Enum
from threading import Lock
from typing import Any, Mapping, MutableMapping, Type


class ErrorCode(str, Enum):
    """Stable identifiers for error categories used across the project."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INGESTION = "ingestion"
    STORAGE = "storage"
    CONFIG = "config"
    UNKNOWN = "unknown"


_SENSITIVE_KEYS = {
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "authorization",
    "credential",
}
_REDACTED = "***REDACTED***"


def _safe_str(value: Any) -> str:
    try:
        text = str(value)
    except Exception:  # pragma: no cover - broken __str__
        text = repr(value)
    return text


def describe_exception(exc: BaseException, *, max_depth: int = 3) -> dict[str, Any]:
    """Return a serialisable description of ``exc`` and its causes."""

    seen: set[int] = set()

    def _describe(err: BaseException, depth: int) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": type(err).__name__,
            "message": _safe_str(err),
        }
        errno = getattr(err, "errno", None)
        if errno is not None:
            payload["errno"] = errno
        filename = getattr(err, "filename", None)
        if filename is not None:
            payload["filename"] = _safe_str(filename)

        identity = id(err)
        if identity in seen:
            payload["cycle"] = True
            return payload
        seen.add(identity)

        if depth >= max_depth:
            return payload

        if err.__cause__ is not None:
            payload["cause"] = _describe(err.__cause__, depth + 1)
        elif err.__context__ is not None and not err.__suppress_context__:
            payload["context"] = _describe(err.__context__, depth + 1)
        return payload

    return _describe(exc, 0)


def _coerce(value: Any) -> Any:
    """Return a JSON-serialisable representation for ``value``."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return sanitize_context(value)
    if isinstance(value, (list, tuple, set)):
        return [_coerce(v) for v in value]
    return repr(value)


def sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a shallow copy of ``context`` with sensitive values redacted."""

    if not context:
        return {}
    sanitized: dict[str, Any] = {}
    for key, value in context.items():
        key_str = str(key)
        lowered = key_str.lower()
        if any(token in lowered for token in _SENSITIVE_KEYS):
            sanitized[key_str] = _REDACTED
        else:
            sanitized[key_str] = _coerce(value)
    return sanitized


class RecommendationError(Exception):
    """Base class for structured application errors."""

    code: ErrorCode
    user_message: str
    context: MutableMapping[str, Any]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | str = ErrorCode.UNKNOWN,
        user_message: str | None = None,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.user_message = user_message or message
        self.context = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def add_context(self, **context: Any) -> "RecommendationError":
        """Attach additional context to the error in-place."""

        for key, value in context.items():
            if value is not None:
                self.context[key] = value
        return self

    def with_user_message(self, message: str) -> "RecommendationError":
        """Override the safe user-facing message and return ``self``."""

        self.user_message = message
        return self

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable payload describing the error."""

        payload: dict[str, Any] = {
            "code": self.code.value,
            "message": self.user_message,
            "type": self.__class__.__name__,
        }
        if self.context:
            payload["context"] = sanitize_context(self.context)
        if self.cause is not None:
            payload["cause"] = describe_exception(self.cause)
        return payload


class ValidationError(RecommendationError):
    def __init__(self, message: str = "Validation error", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, **kwargs)


class NotFoundError(RecommendationError):
    def __init__(self, message: str = "Resource not found", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.NOT_FOUND, **kwargs)


class IngestionError(RecommendationError):
    def __init__(self, message: str = "Ingestion failure", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.INGESTION, **kwargs)


class StorageError(RecommendationError):
    def __init__(self, message: str = "Storage operation failed", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.STORAGE, **kwargs)


class ConfigurationError(RecommendationError):
    def __init__(self, message: str = "Configuration error", **kwargs: Any) -> None:
        super().__init__(message, code=ErrorCode.CONFIG, **kwargs)


class UnsupportedCryptoError(ValidationError):
    """Raised when a symbol is outside the supported universe."""

    def __init__(self, symbol: Any) -> None:
        super().__init__(
            f"Crypto is not supported: {symbol}",
            context={"symbol": _safe_str(symbol)},
        )
        self.symbol = symbol


class InvalidDateFormatError(ValidationError):
    """Raised when a date parameter is not a ``yyyy-MM-dd`` calendar date."""

    def __init__(self, raw: Any) -> None:
        super().__init__(
            f"Invalid date format: {raw}. Expected format: yyyy-MM-dd",
            context={"date": _safe_str(raw)},
        )
        self.raw = raw


class NoDataForDateError(NotFoundError):
    """Raised when a calendar day holds no observations at all."""

    def __init__(self, day: Any) -> None:
        super().__init__(
            f"No price data found for date: {day}",
            context={"date": _safe_str(day)},
        )
        self.day = day


class NoRankableDataError(NotFoundError):
    """Raised when every symbol in a window was excluded by a zero minimum."""

    def __init__(self, day: Any) -> None:
        super().__init__(
            f"No normalized range can be computed for date: {day}",
            context={"date": _safe_str(day)},
        )
        self.day = day


class NoPriceHistoryError(NotFoundError):
    """Raised when a supported symbol has no stored observations."""

    def __init__(self, symbol: Any) -> None:
        super().__init__(
            f"No price history found for crypto: {symbol}",
            context={"symbol": _safe_str(symbol)},
        )
        self.symbol = symbol


def wrap_error(
    exc: BaseException,
    error_cls: Type[RecommendationError] = RecommendationError,
    *,
    message: str,
    context: Mapping[str, Any] | None = None,
    user_message: str | None = None,
) -> RecommendationError:
    """Return a :class:`RecommendationError` instance wrapping ``exc``.

    Existing :class:`RecommendationError` instances are enriched with
    ``context`` instead of being re-wrapped.
    """

    if isinstance(exc, RecommendationError):
        if context:
            exc.add_context(**dict(context))
        if user_message:
            exc.with_user_message(user_message)
        return exc
    return error_cls(
        message,
        context=context,
        user_message=user_message,
        cause=exc,
    )


_error_counts: Counter[str] = Counter()
_counter_lock = Lock()


def record_error(error: RecommendationError) -> None:
    """Increment in-memory metrics for ``error``."""

    with _counter_lock:
        _error_counts[error.code.value] += 1


def get_error_metrics() -> dict[str, int]:
    """Return a snapshot of error counts by :class:`ErrorCode`."""

    with _counter_lock:
        return dict(_error_counts)


def reset_error_metrics() -> None:
    """Reset the in-memory error metrics (intended for tests)."""

    with _counter_lock:
        _error_counts.clear()


__all__ = [
    "ConfigurationError",
    "ErrorCode",
    "IngestionError",
    "InvalidDateFormatError",
    "NoDataForDateError",
    "NoPriceHistoryError",
    "NoRankableDataError",
    "NotFoundError",
    "RecommendationError",
    "StorageError",
    "UnsupportedCryptoError",
    "ValidationError",
    "describe_exception",
    "get_error_metrics",
    "record_error",
    "reset_error_metrics",
    "sanitize_context",
    "wrap_error",
]
