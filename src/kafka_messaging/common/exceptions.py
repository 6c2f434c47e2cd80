"""
Exception types and error classification for kafka_messaging.

Provides:
- ErrorCategory enum for retry decisions
- Typed exception hierarchy for producer/consumer errors
- Error classification utilities for foreign (driver) exceptions

Cancellation is never part of this hierarchy: asyncio.CancelledError
propagates untouched so callers can tell "stopped" apart from "failed".
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., connection refused, request timeouts, broker not available)
        AUTH: Authentication failures (e.g., SASL handshake rejected)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., invalid SASL mechanism, empty subscription)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class KafkaMessagingError(Exception):
    """
    Base exception for all messaging errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error should trigger a retry."""
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Configuration Errors (Permanent)
# =============================================================================


class ConfigurationError(KafkaMessagingError):
    """Invalid configuration or illegal call sequence. Never retried."""

    category = ErrorCategory.PERMANENT


class NotConnectedError(KafkaMessagingError):
    """Operation requires an open broker session."""

    category = ErrorCategory.PERMANENT


class EndOfStream(KafkaMessagingError):
    """The read session was closed; the consume loop should stop cleanly."""

    category = ErrorCategory.PERMANENT


class AuthError(KafkaMessagingError):
    """Broker rejected the client's credentials."""

    category = ErrorCategory.AUTH


# =============================================================================
# Transport Errors (Transient)
# =============================================================================


class TransportError(KafkaMessagingError):
    """Connection, write or fetch failure talking to the broker."""

    category = ErrorCategory.TRANSIENT


class RetryExhaustedError(TransportError):
    """Backoff policy gave up on an operation."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        elapsed: float,
        cause: Optional[BaseException] = None,
    ):
        message = (
            f"{operation} failed after {attempts} attempt(s) in {elapsed:.2f}s"
        )
        super().__init__(
            message,
            cause,
            {"operation": operation, "attempts": attempts, "elapsed": elapsed},
        )
        self.operation = operation
        self.attempts = attempts
        self.elapsed = elapsed


class FlushTimeoutError(TransportError):
    """Buffered records were not acknowledged within the flush timeout."""

    pass


class CommitError(TransportError):
    """Offset commit was rejected or could not be delivered."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_exception(exc: BaseException) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, KafkaMessagingError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    # Auth problems are not fixed by reconnecting
    auth_markers = (
        "saslauthentication",
        "authentication failed",
        "authorizationfailed",
        "unauthorized",
    )
    if any(m in exc_type or m in exc_str for m in auth_markers):
        return ErrorCategory.AUTH

    # Client-side misconfiguration surfaced by the driver
    permanent_markers = (
        "unsupportedcodec",
        "unsupportedversion",
        "invalidtopic",
        "recordtoolarge",
        "messagesizetoolarge",
        "topicauthorizationfailed",
    )
    if any(m in exc_type for m in permanent_markers):
        return ErrorCategory.PERMANENT

    # Connection errors
    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "no route to host",
        "network unreachable",
        "name resolution",
        "brokernotavailable",
        "nodenotready",
        "notleaderforpartition",
        "leadernotavailable",
        "requesttimedout",
        "socket",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    # Timeout errors
    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if isinstance(exc, OSError):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: BaseException,
    default_class: type = TransportError,
    context: Optional[dict] = None,
) -> KafkaMessagingError:
    """
    Wrap a foreign exception in the appropriate KafkaMessagingError subclass.

    Args:
        exc: Exception to wrap
        default_class: Class to use for transient/unknown errors
        context: Additional context to include

    Returns:
        KafkaMessagingError subclass instance
    """
    if isinstance(exc, KafkaMessagingError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)

    if category == ErrorCategory.AUTH:
        return AuthError(str(exc) or type(exc).__name__, cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return ConfigurationError(
            str(exc) or type(exc).__name__, cause=exc, context=context
        )

    return default_class(str(exc) or type(exc).__name__, cause=exc, context=context)


__all__ = [
    "ErrorCategory",
    "KafkaMessagingError",
    "ConfigurationError",
    "NotConnectedError",
    "EndOfStream",
    "AuthError",
    "TransportError",
    "RetryExhaustedError",
    "FlushTimeoutError",
    "CommitError",
    "classify_exception",
    "wrap_exception",
]
