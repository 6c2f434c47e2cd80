"""Shared infrastructure: errors, logging, metrics and retry policy."""

from kafka_messaging.common.exceptions import (
    AuthError,
    CommitError,
    ConfigurationError,
    EndOfStream,
    ErrorCategory,
    FlushTimeoutError,
    KafkaMessagingError,
    NotConnectedError,
    RetryExhaustedError,
    TransportError,
    classify_exception,
    wrap_exception,
)
from kafka_messaging.common.retry import (
    ExponentialBackoff,
    attempts_for_reconnect_retry,
    retry,
)

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
    "ExponentialBackoff",
    "attempts_for_reconnect_retry",
    "retry",
]
