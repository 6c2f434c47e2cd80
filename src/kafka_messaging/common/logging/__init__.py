"""
Structured logging for kafka_messaging.

Import from this package:
    from kafka_messaging.common.logging import log_with_context, log_exception
    from kafka_messaging.common.logging import KafkaLogContext, setup_logging
"""

from kafka_messaging.common.logging.context import (
    KafkaContextFilter,
    KafkaLogContext,
    get_log_context,
    set_log_context,
)
from kafka_messaging.common.logging.formatters import ConsoleFormatter, JSONFormatter
from kafka_messaging.common.logging.setup import setup_logging
from kafka_messaging.common.logging.utilities import (
    log_exception,
    log_with_context,
)

__all__ = [
    "log_with_context",
    "log_exception",
    "KafkaLogContext",
    "KafkaContextFilter",
    "get_log_context",
    "set_log_context",
    "JSONFormatter",
    "ConsoleFormatter",
    "setup_logging",
]
