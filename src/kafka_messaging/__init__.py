"""
Async Kafka messaging: producer and consumer on top of a pluggable broker driver.

Import from this package:
    from kafka_messaging import KafkaConfig, KafkaProducer, KafkaConsumer
"""

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
)
from kafka_messaging.common.logging import setup_logging
from kafka_messaging.common.retry import ExponentialBackoff, retry
from kafka_messaging.config import ConnectionInfo, KafkaConfig
from kafka_messaging.consumer import KafkaConsumer, MessageHandler
from kafka_messaging.drivers import AIOKafkaDriver, BrokerDriver, InMemoryBroker
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions, default_options
from kafka_messaging.producer import KafkaProducer

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ConnectionInfo",
    "KafkaConfig",
    "KafkaOptions",
    "default_options",
    # Clients
    "KafkaProducer",
    "KafkaConsumer",
    "MessageHandler",
    "Message",
    # Drivers
    "BrokerDriver",
    "AIOKafkaDriver",
    "InMemoryBroker",
    # Errors
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
    # Retry
    "ExponentialBackoff",
    "retry",
    # Logging
    "setup_logging",
]
