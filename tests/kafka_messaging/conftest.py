"""
Pytest fixtures for kafka_messaging unit tests.

Provides fixtures for:
- Plaintext Kafka configuration
- Fast retry options (manual commit, earliest offset)
- In-memory broker driver
"""

import pytest

from kafka_messaging.config import KafkaConfig
from kafka_messaging.drivers.memory import InMemoryBroker
from kafka_messaging.options import KafkaOptions


@pytest.fixture
def kafka_config() -> KafkaConfig:
    """Plaintext config pointing at a broker that is never dialed."""
    return KafkaConfig(
        brokers=["localhost:9092"],
        client_id="test-client",
        consumer_group_id="test-group",
    )


@pytest.fixture
def fast_options() -> KafkaOptions:
    """
    Options tuned for tests.

    Millisecond backoff so retry tests finish quickly, manual commit so
    commit behavior is observable, earliest so records produced before
    the consumer connects are delivered.
    """
    return KafkaOptions(
        connect_timeout_ms=2000,
        reconnect_backoff_ms=1,
        max_reconnect_retry=5,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    """Fresh in-memory broker per test."""
    return InMemoryBroker()
