"""
Pytest fixtures for broker integration tests.

Provides fixtures for:
- Docker-based Kafka test container
- Kafka configuration pointing at the container
- Unique topic names per test

Tests here only run when KAFKA_INTEGRATION_TESTS=1.
"""

import os
from typing import Generator

import pytest

from kafka_messaging.config import KafkaConfig
from kafka_messaging.options import KafkaOptions


def pytest_collection_modifyitems(config, items):
    if os.getenv("KAFKA_INTEGRATION_TESTS") == "1":
        return
    skip = pytest.mark.skip(reason="set KAFKA_INTEGRATION_TESTS=1 to run broker tests")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def kafka_container() -> Generator:
    """
    Provide a Kafka container for integration tests.

    The container runs for the entire test session and is shared across tests.
    """
    from testcontainers.kafka import KafkaContainer

    kafka = KafkaContainer()
    kafka.start()

    yield kafka

    kafka.stop()


@pytest.fixture
def kafka_config(kafka_container, unique_topic_prefix) -> KafkaConfig:
    """Plaintext configuration pointing at the test container."""
    return KafkaConfig(
        brokers=[kafka_container.get_bootstrap_server()],
        client_id=f"{unique_topic_prefix}-client",
        consumer_group_id=f"{unique_topic_prefix}-group",
        connection_timeout_ms=30000,
    )


@pytest.fixture
def broker_options() -> KafkaOptions:
    """Earliest offset and manual commit so tests see every record once."""
    return KafkaOptions(
        connect_timeout_ms=30000,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
        linger_ms=5,
    )


@pytest.fixture
def unique_topic_prefix(request) -> str:
    """
    Generate unique topic prefix for test isolation.

    Uses the test name so tests don't interfere with each other.
    """
    test_name = request.node.name
    # Remove special characters that aren't allowed in Kafka topic names
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in test_name)
    return safe_name.lower()[:100]
