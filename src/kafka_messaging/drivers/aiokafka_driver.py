"""
aiokafka-backed broker driver.

Maps KafkaConfig/KafkaOptions onto AIOKafkaProducer / AIOKafkaConsumer
keyword arguments and translates aiokafka failures into the package's
error signals.
"""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import ConsumerStoppedError, KafkaError
from aiokafka.helpers import create_ssl_context
from aiokafka.structs import ConsumerRecord, TopicPartition

from kafka_messaging.common.exceptions import (
    CommitError,
    ConfigurationError,
    EndOfStream,
    TransportError,
    wrap_exception,
)
from kafka_messaging.common.logging import log_with_context
from kafka_messaging.config import KafkaConfig
from kafka_messaging.drivers.base import BrokerDriver, ReadSession, WriteSession
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions

logger = logging.getLogger(__name__)

# aiokafka's group coordinator requires request_timeout_ms > session_timeout_ms
REQUEST_TIMEOUT_HEADROOM_MS = 10000


def security_kwargs(config: KafkaConfig) -> Dict[str, Any]:
    """Translate security settings into aiokafka client kwargs.

    Raises:
        ConfigurationError: Invalid protocol/mechanism combination
    """
    config.validate()

    kwargs: Dict[str, Any] = {"security_protocol": config.security_protocol.upper()}
    if not config.requires_auth:
        return kwargs

    if config.security_protocol in ("ssl", "sasl_ssl"):
        kwargs["ssl_context"] = create_ssl_context()

    if config.security_protocol in ("sasl_plaintext", "sasl_ssl"):
        kwargs["sasl_mechanism"] = config.sasl_mechanism.upper()
        kwargs["sasl_plain_username"] = config.sasl_username
        kwargs["sasl_plain_password"] = config.sasl_password

    return kwargs


def _common_kwargs(config: KafkaConfig) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "bootstrap_servers": list(config.brokers),
        "client_id": config.client_id,
        "request_timeout_ms": config.connection_timeout_ms,
    }
    kwargs.update(security_kwargs(config))
    return kwargs


def producer_kwargs(config: KafkaConfig, options: KafkaOptions) -> Dict[str, Any]:
    """Build AIOKafkaProducer kwargs. ``config.properties`` wins on conflicts."""
    options.validate()
    kwargs = _common_kwargs(config)
    kwargs.update(
        {
            "acks": options.acks,
            "enable_idempotence": options.enable_idempotence,
            "max_batch_size": options.batch_size,
            "linger_ms": options.linger_ms,
            "compression_type": (
                None if options.compression_type == "none" else options.compression_type
            ),
            "max_request_size": options.max_message_bytes,
            "retry_backoff_ms": options.reconnect_backoff_ms,
        }
    )
    kwargs.update(config.properties)
    return kwargs


def consumer_kwargs(
    config: KafkaConfig, options: KafkaOptions, group_id: str
) -> Dict[str, Any]:
    """Build AIOKafkaConsumer kwargs. ``config.properties`` wins on conflicts."""
    options.validate()
    kwargs = _common_kwargs(config)
    kwargs.update(
        {
            "group_id": group_id,
            "auto_offset_reset": options.auto_offset_reset,
            "enable_auto_commit": options.enable_auto_commit,
            "auto_commit_interval_ms": options.auto_commit_interval_ms,
            "max_poll_interval_ms": options.max_poll_interval_ms,
            "session_timeout_ms": options.session_timeout_ms,
            "fetch_max_wait_ms": options.fetch_max_wait_ms,
            "max_partition_fetch_bytes": options.max_partition_fetch_bytes,
            "retry_backoff_ms": options.reconnect_backoff_ms,
            "request_timeout_ms": max(
                config.connection_timeout_ms,
                options.session_timeout_ms + REQUEST_TIMEOUT_HEADROOM_MS,
            ),
        }
    )
    kwargs.update(config.properties)
    return kwargs


def _to_datetime(timestamp_ms: Optional[int]) -> Optional[datetime]:
    if timestamp_ms is None or timestamp_ms < 0:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def record_to_message(record: ConsumerRecord) -> Message:
    """Convert an aiokafka ConsumerRecord into a Message."""
    headers = {
        k: (v.decode("utf-8", errors="replace") if v is not None else "")
        for k, v in (record.headers or ())
    }
    return Message(
        topic=record.topic,
        key=record.key,
        value=record.value or b"",
        headers=headers,
        partition=record.partition,
        offset=record.offset,
        timestamp=_to_datetime(record.timestamp),
    )


class AIOKafkaWriteSession(WriteSession):
    """WriteSession over a started AIOKafkaProducer (safe for concurrent sends)."""

    def __init__(self, producer: AIOKafkaProducer):
        self._producer = producer

    async def write(self, message: Message) -> Message:
        headers = [(k, v.encode("utf-8")) for k, v in message.headers.items()] or None
        timestamp_ms = (
            int(message.timestamp.timestamp() * 1000) if message.timestamp else None
        )
        try:
            metadata = await self._producer.send_and_wait(
                message.topic,
                value=message.value,
                key=message.key,
                partition=message.partition,
                timestamp_ms=timestamp_ms,
                headers=headers,
            )
        except KafkaError as e:
            raise wrap_exception(e, TransportError, context={"topic": message.topic}) from e

        return dataclasses.replace(
            message,
            partition=metadata.partition,
            offset=metadata.offset,
            timestamp=_to_datetime(metadata.timestamp) or message.timestamp,
        )

    async def flush(self) -> None:
        try:
            await self._producer.flush()
        except KafkaError as e:
            raise wrap_exception(e, TransportError) from e

    async def close(self) -> None:
        try:
            await self._producer.stop()
        except KafkaError as e:
            raise wrap_exception(e, TransportError) from e


class AIOKafkaReadSession(ReadSession):
    """ReadSession over a started AIOKafkaConsumer."""

    def __init__(self, consumer: AIOKafkaConsumer):
        self._consumer = consumer

    async def fetch(self) -> Message:
        try:
            record = await self._consumer.getone()
        except ConsumerStoppedError as e:
            raise EndOfStream("Consumer stopped", cause=e) from e
        except KafkaError as e:
            raise wrap_exception(e, TransportError) from e
        return record_to_message(record)

    async def commit(self, topic: str, partition: int, offset: int) -> None:
        # Kafka stores the next offset to read, not the last one processed
        try:
            await self._consumer.commit({TopicPartition(topic, partition): offset + 1})
        except KafkaError as e:
            raise CommitError(
                f"Failed to commit {topic}[{partition}]@{offset}",
                cause=e,
                context={"topic": topic, "partition": partition, "offset": offset},
            ) from e

    async def close(self) -> None:
        try:
            await self._consumer.stop()
        except KafkaError as e:
            raise wrap_exception(e, TransportError) from e


class AIOKafkaDriver(BrokerDriver):
    """
    Production broker driver built on aiokafka.

    Usage:
        >>> producer = KafkaProducer(config, options, driver=AIOKafkaDriver())
    """

    name = "aiokafka"

    async def open_writer(self, config: KafkaConfig, options: KafkaOptions) -> WriteSession:
        kwargs = producer_kwargs(config, options)
        try:
            producer = AIOKafkaProducer(**kwargs)
        except (ValueError, TypeError, AssertionError, RuntimeError) as e:
            raise ConfigurationError(f"Invalid producer configuration: {e}", cause=e) from e

        try:
            await producer.start()
        except KafkaError as e:
            await producer.stop()
            raise wrap_exception(e, TransportError, context={"dsn": str(config)}) from e

        log_with_context(
            logger,
            logging.DEBUG,
            "aiokafka producer started",
            dsn=str(config),
        )
        return AIOKafkaWriteSession(producer)

    async def open_reader(
        self,
        config: KafkaConfig,
        options: KafkaOptions,
        topics: List[str],
        group_id: str,
    ) -> ReadSession:
        kwargs = consumer_kwargs(config, options, group_id)
        try:
            consumer = AIOKafkaConsumer(*topics, **kwargs)
        except (ValueError, TypeError, AssertionError, RuntimeError) as e:
            raise ConfigurationError(f"Invalid consumer configuration: {e}", cause=e) from e

        try:
            await consumer.start()
        except KafkaError as e:
            await consumer.stop()
            raise wrap_exception(
                e, TransportError, context={"dsn": str(config), "topics": topics}
            ) from e

        log_with_context(
            logger,
            logging.DEBUG,
            "aiokafka consumer started",
            dsn=str(config),
            topics=topics,
            group_id=group_id,
        )
        return AIOKafkaReadSession(consumer)


__all__ = [
    "AIOKafkaDriver",
    "AIOKafkaReadSession",
    "AIOKafkaWriteSession",
    "consumer_kwargs",
    "producer_kwargs",
    "record_to_message",
    "security_kwargs",
]
