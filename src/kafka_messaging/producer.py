"""
Kafka producer with retry and lazy connection.

Provides async Kafka producer functionality with:
- Lazy session open on first send, reopened after close()
- Exponential backoff retry for connect and send
- Pydantic model and batch sending support
- Header support for message routing
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from kafka_messaging.common.exceptions import FlushTimeoutError, KafkaMessagingError
from kafka_messaging.common.logging import log_exception, log_with_context
from kafka_messaging.common.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from kafka_messaging.common.retry import attempts_for_reconnect_retry, retry
from kafka_messaging.config import KafkaConfig
from kafka_messaging.drivers.base import BrokerDriver, WriteSession
from kafka_messaging.message import Message, to_bytes
from kafka_messaging.options import KafkaOptions, default_options

Payload = Union[bytes, str, BaseModel]


def _encode_value(value: Payload) -> bytes:
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return to_bytes(value) or b""


class KafkaProducer:
    """
    Async Kafka producer with retry and lazy connection.

    Provides reliable message production with:
    - One write session per producer, opened on first send
    - Exponential backoff for transient broker failures
    - Structured logs and Prometheus metrics for every send

    Usage:
        >>> config = KafkaConfig.from_env()
        >>> async with KafkaProducer(config) as producer:
        ...     msg = await producer.send(
        ...         topic="my-topic",
        ...         key="key-123",
        ...         value=my_pydantic_model,
        ...         headers={"trace_id": "evt-456"},
        ...     )
    """

    def __init__(
        self,
        config: KafkaConfig,
        options: Optional[KafkaOptions] = None,
        *,
        driver: Optional[BrokerDriver] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize Kafka producer. No broker connection is made here.

        Args:
            config: Kafka connection configuration
            options: Tuning options (default_options() if None)
            driver: Broker driver (AIOKafkaDriver if None)
            logger: Logger for producer events (module logger if None)
        """
        if driver is None:
            from kafka_messaging.drivers.aiokafka_driver import AIOKafkaDriver

            driver = AIOKafkaDriver()

        self.config = config
        self.options = options or default_options()
        self._driver = driver
        self._log = logger or logging.getLogger(__name__)
        self._session: Optional[WriteSession] = None
        self._open_lock_obj: Optional[asyncio.Lock] = None
        self._max_attempts = attempts_for_reconnect_retry(self.options.max_reconnect_retry)

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    @property
    def _open_lock(self) -> asyncio.Lock:
        # Created on first use so it binds to the loop that sends
        if self._open_lock_obj is None:
            self._open_lock_obj = asyncio.Lock()
        return self._open_lock_obj

    async def __aenter__(self) -> "KafkaProducer":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _retry_kwargs(self) -> dict:
        return {
            "max_elapsed": self.options.connect_timeout,
            "initial_interval": self.options.reconnect_backoff,
            "max_attempts": self._max_attempts,
            "log": self._log,
        }

    async def _ensure_session(self) -> WriteSession:
        if self._session is not None:
            return self._session

        async with self._open_lock:
            if self._session is not None:
                return self._session

            self.config.validate()
            self.options.validate()

            log_with_context(
                self._log,
                logging.INFO,
                "Connecting Kafka producer",
                dsn=str(self.config),
                client_id=self.config.client_id,
            )
            self._session = await retry(
                lambda: self._driver.open_writer(self.config, self.options),
                operation_name="producer connect",
                dsn=str(self.config),
                **self._retry_kwargs(),
            )
            update_connection_status("producer", connected=True)
            log_with_context(
                self._log,
                logging.INFO,
                "Kafka producer connected",
                dsn=str(self.config),
            )
            return self._session

    async def send(
        self,
        topic: str,
        key: Union[bytes, str, None],
        value: Payload,
        headers: Optional[Dict[str, str]] = None,
        *,
        partition: Optional[int] = None,
    ) -> Message:
        """
        Send a single message to a Kafka topic.

        Args:
            topic: Kafka topic name
            key: Message key used for partitioning (None for no key)
            value: Raw bytes, a UTF-8 string, or a pydantic model sent as JSON
            headers: Optional key-value pairs for message headers
            partition: Pin the record to a partition instead of hashing the key

        Returns:
            The acknowledged Message with partition/offset populated

        Raises:
            ConfigurationError: Invalid config/options
            RetryExhaustedError: Transient failures outlasted the retry budget
        """
        message = Message(
            topic=topic,
            key=to_bytes(key),
            value=_encode_value(value),
            headers=headers or {},
            partition=partition,
        )
        return await self.send_message(message)

    async def send_message(self, message: Message) -> Message:
        """Send a fully built Message. See send() for the failure modes."""
        if message is None:
            raise ValueError("message must not be None")

        session = await self._ensure_session()

        if self.config.producer_topics and message.topic not in self.config.producer_topics:
            log_with_context(
                self._log,
                logging.DEBUG,
                "Sending to topic outside configured producer topics",
                topic=message.topic,
            )

        log_with_context(
            self._log,
            logging.DEBUG,
            "Sending message to Kafka",
            topic=message.topic,
            key=message.key_str,
            value_size=message.size,
        )

        try:
            acked = await retry(
                lambda: session.write(message),
                operation_name="send",
                topic=message.topic,
                **self._retry_kwargs(),
            )
        except KafkaMessagingError as e:
            record_message_produced(message.topic, message.size, success=False)
            record_producer_error(message.topic, type(e).__name__)
            log_exception(
                self._log,
                e,
                "Failed to send message",
                topic=message.topic,
                key=message.key_str,
                outcome="error",
            )
            raise

        record_message_produced(message.topic, message.size, success=True)
        log_with_context(
            self._log,
            logging.DEBUG,
            "Message sent successfully",
            topic=acked.topic,
            partition=acked.partition,
            offset=acked.offset,
            outcome="success",
        )
        return acked

    async def send_model(
        self,
        topic: str,
        key: Union[bytes, str, None],
        model: BaseModel,
        headers: Optional[Dict[str, str]] = None,
    ) -> Message:
        """Send a pydantic model serialized as JSON."""
        return await self.send_message(Message.from_model(topic, key, model, headers))

    async def send_batch(
        self,
        topic: str,
        messages: List[Tuple[Union[bytes, str, None], Payload]],
        headers: Optional[Dict[str, str]] = None,
    ) -> List[Message]:
        """
        Send a batch of messages to a Kafka topic.

        Messages are sent in order; each may have its own key. Headers are
        applied to all messages. Stops at the first failed send.

        Args:
            topic: Kafka topic name
            messages: List of (key, value) tuples to send
            headers: Optional headers applied to all messages

        Returns:
            List of acknowledged Messages in the same order as the input
        """
        if not messages:
            self._log.warning("send_batch called with empty message list")
            return []

        start_time = time.perf_counter()
        results = []
        for key, value in messages:
            results.append(await self.send(topic, key, value, headers))

        log_with_context(
            self._log,
            logging.INFO,
            "Batch sent successfully",
            topic=topic,
            message_count=len(results),
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return results

    async def flush(self, timeout_ms: Optional[int] = None) -> None:
        """
        Wait for every buffered record to be acknowledged.

        No-op when the producer isn't connected.

        Raises:
            FlushTimeoutError: timeout_ms elapsed before the flush completed
        """
        if self._session is None:
            return

        if timeout_ms is None:
            await self._session.flush()
            return

        try:
            await asyncio.wait_for(self._session.flush(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise FlushTimeoutError(
                f"Flush did not complete within {timeout_ms}ms", cause=e
            ) from e

    async def close(self) -> None:
        """
        Flush pending messages and close the write session.

        Safe to call multiple times, and on a producer that never connected.
        A later send() reopens the session.
        """
        session, self._session = self._session, None
        if session is None:
            self._log.debug("Producer not connected or already closed")
            return

        self._log.info("Closing Kafka producer")
        try:
            try:
                await session.flush()
            finally:
                await session.close()
        except KafkaMessagingError as e:
            log_exception(self._log, e, "Error closing Kafka producer")
            raise
        finally:
            update_connection_status("producer", connected=False)

        self._log.info("Kafka producer closed")


__all__ = ["KafkaProducer"]
