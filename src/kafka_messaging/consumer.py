"""
Kafka consumer with retry and pause/resume support.

Provides async Kafka consumer functionality with:
- Manual or automatic offset commit for at-least-once processing
- Exponential backoff retry on connect and on transient fetch errors
- Multiple topic subscription merged into one handler loop
- Topic-level pause/resume
- Graceful shutdown handling from any task
"""

import asyncio
import inspect
import logging
import threading
import time
from typing import Awaitable, Callable, FrozenSet, List, Optional, Set, Union

from kafka_messaging.common.exceptions import (
    CommitError,
    ConfigurationError,
    EndOfStream,
    ErrorCategory,
    KafkaMessagingError,
    NotConnectedError,
    classify_exception,
)
from kafka_messaging.common.logging import KafkaLogContext, log_exception, log_with_context
from kafka_messaging.common.metrics import (
    observe_processing_duration,
    record_commit,
    record_fetch_error,
    record_message_consumed,
    record_processing_error,
    update_connection_status,
    update_paused_topics,
)
from kafka_messaging.common.retry import attempts_for_reconnect_retry, retry
from kafka_messaging.config import KafkaConfig
from kafka_messaging.drivers.base import BrokerDriver, ReadSession
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions, default_options

MessageHandler = Callable[[Message], Union[Awaitable[None], None]]


class KafkaConsumer:
    """
    Async Kafka consumer with retry, pause/resume and graceful shutdown.

    Provides reliable message consumption with:
    - At-least-once processing (offsets committed only after the handler
      succeeds when auto-commit is disabled)
    - Exponential backoff against broker failures
    - Multiple topic subscription
    - Custom message handler pattern (sync or async callables)

    Usage:
        >>> config = KafkaConfig.from_env()
        >>> async def handle_message(msg: Message):
        ...     print(f"Received: {msg.value}")
        >>>
        >>> consumer = KafkaConsumer(config)
        >>> consumer.subscribe("my-topic")
        >>> task = asyncio.create_task(consumer.consume(handle_message))
        >>> # Consumer runs until closed or cancelled
        >>> await consumer.close()
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
        Initialize Kafka consumer. No broker connection is made here.

        Starts subscribed to config.consumer_topics when that list is set.

        Args:
            config: Kafka connection configuration (consumer group included)
            options: Tuning options (default_options() if None)
            driver: Broker driver (AIOKafkaDriver if None)
            logger: Logger for consumer events (module logger if None)
        """
        if driver is None:
            from kafka_messaging.drivers.aiokafka_driver import AIOKafkaDriver

            driver = AIOKafkaDriver()

        self.config = config
        self.options = options or default_options()
        self.group_id = config.consumer_group_id
        self._driver = driver
        self._log = logger or logging.getLogger(__name__)

        # Guards topics, paused set, session flag and the consume task handle
        self._lock = threading.Lock()
        self._topics: List[str] = list(dict.fromkeys(config.consumer_topics))
        self._paused: Set[str] = set()
        self._session: Optional[ReadSession] = None
        self._consume_task: Optional[asyncio.Task] = None
        self._closed = False

        self._open_lock_obj: Optional[asyncio.Lock] = None
        self._max_attempts = attempts_for_reconnect_retry(self.options.max_reconnect_retry)

    @property
    def topics(self) -> List[str]:
        with self._lock:
            return list(self._topics)

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def _open_lock(self) -> asyncio.Lock:
        # Created on first use so it binds to the loop running consume()
        if self._open_lock_obj is None:
            self._open_lock_obj = asyncio.Lock()
        return self._open_lock_obj

    async def __aenter__(self) -> "KafkaConsumer":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def subscribe(self, *topics: str) -> None:
        """
        Replace the topic subscription.

        Raises:
            ConfigurationError: No topics given, or the consumer is already
                connected (subscription is fixed once the session is open)
        """
        if not topics:
            raise ConfigurationError("At least one topic must be specified")

        with self._lock:
            if self._session is not None:
                raise ConfigurationError(
                    "Cannot subscribe after the consumer has connected",
                    context={"topics": list(self._topics)},
                )
            self._topics = list(dict.fromkeys(topics))

        log_with_context(
            self._log,
            logging.INFO,
            "Subscribed to topics",
            topics=list(topics),
            group_id=self.group_id,
        )

    def pause(self, *topics: str) -> None:
        """Stop delivering records from ``topics`` starting with the next fetch."""
        with self._lock:
            newly_paused = [t for t in topics if t not in self._paused]
            self._paused.update(newly_paused)
            count = len(self._paused)

        for topic in newly_paused:
            log_with_context(
                self._log, logging.INFO, "Paused topic", topic=topic, group_id=self.group_id
            )
        update_paused_topics(self.group_id, count)

    def resume(self, *topics: str) -> None:
        """Resume delivery for previously paused ``topics``."""
        with self._lock:
            resumed = [t for t in topics if t in self._paused]
            self._paused.difference_update(resumed)
            count = len(self._paused)

        for topic in resumed:
            log_with_context(
                self._log, logging.INFO, "Resumed topic", topic=topic, group_id=self.group_id
            )
        update_paused_topics(self.group_id, count)

    def paused_topics(self) -> FrozenSet[str]:
        """Snapshot of the currently paused topics."""
        with self._lock:
            return frozenset(self._paused)

    def _is_paused(self, topic: str) -> bool:
        with self._lock:
            return topic in self._paused

    async def _ensure_session(self) -> ReadSession:
        async with self._open_lock:
            if self._session is not None:
                return self._session

            self.config.validate()
            self.options.validate()
            topics = self.topics

            log_with_context(
                self._log,
                logging.INFO,
                "Connecting Kafka consumer",
                dsn=str(self.config),
                topics=topics,
                group_id=self.group_id,
            )
            session = await retry(
                lambda: self._driver.open_reader(self.config, self.options, topics, self.group_id),
                max_elapsed=self.options.connect_timeout,
                initial_interval=self.options.reconnect_backoff,
                max_attempts=self._max_attempts,
                operation_name="consumer connect",
                log=self._log,
                group_id=self.group_id,
            )

            with self._lock:
                closed = self._closed
                if not closed:
                    self._session = session

            if closed:
                await session.close()
                raise ConfigurationError("Consumer was closed while connecting")

            update_connection_status("consumer", connected=True)
            log_with_context(
                self._log,
                logging.INFO,
                "Kafka consumer connected",
                topics=topics,
                group_id=self.group_id,
            )
            return session

    async def consume(self, handler: MessageHandler) -> None:
        """
        Run the consume loop until the consumer is closed or the task is cancelled.

        Each fetched record is passed to ``handler`` (sync or async). Handler
        errors are logged and the loop moves on without committing. With
        auto-commit disabled, every successfully handled record is committed.

        Raises:
            ConfigurationError: No subscription, or the consumer is closed
            RetryExhaustedError: The broker stayed unreachable while connecting
            asyncio.CancelledError: The task running the loop was cancelled
        """
        task = asyncio.current_task()
        with self._lock:
            if self._closed:
                raise ConfigurationError("Consumer is closed")
            if not self._topics:
                raise ConfigurationError("No topics subscribed; call subscribe() first")
            self._consume_task = task

        try:
            session = await self._ensure_session()
            await self._consume_loop(session, handler)
        except asyncio.CancelledError:
            self._log.info("Consumption loop cancelled")
            raise
        finally:
            with self._lock:
                if self._consume_task is task:
                    self._consume_task = None

    async def _consume_loop(self, session: ReadSession, handler: MessageHandler) -> None:
        log_with_context(
            self._log,
            logging.INFO,
            "Starting message consumption loop",
            topics=self.topics,
            group_id=self.group_id,
        )

        while not self._closed:
            try:
                message = await session.fetch()
            except EndOfStream:
                self._log.info("Read session closed, stopping consumption loop")
                return
            except Exception as e:
                category = classify_exception(e)
                if category in (ErrorCategory.PERMANENT, ErrorCategory.AUTH):
                    raise
                record_fetch_error(self.group_id, type(e).__name__)
                log_exception(
                    self._log,
                    e,
                    "Error fetching message, backing off",
                    level=logging.WARNING,
                    include_traceback=False,
                    group_id=self.group_id,
                    delay_seconds=self.options.reconnect_backoff,
                )
                await asyncio.sleep(self.options.reconnect_backoff)
                continue

            await self._process_message(message, handler)

    async def _process_message(self, message: Message, handler: MessageHandler) -> None:
        if self._is_paused(message.topic):
            record_message_consumed(message.topic, self.group_id, message.size, status="paused")
            log_with_context(
                self._log,
                logging.DEBUG,
                "Skipping message from paused topic",
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
            )
            return

        # Use KafkaLogContext to automatically include Kafka context in all logs
        with KafkaLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key_str,
            consumer_group=self.group_id,
        ):
            start_time = time.perf_counter()
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                duration = time.perf_counter() - start_time
                observe_processing_duration(message.topic, self.group_id, duration)
                category = classify_exception(e)
                record_message_consumed(message.topic, self.group_id, message.size, status="error")
                record_processing_error(message.topic, self.group_id, category.value)
                log_exception(
                    self._log,
                    e,
                    "Error processing message, offset not committed",
                    duration_ms=round(duration * 1000, 2),
                )
                return

            duration = time.perf_counter() - start_time
            observe_processing_duration(message.topic, self.group_id, duration)
            record_message_consumed(message.topic, self.group_id, message.size)
            log_with_context(
                self._log,
                logging.DEBUG,
                "Message processed successfully",
                duration_ms=round(duration * 1000, 2),
            )

            if self.options.enable_auto_commit:
                return

            try:
                await self.commit(message)
            except KafkaMessagingError as e:
                # The record is redelivered after a restart; keep consuming
                log_exception(
                    self._log,
                    e,
                    "Failed to commit offset",
                    level=logging.WARNING,
                    include_traceback=False,
                )

    async def commit(self, message: Message) -> None:
        """
        Commit ``message`` as processed for this consumer group.

        Raises:
            NotConnectedError: The read session isn't open
            ValueError: The message has no partition/offset (was never fetched)
            CommitError: The driver failed to commit, whatever it raised
        """
        with self._lock:
            session = self._session
        if session is None:
            raise NotConnectedError("Consumer is not connected")
        if message.partition is None or message.offset is None:
            raise ValueError("Cannot commit a message without partition and offset")

        try:
            await session.commit(message.topic, message.partition, message.offset)
        except Exception as e:
            record_commit(
                message.topic, message.partition, self.group_id, message.offset, success=False
            )
            if isinstance(e, CommitError):
                raise
            raise CommitError(
                f"Failed to commit {message.topic}[{message.partition}]@{message.offset}",
                cause=e,
                context={"error_type": type(e).__name__},
            ) from e

        record_commit(message.topic, message.partition, self.group_id, message.offset)
        log_with_context(
            self._log,
            logging.DEBUG,
            "Committed offset",
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            group_id=self.group_id,
        )

    async def close(self) -> None:
        """
        Stop the consume loop and close the read session.

        Cancels the task running consume() (unless close() is called from
        that task, e.g. inside the handler) and waits up to connect_timeout_ms
        for it to finish. Safe to call multiple times.
        """
        with self._lock:
            already_closed = self._closed
            self._closed = True
            task = self._consume_task
            has_session = self._session is not None

        if already_closed and not has_session and task is None:
            self._log.debug("Consumer already closed")
            return

        self._log.info("Closing Kafka consumer")

        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            done, _ = await asyncio.wait({task}, timeout=self.options.connect_timeout)
            if not done:
                log_with_context(
                    self._log,
                    logging.WARNING,
                    "Consume task did not stop within timeout",
                    group_id=self.group_id,
                    elapsed_seconds=self.options.connect_timeout,
                )

        with self._lock:
            session, self._session = self._session, None
        if session is None:
            return

        try:
            await session.close()
            self._log.info("Kafka consumer closed")
        except KafkaMessagingError as e:
            log_exception(self._log, e, "Error closing Kafka consumer")
            raise
        finally:
            update_connection_status("consumer", connected=False)


__all__ = ["KafkaConsumer", "MessageHandler"]
