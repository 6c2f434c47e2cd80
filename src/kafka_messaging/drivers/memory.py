"""
In-process broker driver for tests and local development.

Behaves like a single Kafka cluster living in the event loop:

- Topics are auto-created on first use with ``default_partitions`` partitions
- Keyed records land on ``crc32(key) % partitions``; keyless records are
  spread round-robin
- Offsets start at 0 and increase per partition
- Committed offsets are stored per consumer group and survive session close,
  so a new session in the same group resumes where the last commit left off
- Fetch blocks on an asyncio.Condition until a record arrives or the
  session is closed

There is no partition assignment: every read session of a group sees every
partition of its subscribed topics.

Usage:
    >>> broker = InMemoryBroker(default_partitions=3)
    >>> producer = KafkaProducer(config, driver=broker)
    >>> broker.fail_next_writes(2)  # next two writes raise TransportError
"""

import asyncio
import dataclasses
import logging
import time
import zlib
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from kafka_messaging.common.exceptions import (
    CommitError,
    ConfigurationError,
    EndOfStream,
    TransportError,
)
from kafka_messaging.common.logging import log_with_context
from kafka_messaging.config import KafkaConfig
from kafka_messaging.drivers.base import BrokerDriver, ReadSession, WriteSession
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions

logger = logging.getLogger(__name__)

TopicPartitionKey = Tuple[str, int]


class InMemoryBroker(BrokerDriver):
    """Broker driver that stores every record in process memory."""

    name = "memory"

    def __init__(self, default_partitions: int = 1):
        if default_partitions < 1:
            raise ValueError("default_partitions must be at least 1")
        self.default_partitions = default_partitions
        self._logs: Dict[str, List[List[Message]]] = {}
        self._round_robin: Dict[str, int] = {}
        # group -> (topic, partition) -> next offset to read
        self._committed: Dict[str, Dict[TopicPartitionKey, int]] = {}
        self._failing_writes = 0
        self._failing_fetches = 0
        self._condition: Optional[asyncio.Condition] = None

    @property
    def condition(self) -> asyncio.Condition:
        # Created lazily so the broker can be built outside a running loop
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    # Topic administration

    def create_topic(self, topic: str, partitions: Optional[int] = None) -> None:
        """Create ``topic`` if missing. Existing topics are left untouched."""
        if topic in self._logs:
            return
        count = partitions or self.default_partitions
        if count < 1:
            raise ValueError("partitions must be at least 1")
        self._logs[topic] = [[] for _ in range(count)]
        self._round_robin[topic] = 0

    def partition_count(self, topic: str) -> int:
        return len(self._logs.get(topic, []))

    def records(self, topic: str, partition: Optional[int] = None) -> List[Message]:
        """Snapshot of stored records, for assertions."""
        partitions = self._logs.get(topic, [])
        if partition is not None:
            return list(partitions[partition])
        return [msg for log in partitions for msg in log]

    def committed(self, group_id: str, topic: str, partition: int) -> Optional[int]:
        """Offset of the last committed record for the group, or None."""
        next_offset = self._committed.get(group_id, {}).get((topic, partition))
        return None if next_offset is None else next_offset - 1

    # Failure injection

    def fail_next_writes(self, count: int) -> None:
        """Make the next ``count`` writes raise TransportError."""
        self._failing_writes = count

    def fail_next_fetches(self, count: int) -> None:
        """Make the next ``count`` fetches raise TransportError."""
        self._failing_fetches = count

    def _take_write_failure(self) -> bool:
        if self._failing_writes > 0:
            self._failing_writes -= 1
            return True
        return False

    def _take_fetch_failure(self) -> bool:
        if self._failing_fetches > 0:
            self._failing_fetches -= 1
            return True
        return False

    # Storage

    def _select_partition(self, message: Message) -> int:
        count = self.partition_count(message.topic)
        if message.partition is not None:
            if not 0 <= message.partition < count:
                raise ConfigurationError(
                    f"Partition {message.partition} does not exist for topic "
                    f"{message.topic!r} ({count} partitions)",
                    context={"topic": message.topic, "partition": message.partition},
                )
            return message.partition
        if message.key is not None:
            return zlib.crc32(message.key) % count
        partition = self._round_robin[message.topic] % count
        self._round_robin[message.topic] = partition + 1
        return partition

    async def append(self, message: Message) -> Message:
        self.create_topic(message.topic)
        partition = self._select_partition(message)
        log = self._logs[message.topic][partition]
        stored = dataclasses.replace(
            message,
            partition=partition,
            offset=len(log),
            timestamp=message.timestamp or datetime.now(timezone.utc),
        )
        async with self.condition:
            log.append(stored)
            self.condition.notify_all()
        return stored

    def commit_offset(self, group_id: str, topic: str, partition: int, next_offset: int) -> None:
        self._committed.setdefault(group_id, {})[(topic, partition)] = next_offset

    def starting_offset(
        self, group_id: str, topic: str, partition: int, auto_offset_reset: str
    ) -> int:
        committed = self._committed.get(group_id, {}).get((topic, partition))
        if committed is not None:
            return committed
        if auto_offset_reset == "earliest":
            return 0
        return len(self._logs[topic][partition])

    def record_at(self, topic: str, partition: int, offset: int) -> Optional[Message]:
        log = self._logs[topic][partition]
        return log[offset] if offset < len(log) else None

    # BrokerDriver

    async def open_writer(self, config: KafkaConfig, options: KafkaOptions) -> WriteSession:
        config.validate()
        options.validate()
        return MemoryWriteSession(self)

    async def open_reader(
        self,
        config: KafkaConfig,
        options: KafkaOptions,
        topics: List[str],
        group_id: str,
    ) -> ReadSession:
        config.validate()
        options.validate()
        for topic in topics:
            self.create_topic(topic)
        session = MemoryReadSession(self, topics, group_id, options)
        log_with_context(
            logger,
            logging.DEBUG,
            "In-memory read session opened",
            topics=topics,
            group_id=group_id,
        )
        return session


class MemoryWriteSession(WriteSession):
    def __init__(self, broker: InMemoryBroker):
        self._broker = broker
        self._closed = False

    async def write(self, message: Message) -> Message:
        if self._closed:
            raise TransportError("Write session is closed", context={"topic": message.topic})
        if self._broker._take_write_failure():
            raise TransportError("Injected write failure", context={"topic": message.topic})
        return await self._broker.append(message)

    async def flush(self) -> None:
        # Writes are stored synchronously, nothing is ever buffered
        return None

    async def close(self) -> None:
        self._closed = True


class MemoryReadSession(ReadSession):
    """Read position per subscribed partition, plus optional auto-commit."""

    def __init__(
        self,
        broker: InMemoryBroker,
        topics: List[str],
        group_id: str,
        options: KafkaOptions,
    ):
        self._broker = broker
        self._topics = list(topics)
        self._group_id = group_id
        self._auto_offset_reset = options.auto_offset_reset
        self._auto_commit = options.enable_auto_commit
        self._auto_commit_interval = options.auto_commit_interval_ms / 1000
        self._last_auto_commit = time.monotonic()
        self._positions: Dict[TopicPartitionKey, int] = {}
        self._cursor = 0
        self._closed = False
        self._sync_positions()

    def _sync_positions(self) -> None:
        for topic in self._topics:
            for partition in range(self._broker.partition_count(topic)):
                if (topic, partition) not in self._positions:
                    self._positions[(topic, partition)] = self._broker.starting_offset(
                        self._group_id, topic, partition, self._auto_offset_reset
                    )

    def _next_record(self) -> Optional[Message]:
        keys = list(self._positions)
        # Rotate the start point so one busy partition can't starve the rest
        for i in range(len(keys)):
            topic, partition = keys[(self._cursor + i) % len(keys)]
            record = self._broker.record_at(topic, partition, self._positions[(topic, partition)])
            if record is not None:
                self._positions[(topic, partition)] += 1
                self._cursor = (self._cursor + i + 1) % len(keys)
                return record
        return None

    def _commit_positions(self) -> None:
        for (topic, partition), next_offset in self._positions.items():
            self._broker.commit_offset(self._group_id, topic, partition, next_offset)
        self._last_auto_commit = time.monotonic()

    def _maybe_auto_commit(self) -> None:
        if not self._auto_commit:
            return
        if time.monotonic() - self._last_auto_commit >= self._auto_commit_interval:
            self._commit_positions()

    async def fetch(self) -> Message:
        condition = self._broker.condition
        async with condition:
            while True:
                if self._closed:
                    raise EndOfStream("Read session is closed")
                if self._broker._take_fetch_failure():
                    raise TransportError("Injected fetch failure")
                self._sync_positions()
                record = self._next_record()
                if record is not None:
                    self._maybe_auto_commit()
                    return record
                await condition.wait()

    async def commit(self, topic: str, partition: int, offset: int) -> None:
        if self._closed:
            raise CommitError(
                "Read session is closed",
                context={"topic": topic, "partition": partition, "offset": offset},
            )
        self._broker.commit_offset(self._group_id, topic, partition, offset + 1)

    async def close(self) -> None:
        if self._closed:
            return
        if self._auto_commit:
            self._commit_positions()
        condition = self._broker.condition
        async with condition:
            self._closed = True
            condition.notify_all()


__all__ = ["InMemoryBroker", "MemoryReadSession", "MemoryWriteSession"]
