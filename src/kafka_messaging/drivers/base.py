"""
Broker driver contract.

The producer and consumer never talk to a Kafka client library directly.
They open sessions through a BrokerDriver and interpret only these failure
signals from it:

- TransportError (or any exception classified TRANSIENT): retry
- ConfigurationError / AuthError: surface to the caller, never retry
- EndOfStream: the read session is closed, stop consuming
- asyncio.CancelledError: the calling task was cancelled
"""

from abc import ABC, abstractmethod
from typing import List

from kafka_messaging.config import KafkaConfig
from kafka_messaging.message import Message
from kafka_messaging.options import KafkaOptions


class WriteSession(ABC):
    """An open, reusable write handle. Must tolerate concurrent write() calls."""

    @abstractmethod
    async def write(self, message: Message) -> Message:
        """Write one record and wait for its acknowledgement.

        Returns:
            The message with partition/offset/timestamp as acknowledged
        """

    @abstractmethod
    async def flush(self) -> None:
        """Block until every buffered record has been acknowledged."""

    @abstractmethod
    async def close(self) -> None:
        """Flush and release the session."""


class ReadSession(ABC):
    """An open read handle bound to a topic set and one consumer group."""

    @abstractmethod
    async def fetch(self) -> Message:
        """Block until the next record is available.

        Raises:
            EndOfStream: The session was closed
            TransportError: Transient fetch failure
        """

    @abstractmethod
    async def commit(self, topic: str, partition: int, offset: int) -> None:
        """Mark the record at ``offset`` as processed for the consumer group.

        ``offset`` is the record's own offset; drivers translate it to the
        broker's "next offset to read" convention.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the session. Subsequent fetch() calls raise EndOfStream."""


class BrokerDriver(ABC):
    """Factory for broker sessions."""

    name: str = "driver"

    @abstractmethod
    async def open_writer(self, config: KafkaConfig, options: KafkaOptions) -> WriteSession:
        """Open a write session."""

    @abstractmethod
    async def open_reader(
        self,
        config: KafkaConfig,
        options: KafkaOptions,
        topics: List[str],
        group_id: str,
    ) -> ReadSession:
        """Open a read session subscribed to ``topics`` as ``group_id``."""


__all__ = ["BrokerDriver", "ReadSession", "WriteSession"]
