"""
Log context propagation via contextvars.

Values set here follow the current asyncio task, so a consume loop and a
concurrently running producer never see each other's Kafka context.
"""

import logging
from contextvars import ContextVar, Token
from typing import Any, Dict, List, Optional

_client_id: ContextVar[Optional[str]] = ContextVar("client_id", default=None)
_worker_id: ContextVar[Optional[str]] = ContextVar("worker_id", default=None)
_kafka_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "kafka_context", default=None
)


def set_log_context(
    client_id: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    """Set process-level identifiers stamped on every log record."""
    if client_id is not None:
        _client_id.set(client_id)
    if worker_id is not None:
        _worker_id.set(worker_id)


def get_log_context() -> Dict[str, Any]:
    """Snapshot of the current log context."""
    return {
        "client_id": _client_id.get(),
        "worker_id": _worker_id.get(),
        "kafka": _kafka_context.get() or {},
    }


class KafkaLogContext:
    """
    Context manager that stamps Kafka coordinates on every log record.

    Usage:
        with KafkaLogContext(topic=msg.topic, partition=msg.partition,
                             offset=msg.offset, consumer_group=group):
            logger.info("Processing")  # record carries topic/partition/offset
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        consumer_group: Optional[str] = None,
    ):
        self._values = {
            k: v
            for k, v in {
                "topic": topic,
                "partition": partition,
                "offset": offset,
                "key": key,
                "consumer_group": consumer_group,
            }.items()
            if v is not None
        }
        self._tokens: List[Token] = []

    def __enter__(self) -> "KafkaLogContext":
        merged = dict(_kafka_context.get() or {})
        merged.update(self._values)
        self._tokens.append(_kafka_context.set(merged))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _kafka_context.reset(self._tokens.pop())


class KafkaContextFilter(logging.Filter):
    """Copies the active Kafka context onto log records that lack those fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in (_kafka_context.get() or {}).items():
            if not hasattr(record, key):
                setattr(record, key, value)
        client_id = _client_id.get()
        if client_id and not hasattr(record, "client_id"):
            record.client_id = client_id
        return True
