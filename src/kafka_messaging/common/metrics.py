"""
Prometheus instrumentation for KafkaProducer and KafkaConsumer.

All series are prefixed ``kafka_messaging_``. Producer series are labelled by
topic; consumer series by topic and consumer group. The clients only call the
record_*/update_* helpers below; exposing the registry (start_http_server,
an ASGI app, ...) is left to the embedding service.
"""

from prometheus_client import Counter, Gauge, Histogram

PREFIX = "kafka_messaging"

CONSUMER_LABELS = ("topic", "consumer_group")

# Handler latency from 5ms to 1min
PROCESSING_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


def _outcome(success: bool) -> str:
    return "success" if success else "error"


# Producer

produced_messages = Counter(
    f"{PREFIX}_messages_produced_total",
    "Records acknowledged (or rejected) by the broker",
    ("topic", "status"),
)

produced_bytes = Counter(
    f"{PREFIX}_messages_produced_bytes_total",
    "Payload bytes acknowledged by the broker",
    ("topic",),
)

send_errors = Counter(
    f"{PREFIX}_producer_errors_total",
    "Sends that failed after retries, by exception type",
    ("topic", "error_type"),
)

# Consumer

consumed_messages = Counter(
    f"{PREFIX}_messages_consumed_total",
    "Fetched records by outcome (success, error, paused)",
    (*CONSUMER_LABELS, "status"),
)

consumed_bytes = Counter(
    f"{PREFIX}_messages_consumed_bytes_total",
    "Payload bytes of successfully handled records",
    CONSUMER_LABELS,
)

handler_errors = Counter(
    f"{PREFIX}_processing_errors_total",
    "Handler failures by error category",
    (*CONSUMER_LABELS, "error_category"),
)

fetch_errors = Counter(
    f"{PREFIX}_fetch_errors_total",
    "Transient fetch failures in the consume loop",
    ("consumer_group", "error_type"),
)

offset_commits = Counter(
    f"{PREFIX}_commits_total",
    "Explicit offset commits by outcome",
    (*CONSUMER_LABELS, "status"),
)

committed_offset = Gauge(
    f"{PREFIX}_consumer_committed_offset",
    "Offset of the last explicitly committed record",
    ("topic", "partition", "consumer_group"),
)

processing_seconds = Histogram(
    f"{PREFIX}_message_processing_duration_seconds",
    "Wall time spent inside the message handler",
    CONSUMER_LABELS,
    buckets=PROCESSING_BUCKETS,
)

# Health

connection_status = Gauge(
    f"{PREFIX}_connection_status",
    "1 while the component holds an open broker session, else 0",
    ("component",),
)

paused_topic_count = Gauge(
    f"{PREFIX}_paused_topics",
    "Topics currently paused by the consumer",
    ("consumer_group",),
)


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    """Count one send; bytes are only added for acknowledged records."""
    produced_messages.labels(topic=topic, status=_outcome(success)).inc()
    if success:
        produced_bytes.labels(topic=topic).inc(message_bytes)


def record_producer_error(topic: str, error_type: str) -> None:
    send_errors.labels(topic=topic, error_type=error_type).inc()


def record_message_consumed(
    topic: str, consumer_group: str, message_bytes: int, status: str = "success"
) -> None:
    """
    Count one fetched record.

    Args:
        status: success, error (handler raised) or paused (discarded)
    """
    consumed_messages.labels(topic=topic, consumer_group=consumer_group, status=status).inc()
    if status == "success":
        consumed_bytes.labels(topic=topic, consumer_group=consumer_group).inc(message_bytes)


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    handler_errors.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def observe_processing_duration(topic: str, consumer_group: str, seconds: float) -> None:
    processing_seconds.labels(topic=topic, consumer_group=consumer_group).observe(seconds)


def record_fetch_error(consumer_group: str, error_type: str) -> None:
    fetch_errors.labels(consumer_group=consumer_group, error_type=error_type).inc()


def record_commit(
    topic: str, partition: int, consumer_group: str, offset: int, success: bool = True
) -> None:
    """Count a commit; on success also publish the committed offset."""
    offset_commits.labels(
        topic=topic, consumer_group=consumer_group, status=_outcome(success)
    ).inc()
    if success:
        committed_offset.labels(
            topic=topic, partition=str(partition), consumer_group=consumer_group
        ).set(offset)


def update_connection_status(component: str, connected: bool) -> None:
    """component is "producer" or "consumer"."""
    connection_status.labels(component=component).set(1 if connected else 0)


def update_paused_topics(consumer_group: str, count: int) -> None:
    paused_topic_count.labels(consumer_group=consumer_group).set(count)


__all__ = [
    "record_message_produced",
    "record_producer_error",
    "record_message_consumed",
    "record_processing_error",
    "observe_processing_duration",
    "record_fetch_error",
    "record_commit",
    "update_connection_status",
    "update_paused_topics",
]
