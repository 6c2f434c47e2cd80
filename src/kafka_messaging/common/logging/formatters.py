"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from kafka_messaging.common.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Kafka coordinates
        "topic",
        "partition",
        "offset",
        "key",
        "consumer_group",
        "topics",
        "group_id",
        "client_id",
        "dsn",
        # Outcomes
        "outcome",
        "attempt",
        "attempts",
        "delay_seconds",
        "elapsed_seconds",
        "duration_ms",
        "value_size",
        "message_count",
        # Errors
        "error_category",
        "error_message",
        "error_type",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        ctx = get_log_context()
        if ctx["worker_id"]:
            log_entry["worker_id"] = ctx["worker_id"]
        for key, value in ctx["kafka"].items():
            log_entry.setdefault(key, value)

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes topic/partition/offset when a Kafka context is active.
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
        ]

        topic = getattr(record, "topic", None)
        if topic:
            coords = str(topic)
            partition = getattr(record, "partition", None)
            offset = getattr(record, "offset", None)
            if partition is not None:
                coords += f"[{partition}]"
            if offset is not None:
                coords += f"@{offset}"
            parts.append(coords)

        line = f"{' - '.join(parts)} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
