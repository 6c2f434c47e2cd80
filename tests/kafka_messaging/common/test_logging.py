"""Tests for structured logging helpers, context and formatters."""

import json
import logging

import pytest

from kafka_messaging.common.exceptions import TransportError
from kafka_messaging.common.logging import (
    ConsoleFormatter,
    JSONFormatter,
    KafkaContextFilter,
    KafkaLogContext,
    get_log_context,
    log_exception,
    log_with_context,
    setup_logging,
)
from kafka_messaging.common.logging.setup import get_log_file_path


def _record(msg="hello", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestKafkaLogContext:
    def test_sets_and_restores_context(self):
        assert get_log_context()["kafka"] == {}

        with KafkaLogContext(topic="t1", partition=0, offset=7, consumer_group="g"):
            assert get_log_context()["kafka"] == {
                "topic": "t1",
                "partition": 0,
                "offset": 7,
                "consumer_group": "g",
            }

        assert get_log_context()["kafka"] == {}

    def test_nested_contexts_merge(self):
        with KafkaLogContext(topic="t1", consumer_group="g"):
            with KafkaLogContext(partition=2, offset=3):
                assert get_log_context()["kafka"] == {
                    "topic": "t1",
                    "consumer_group": "g",
                    "partition": 2,
                    "offset": 3,
                }
            assert "offset" not in get_log_context()["kafka"]

    def test_filter_stamps_records(self):
        record = _record()

        with KafkaLogContext(topic="t1", offset=4):
            KafkaContextFilter().filter(record)

        assert record.topic == "t1"
        assert record.offset == 4

    def test_filter_keeps_explicit_fields(self):
        record = _record(topic="explicit")

        with KafkaLogContext(topic="t1"):
            KafkaContextFilter().filter(record)

        assert record.topic == "explicit"


class TestLogHelpers:
    def test_log_with_context_adds_extra(self, caplog):
        logger = logging.getLogger("test.helpers")

        with caplog.at_level(logging.INFO, logger="test.helpers"):
            log_with_context(logger, logging.INFO, "Message sent", topic="t1", offset=3)

        record = caplog.records[-1]
        assert record.getMessage() == "Message sent"
        assert record.topic == "t1"
        assert record.offset == 3

    def test_log_exception_adds_error_fields(self, caplog):
        logger = logging.getLogger("test.helpers")
        error = TransportError("x" * 600)

        with caplog.at_level(logging.WARNING, logger="test.helpers"):
            log_exception(logger, error, "Send failed", level=logging.WARNING, topic="t1")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.error_category == "transient"
        assert record.error_type == "TransportError"
        assert len(record.error_message) == 503
        assert record.topic == "t1"


class TestFormatters:
    def test_json_formatter_outputs_one_object(self):
        record = _record(topic="t1", partition=0, offset=5, outcome="success")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["msg"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["topic"] == "t1"
        assert entry["partition"] == 0
        assert entry["offset"] == 5
        assert entry["outcome"] == "success"
        assert entry["ts"].endswith("Z")

    def test_json_formatter_includes_active_kafka_context(self):
        record = _record()

        with KafkaLogContext(topic="t9", consumer_group="g"):
            entry = json.loads(JSONFormatter().format(record))

        assert entry["topic"] == "t9"
        assert entry["consumer_group"] == "g"

    def test_console_formatter_shows_coordinates(self):
        record = _record(topic="t1", partition=2, offset=9)

        line = ConsoleFormatter().format(record)

        assert "t1[2]@9" in line
        assert line.endswith("hello")


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def cleanup(self):
        """Clear root logger handlers after each test."""
        yield
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            if isinstance(handler.formatter, (ConsoleFormatter, JSONFormatter)):
                handler.close()
        root_logger.handlers.clear()

    def test_console_only_without_log_dir(self):
        setup_logging()

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_writes_json_lines_to_file(self, tmp_path):
        logger = setup_logging(name="svc", log_dir=tmp_path, use_instance_id=False)

        logger.info("started", extra={"topic": "t1"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_files = list(tmp_path.rglob("svc_*.log"))
        assert len(log_files) == 1
        lines = [json.loads(line) for line in log_files[0].read_text().splitlines()]
        assert any(line["msg"] == "started" and line["topic"] == "t1" for line in lines)

    def test_quiets_broker_client_loggers(self):
        setup_logging()

        assert logging.getLogger("aiokafka").level == logging.WARNING

    def test_log_file_path_layout(self, tmp_path):
        path = get_log_file_path(tmp_path, "svc", instance_id="p1")

        assert path.parent.parent == tmp_path
        assert path.name.startswith("svc_")
        assert path.name.endswith("_p1.log")
