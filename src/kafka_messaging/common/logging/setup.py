"""Root logger configuration for services built on kafka_messaging."""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from kafka_messaging.common.logging.context import KafkaContextFilter, set_log_context
from kafka_messaging.common.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# aiokafka logs every reconnect and rebalance step at INFO
NOISY_LOGGERS = [
    "aiokafka",
    "aiokafka.conn",
    "aiokafka.consumer.group_coordinator",
]

PLAIN_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"


def get_log_file_path(
    log_dir: Path,
    name: str,
    instance_id: Optional[str] = None,
) -> Path:
    """
    Path of today's log file: ``{log_dir}/{YYYY-MM-DD}/{name}_{YYYYMMDD}[_{instance_id}].log``.

    instance_id keeps several processes on one host out of each other's file.
    """
    now = datetime.now()
    suffix = f"_{instance_id}" if instance_id else ""
    return log_dir / now.strftime("%Y-%m-%d") / f"{name}_{now:%Y%m%d}{suffix}.log"


def _build_handlers(
    name: str,
    log_dir: Optional[Path],
    json_format: bool,
    console_level: int,
    file_level: int,
    max_bytes: int,
    backup_count: int,
    use_instance_id: bool,
) -> List[logging.Handler]:
    context_filter = KafkaContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter())
    console.addFilter(context_filter)
    handlers: List[logging.Handler] = [console]

    if log_dir is None:
        return handlers

    path = get_log_file_path(
        Path(log_dir), name, instance_id=f"p{os.getpid()}" if use_instance_id else None
    )
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT)
    )
    file_handler.addFilter(context_filter)
    handlers.append(file_handler)
    return handlers


def setup_logging(
    name: str = "kafka_messaging",
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    client_id: Optional[str] = None,
    worker_id: Optional[str] = None,
    use_instance_id: bool = True,
) -> logging.Logger:
    """
    Replace the root logger's handlers with a console handler and, when
    ``log_dir`` is given, a size-rotated file handler.

    Both handlers carry KafkaContextFilter, so records emitted while a
    message is being handled include its topic/partition/offset. The file
    gets one JSON object per line unless json_format is False.

    Args:
        name: Name of the returned logger and prefix of the log file
        log_dir: Directory for log files (None = console only)
        json_format: JSON lines in the log file
        console_level: Console handler level
        file_level: File handler level
        max_bytes: Rotate the log file at this size
        backup_count: Rotated files to keep
        suppress_noisy: Raise aiokafka's internal loggers to WARNING
        client_id: Kafka client id stamped on every record
        worker_id: Worker identifier stamped on JSON records
        use_instance_id: Put the process id in the log file name

    Returns:
        The ``name`` logger
    """
    set_log_context(client_id=client_id, worker_id=worker_id)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Handlers do the filtering
    root_logger.handlers.clear()
    handlers = _build_handlers(
        name,
        log_dir,
        json_format,
        console_level,
        file_level,
        max_bytes,
        backup_count,
        use_instance_id,
    )
    for handler in handlers:
        root_logger.addHandler(handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"client_id": client_id, "handler_count": len(handlers)},
    )
    return logger
