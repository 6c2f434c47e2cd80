"""Structured logging helpers."""

import logging
from typing import Any, Dict

from kafka_messaging.common.exceptions import classify_exception

MAX_ERROR_MESSAGE_LENGTH = 500


def _fields(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    # None means "unknown here"; leave the slot to KafkaLogContext
    return {k: v for k, v in kwargs.items() if v is not None}


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured fields passed as ``extra``.

    Fields whose value is None are dropped, so a record logged with
    ``partition=None`` still picks up the partition of the active
    KafkaLogContext.

    Example:
        log_with_context(
            logger, logging.INFO, "Message sent",
            topic=msg.topic,
            partition=msg.partition,
            outcome="success",
        )
    """
    if not logger.isEnabledFor(level):
        return
    logger.log(level, msg, extra=_fields(kwargs))


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log a failure with its classification.

    Adds error_category (transient/auth/permanent/unknown, also for foreign
    exceptions), error_type and a truncated error_message to the record.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: What was being attempted
        level: Log level (default: ERROR)
        include_traceback: Attach exc_info (default: True)
        **kwargs: Additional structured fields
    """
    error_message = str(exc) or type(exc).__name__
    if len(error_message) > MAX_ERROR_MESSAGE_LENGTH:
        error_message = error_message[:MAX_ERROR_MESSAGE_LENGTH] + "..."

    fields = _fields(kwargs)
    fields.setdefault("error_category", classify_exception(exc).value)
    fields.setdefault("error_type", type(exc).__name__)
    fields["error_message"] = error_message

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=fields)
