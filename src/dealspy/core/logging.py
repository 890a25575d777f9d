"""Logging configuration and price event emission."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

# Libraries whose INFO chatter would drown out per-product lines
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines tagged with the emitting service."""

    def __init__(self, *args: Any, service_name: str = "dealspy", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = str(log_record.get("level") or record.levelname).upper()
        log_record.setdefault("service", self.service_name)


def _console_handler() -> logging.Handler:
    from rich.logging import RichHandler

    return RichHandler(rich_tracebacks=True, markup=False, show_time=True, show_path=False)


def setup_logging(
    level: str = "INFO",
    service_name: str = "dealspy",
    log_format: str | None = None,
) -> None:
    """Configure the root logger.

    ``log_format`` is ``json`` (one object per line on stdout) or ``text``
    (rich console output). When omitted the ``LOG_FORMAT`` variable decides.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    fmt = (log_format or os.environ.get("LOG_FORMAT", "json")).lower()
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            CustomJsonFormatter(
                "%(timestamp)s %(level)s %(name)s %(message)s",
                service_name=service_name,
                json_ensure_ascii=False,
            )
        )
    else:
        handler = _console_handler()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_event(event_type: str, **data: Any) -> None:
    """Log a structured pipeline event such as a detected price drop."""
    payload = {key: str(value) if value is not None else None for key, value in data.items()}
    logging.getLogger("dealspy.event").info(
        f"Event: {event_type}", extra={"event_type": event_type, "event_data": payload}
    )


__all__ = ["CustomJsonFormatter", "log_event", "setup_logging"]
