"""Structured logging configuration."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

from mealcart.config import settings

SERVICE_NAME = "mealcart"

# Record attributes lifted to top-level JSON fields when a caller sets them
CONTEXT_FIELDS = ("platform", "plan_id", "user_id", "item")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter tagging each record with service, source and price context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['service'] = SERVICE_NAME
        log_record['timestamp'] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_record[name] = value


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: str | Path | None = None) -> logging.Logger:
    """
    Configure root logging for the service and the scripts.

    Console output stays human-readable; app.log gets every record as JSON
    and error.log only errors.

    Args:
        log_dir: Directory for log files (defaults to settings.log_dir)

    Returns:
        The configured root logger
    """
    logs_dir = Path(log_dir or settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    root_logger.addHandler(_file_handler(logs_dir / "app.log", logging.DEBUG, json_formatter))
    root_logger.addHandler(_file_handler(logs_dir / "error.log", logging.ERROR, json_formatter))

    # Chatty at DEBUG
    for noisy in ("httpx", "apscheduler", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adds fixed context fields (platform, plan_id, ...) to every record."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextLoggerAdapter:
    """
    Get a logger that carries context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Fields such as platform='blinkit' or plan_id=3

    Returns:
        ContextLoggerAdapter with the context attached
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)
