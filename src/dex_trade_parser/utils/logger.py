"""
Logging setup.

Modules log through ``get_logger(__name__)``. Handlers are only attached by
the process that embeds the parser (``setup_console_logging`` /
``setup_file_logging``), never at import time.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from dex_trade_parser.utils.log_context import get_signature

LOG_DIR = Path("logs")
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(signature)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_SIZE_MB = 10
BACKUP_COUNT = 5

_loggers: Dict[str, logging.Logger] = {}
_file_handler_added = False


class SignatureFilter(logging.Filter):
    """Adds the signature being classified to log records."""
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'signature'):
            record.signature = get_signature() or '-'
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        for attr in ("event_type", "signature", "dex", "trade_type", "source"):
            value = getattr(record, attr, None)
            if value is not None and value != '-':
                log_data[attr] = value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


_signature_filter = SignatureFilter()


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Get or create a logger."""
    if name in _loggers:
        return _loggers[name]
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    logger.addFilter(_signature_filter)
    _loggers[name] = logger
    return logger


def setup_console_logging(level: int = logging.INFO) -> None:
    """Set up console logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            return

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    console_handler.addFilter(_signature_filter)
    root_logger.addHandler(console_handler)


def setup_file_logging(
    filename: str = "trade_parser.log",
    level: int = logging.INFO,
    use_rotation: bool = True,
    log_dir: Path = LOG_DIR,
) -> None:
    """Set up file logging once per process."""
    global _file_handler_added

    if _file_handler_added:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / Path(filename).name

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if use_rotation:
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
    else:
        file_handler = logging.FileHandler(str(log_path), encoding='utf-8')

    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    file_handler.addFilter(_signature_filter)
    root_logger.addHandler(file_handler)

    _file_handler_added = True


def setup_json_logging(filename: str = "trade_events.jsonl", log_dir: Path = LOG_DIR) -> logging.Logger:
    """Set up JSON logging for classified trade events."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / filename

    json_logger = logging.getLogger("dex_trade_parser.events")
    json_logger.setLevel(logging.INFO)
    json_logger.propagate = False

    for handler in json_logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return json_logger

    json_handler = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    json_handler.setFormatter(JSONFormatter())
    json_handler.addFilter(_signature_filter)
    json_logger.addHandler(json_handler)
    return json_logger


def log_trade_event(
    event_type: str,
    signature: Optional[str],
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Emit a structured event on the events logger, if one is configured.

    Nothing is written until ``setup_json_logging`` has been called.
    """
    json_logger = logging.getLogger("dex_trade_parser.events")
    if not json_logger.handlers:
        return
    record = json_logger.makeRecord(
        name="dex_trade_parser.events",
        level=logging.INFO,
        fn="", lno=0,
        msg=f"{event_type}: {(signature or '-')[:16]}",
        args=(), exc_info=None
    )
    record.event_type = event_type
    record.signature = signature or '-'
    if extra:
        for key, value in extra.items():
            setattr(record, key, value)
    json_logger.handle(record)
