"""Logging for the relay: console, rotating file and optional BetterStack."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from logtail import LogtailHandler

from notification_relay import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _betterstack_handler(formatter):
    handler_kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
    if settings.BETTERSTACK_INGEST_HOST:
        handler_kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
    handler = LogtailHandler(**handler_kwargs)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def _file_handler(formatter, logs_dir=None):
    """Rotating relay.log handler, or None if the log directory cannot be created."""
    logs_dir = Path(logs_dir) if logs_dir is not None else settings.LOGS_DIR
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            logs_dir / "relay.log", maxBytes=10 * 1024 * 1024, backupCount=5
        )
    except OSError as e:
        sys.stderr.write(f"File logging disabled, cannot write to {logs_dir}: {e}\n")
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    root_logger = logging.getLogger()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)
    root_logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Delivery history survives restarts in relay.log
    file_handler = _file_handler(formatter)
    if file_handler is not None:
        root_logger.addHandler(file_handler)

    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            root_logger.addHandler(_betterstack_handler(formatter))
            host_info = settings.BETTERSTACK_INGEST_HOST or "default (in.logs.betterstack.com)"
            root_logger.info(f"BetterStack logging enabled (host: {host_info})")
        except Exception as e:
            root_logger.warning(f"Failed to initialize BetterStack logging: {e}")

    # requests' pool chatter and per-request access lines drown out delivery logs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return logging.getLogger("notification_relay")


def set_console_level(level: int) -> None:
    """Change verbosity of the root logger and its stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, RotatingFileHandler):
            handler.setLevel(level)


logger = setup_logging()
