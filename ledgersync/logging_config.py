"""Logging for the sync engine and API.

Three handlers hang off the root logger:
    console       stdout at the configured level
    app.log       everything at DEBUG
    sync.log      sync job, scheduler and account matching lines only, so a
                  connection's history can be followed without API noise
"""

import logging
import sys
from pathlib import Path

from ledgersync.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers whose records also go to sync.log
SYNC_LOGGERS = ("ledgersync.sync", "ledgersync.cron", "ledgersync.account_matcher", "ledgersync.health")

# Provider SDK and HTTP client loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "urllib3", "plaid")

# Set on handlers we install so a second setup call replaces them
_HANDLER_MARKER = "_ledgersync_handler"


class SyncLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(SYNC_LOGGERS)


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """Install the console, app.log and sync.log handlers.

    Safe to call more than once; handlers from a previous call are removed.
    """
    settings = settings or get_settings()
    logs_dir = Path(settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console_handler = _mark(logging.StreamHandler(sys.stdout))
    console_handler.setLevel(settings.log_level.upper())
    console_handler.setFormatter(formatter)

    file_handler = _mark(logging.FileHandler(logs_dir / "app.log"))
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    sync_handler = _mark(logging.FileHandler(logs_dir / "sync.log"))
    sync_handler.setLevel(logging.INFO)
    sync_handler.setFormatter(formatter)
    sync_handler.addFilter(SyncLogFilter())

    handlers = [console_handler, file_handler, sync_handler]

    root_logger = logging.getLogger()
    for handler in [h for h in root_logger.handlers if getattr(h, _HANDLER_MARKER, False)]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        root_logger.addHandler(handler)

    # uvicorn installs its own handlers; route it through ours instead
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logger = logging.getLogger(logger_name)
        logger.handlers = [console_handler, file_handler]
        logger.propagate = False

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    app_logger = logging.getLogger("ledgersync")
    app_logger.setLevel(logging.DEBUG)
    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ledgersync namespace, e.g. get_logger("sync")."""
    return logging.getLogger(f"ledgersync.{name}")
