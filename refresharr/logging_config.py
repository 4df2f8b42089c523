"""
Logging configuration for RefreshArr.
Handles console and rotating file output plus the optional webhook summary.
"""

import logging
import os
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import requests

# Global lock for thread-safe console output (shared with tqdm)
_console_lock = threading.RLock()

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

# Summary level sits just above WARNING so notification handlers can pick it out
SUMMARY = logging.WARNING + 1
logging.addLevelName(SUMMARY, 'SUMMARY')

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "summary": SUMMARY,
}


def get_console_lock() -> threading.RLock:
    """Get the global console output lock for use with tqdm."""
    return _console_lock


def parse_log_level(value: str, default: int = logging.INFO) -> int:
    """Map a level name to a logging level, falling back to default."""
    if not value:
        return default
    level = _LEVELS.get(value.lower())
    if level is None:
        logging.warning(f"Invalid log level: {value}. Using default level: {logging.getLevelName(default)}")
        return default
    return level


class ThreadSafeStreamHandler(logging.StreamHandler):
    """StreamHandler that writes under the global console lock.

    Worker threads log concurrently and tqdm redraws its bar from the main
    thread; both go through the same lock.
    """

    def emit(self, record):
        with _console_lock:
            super().emit(record)


class WebhookHandler(logging.Handler):
    """Posts log records to a Discord-style webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0):
        super().__init__()
        self.webhook_url = webhook_url
        self.timeout = timeout

    def emit(self, record):
        if record.levelno == SUMMARY:
            content = "RefreshArr Summary:\n" + record.getMessage()
        else:
            content = f"[{record.levelname}] {record.getMessage()}"
        try:
            response = requests.post(self.webhook_url, json={"content": content}, timeout=self.timeout)
        except requests.exceptions.RequestException:
            self.handleError(record)
            return
        if response.status_code not in (200, 204):
            logging.getLogger(__name__).debug(f"Webhook returned HTTP {response.status_code}")


class LoggingManager:
    """Manages logging configuration and setup."""

    def __init__(self, logs_folder: Optional[str] = None, log_level: str = "info", max_log_files: int = 5):
        self.logs_folder = Path(logs_folder) if logs_folder else None
        self.log_level = log_level
        self.max_log_files = max_log_files
        self.log_file_pattern = "refresharr_log_*.log"
        self.logger = logging.getLogger()
        self.summary_messages: List[str] = []

    def setup_logging(self) -> None:
        """Set up console output, the optional log file, and the level."""
        console_handler = ThreadSafeStreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(console_handler)

        if self.logs_folder is not None:
            self._ensure_logs_folder()
            self._setup_log_file()
            self._clean_old_log_files()

        self.logger.setLevel(parse_log_level(self.log_level))
        # Suppress noisy HTTP request logs from urllib3/requests
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)

    def _ensure_logs_folder(self) -> None:
        try:
            self.logs_folder.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            raise PermissionError(f"{self.logs_folder} not writable, please fix the logs folder setting.")

    def _setup_log_file(self) -> None:
        current_time = datetime.now().strftime("%Y%m%d_%H%M")
        log_file = self.logs_folder / f"refresharr_log_{current_time}.log"
        file_handler = RotatingFileHandler(log_file, maxBytes=20*1024*1024, backupCount=self.max_log_files)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(file_handler)

    def _clean_old_log_files(self) -> None:
        """Keep at most max_log_files log files, oldest removed first."""
        existing = sorted(self.logs_folder.glob(self.log_file_pattern), key=lambda p: p.stat().st_mtime)
        while len(existing) > self.max_log_files:
            os.remove(existing.pop(0))

    def setup_notification_handlers(self, webhook_url: str, webhook_level: str = "summary") -> None:
        if not webhook_url:
            return
        handler = WebhookHandler(webhook_url)
        handler.setLevel(parse_log_level(webhook_level, default=SUMMARY))
        self.logger.addHandler(handler)

    def add_summary_message(self, message: str) -> None:
        self.summary_messages.append(message)

    def log_summary(self) -> None:
        if not self.summary_messages:
            return
        if len(self.summary_messages) == 1:
            message = self.summary_messages[0]
        else:
            message = '\n  ' + '\n  '.join(self.summary_messages)
        self.logger.log(SUMMARY, message)

    def shutdown(self) -> None:
        logging.shutdown()
