"""
Logging utilities for the CloudPRNT emulator.
Provides structured logging with file rotation and console output.
"""

import logging
import logging.handlers
import sys
from typing import Optional

from ..config import config


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    # Color codes
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format log record with colors."""
        # Work on a copy so the file handler keeps the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


class PrinterLogger:
    """Emulator logger with key=value context formatting."""

    def __init__(self, name: str = "cloudprnt_emulator"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, config.LOG_LEVEL))

        # Prevent duplicate handlers
        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Setup file and console handlers."""

        # File handler with rotation
        if config.LOG_FILE:
            file_handler = logging.handlers.RotatingFileHandler(
                config.LOG_FILE,
                maxBytes=self._parse_size(config.LOG_MAX_SIZE),
                backupCount=config.LOG_BACKUP_COUNT
            )

            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

        # Console handler with colors
        console_handler = logging.StreamHandler(sys.stdout)
        console_formatter = ColoredFormatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '10MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith('KB'):
            return int(size_str[:-2]) * 1024
        elif size_str.endswith('MB'):
            return int(size_str[:-2]) * 1024 * 1024
        elif size_str.endswith('GB'):
            return int(size_str[:-2]) * 1024 * 1024 * 1024
        else:
            return int(size_str)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        """Log info message."""
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs):
        """Log error message."""
        self.logger.error(self._format_message(message, **kwargs))

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self.logger.critical(self._format_message(message, **kwargs))

    def _format_message(self, message: str, **kwargs) -> str:
        """Format message with additional context."""
        if kwargs:
            context = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
            return f"{message} | {context}"
        return message

    # CloudPRNT-specific logging methods
    def job_start(self, token: Optional[str], media_type: str):
        """Log print job start."""
        self.info("🖨️ Job started",
                  token=token,
                  media_type=media_type)

    def job_complete(self, token: Optional[str], path: str):
        """Log print job completion."""
        self.info("✅ Job completed",
                  token=token,
                  path=path)

    def job_error(self, token: Optional[str], code: str, error: str):
        """Log print job failure."""
        self.error("❌ Job failed",
                   token=token,
                   code=code,
                   error=error)

    def ack_sent(self, token: Optional[str], code: str):
        """Log job acknowledgment."""
        self.info("📬 Job acknowledged",
                  token=token,
                  code=code)

    def poll_status(self, job_ready: bool, media_types=None):
        """Log poll response."""
        self.debug("📡 Poll response",
                   job_ready=job_ready,
                   media_types=media_types)

    def mqtt_connect(self, broker: str, port: int):
        """Log MQTT connection."""
        self.info("🔌 MQTT connected",
                  broker=broker,
                  port=port)

    def mqtt_disconnect(self, reason: str = ""):
        """Log MQTT disconnection."""
        self.warning("🔌 MQTT disconnected",
                     reason=reason)

    def mqtt_message(self, topic: str, size: int):
        """Log MQTT message received."""
        self.debug("📨 MQTT message",
                   topic=topic,
                   size=size)

    def system_info(self, info: dict):
        """Log system information."""
        self.info("💻 System info", **info)


# Global logger instance
logger = PrinterLogger()
