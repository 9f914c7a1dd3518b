"""
Configuration management for the CloudPRNT emulator.
Handles loading and validation of environment variables and settings.
"""

import os
from dotenv import load_dotenv

from . import __version__

# Load environment variables from .env file
load_dotenv()


class Config:
    """Configuration class for the emulated printer."""

    def __init__(self):
        self._load_config()
        self._validate_config()

    def _load_config(self):
        """Load configuration from environment variables."""

        # Printer identity
        self.PRINTER_MAC = os.getenv("PRINTER_MAC", "00:00:00:00:00:00")

        # Output
        self.OUTPUT_DIR = os.getenv("OUTPUT_DIR", ".")

        # HTTP Configuration
        self.HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "30"))
        self.SETTINGS_TIMEOUT = int(os.getenv("SETTINGS_TIMEOUT", "15"))
        self.SETTINGS_RETRY_ATTEMPTS = int(os.getenv("SETTINGS_RETRY_ATTEMPTS", "3"))
        self.SETTINGS_RETRY_DELAY = int(os.getenv("SETTINGS_RETRY_DELAY", "5"))

        # MQTT Configuration
        self.MQTT_KEEPALIVE = int(os.getenv("MQTT_KEEPALIVE", "60"))
        self.MQTT_QOS = int(os.getenv("MQTT_QOS", "1"))
        self.MQTT_CONNECT_TIMEOUT = int(os.getenv("MQTT_CONNECT_TIMEOUT", "10"))
        self.MQTT_TOPIC_NAMESPACE = os.getenv("MQTT_TOPIC_NAMESPACE", "star/cloudprnt")

        # Client action answers
        self.CLIENT_TYPE = os.getenv("CLIENT_TYPE", "CloudPRNT Emulator")
        self.CLIENT_VERSION = os.getenv("CLIENT_VERSION", __version__)

        # Logging Configuration
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FILE = os.getenv("LOG_FILE", "cloudprnt_emulator.log")
        self.LOG_MAX_SIZE = os.getenv("LOG_MAX_SIZE", "10MB")
        self.LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))

        # MQTT Topics (CloudPRNT Full MQTT layout)
        self.TOPIC_TO_DEVICE = f"{self.MQTT_TOPIC_NAMESPACE}/to-device/{self.PRINTER_MAC}/#"
        self.TOPIC_TO_SERVER = f"{self.MQTT_TOPIC_NAMESPACE}/to-server/{self.PRINTER_MAC}"
        self.TOPIC_CLIENT_STATUS = f"{self.TOPIC_TO_SERVER}/client-status"
        self.TOPIC_PRINT_RESULT = f"{self.TOPIC_TO_SERVER}/print-result"
        self.TOPIC_CLIENT_WILL = f"{self.TOPIC_TO_SERVER}/client-will"

    def _validate_config(self):
        """Validate configuration values."""

        if not self.PRINTER_MAC:
            raise ValueError("PRINTER_MAC is required")

        if not (1 <= self.HTTP_TIMEOUT <= 600):
            raise ValueError("HTTP_TIMEOUT must be between 1 and 600 seconds")

        if not (1 <= self.SETTINGS_TIMEOUT <= 600):
            raise ValueError("SETTINGS_TIMEOUT must be between 1 and 600 seconds")

        if self.SETTINGS_RETRY_ATTEMPTS < 1:
            raise ValueError("SETTINGS_RETRY_ATTEMPTS must be at least 1")

        if self.SETTINGS_RETRY_DELAY < 0:
            raise ValueError("SETTINGS_RETRY_DELAY must not be negative")

        if self.MQTT_QOS not in (0, 1, 2):
            raise ValueError("MQTT_QOS must be 0, 1 or 2")

        if not self.MQTT_TOPIC_NAMESPACE:
            raise ValueError("MQTT_TOPIC_NAMESPACE is required")

        if self.LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("LOG_LEVEL must be DEBUG, INFO, WARNING, ERROR or CRITICAL")

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"""
CloudPRNT Emulator Configuration:
=================================
Printer MAC: {self.PRINTER_MAC}
Output Directory: {self.OUTPUT_DIR}
HTTP Timeout: {self.HTTP_TIMEOUT}s
Settings Timeout: {self.SETTINGS_TIMEOUT}s
MQTT Namespace: {self.MQTT_TOPIC_NAMESPACE}
Client: {self.CLIENT_TYPE} {self.CLIENT_VERSION}

Topics:
- Subscribe: {self.TOPIC_TO_DEVICE}
- Status: {self.TOPIC_CLIENT_STATUS}
- Result: {self.TOPIC_PRINT_RESULT}
- Will: {self.TOPIC_CLIENT_WILL}
"""


# Global configuration instance
config = Config()
