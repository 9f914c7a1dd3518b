"""Custom exceptions for the CloudPRNT emulator."""

from typing import Optional


class CloudPRNTError(Exception):
    """Base class for other exceptions"""

    pass


class TransportError(CloudPRNTError):
    """Exception raised when an HTTP call fails, times out or returns non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Network errors and 5xx responses are worth another attempt."""
        return self.status_code is None or self.status_code >= 500


class MqttSessionError(CloudPRNTError):
    """Exception raised when the MQTT connection fails or drops."""


class MalformedRasterError(CloudPRNTError):
    """Exception raised when StarPRNT raster data fails header validation."""


class UnsupportedMediaTypeError(CloudPRNTError):
    """Exception raised when a job offers no media type the emulator handles."""


class UnsupportedModeError(CloudPRNTError):
    """Exception raised when the server asks for the Trigger POST MQTT mode."""


class ProtocolViolationError(CloudPRNTError):
    """Exception raised for server messages with an unexpected shape or value."""
