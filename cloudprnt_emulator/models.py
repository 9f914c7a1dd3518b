"""
Data models for the CloudPRNT emulator.

Wire messages are pydantic models so that server JSON is validated on
ingress. Camel-case field names from the protocol are kept as aliases.
"""

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ProtocolViolationError

STARPRNT_MEDIA_TYPE = "application/vnd.star.starprnt"
PNG_MEDIA_TYPE = "image/png"

STATUS_OK = "200%20OK"


def token_text(value: Any) -> Optional[str]:
    """Job tokens are opaque; servers may send them as numbers."""
    if value is None:
        return None
    return str(value)


def numeric_token(value: Any) -> Any:
    """Accept integer job tokens as strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class AckCode:
    """Job completion codes reported back to the server."""
    OK = "200"
    FAILURE = "500"
    UNSUPPORTED_MEDIA = "510"


class WireModel(BaseModel):
    """Base for protocol messages: accepts aliases and field names, ignores extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict:
        """Serialize with protocol field names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# HTTP polling

class ClientActionRequest(WireModel):
    """A capability query sent by the server inside a poll response."""

    request: str
    options: Any = None


class ClientActionResult(WireModel):
    """The emulator's answer to a ClientActionRequest."""

    request: str
    result: Any


class PollStatus(WireModel):
    """Server response to a status POST.

    Received from: POST <poll-url>
    """

    job_ready: bool = Field(alias="jobReady")
    job_token: Optional[str] = Field(default=None, alias="jobToken")
    media_types: Optional[List[str]] = Field(default=None, alias="mediaTypes")
    client_action: Optional[List[ClientActionRequest]] = Field(default=None, alias="clientAction")

    @field_validator("job_token", mode="before")
    @classmethod
    def coerce_numeric_token(cls, value):
        return numeric_token(value)


class StatusRequest(WireModel):
    """Body of the status POST.

    Sent to: POST <poll-url>
    """

    printing_in_progress: bool = Field(default=False, alias="printingInProgress")
    status_code: str = Field(default=STATUS_OK, alias="statusCode")
    printer_mac: str = Field(alias="printerMAC")
    client_action: Optional[List[ClientActionResult]] = Field(default=None, alias="clientAction")


# Capability negotiation

class AuthenticationSetting(WireModel):
    username: Optional[str] = None
    password: Optional[str] = None


class MqttConnectionSettings(WireModel):
    """Broker coordinates taken from cloudprnt-setting.json."""

    host_name: str = Field(alias="hostName")
    port_number: Optional[int] = Field(default=None, alias="portNumber")
    use_tls: bool = Field(default=False, alias="useTls")
    authentication_setting: Optional[AuthenticationSetting] = Field(default=None, alias="authenticationSetting")

    @property
    def port(self) -> int:
        return self.port_number or 1883

    @property
    def username(self) -> Optional[str]:
        return self.authentication_setting.username if self.authentication_setting else None

    @property
    def password(self) -> Optional[str]:
        return self.authentication_setting.password if self.authentication_setting else None


class MqttSetting(WireModel):
    use_trigger_post: bool = Field(default=False, alias="useTriggerPOST")
    mqtt_connection_setting: Optional[MqttConnectionSettings] = Field(default=None, alias="mqttConnectionSetting")


class CloudPRNTSettings(WireModel):
    """Body of cloudprnt-setting.json.

    Received from: GET <settings-url>
    """

    server_support_protocol: List[str] = Field(default_factory=list, alias="serverSupportProtocol")
    setting_for_mqtt: MqttSetting = Field(default_factory=MqttSetting, alias="settingForMQTT")


class ServerSettings(BaseModel):
    """Outcome of capability negotiation."""

    use_mqtt: bool
    mqtt_settings: Optional[MqttConnectionSettings] = None


# MQTT

class PrintJobMessage(WireModel):
    """Full MQTT print job.

    Received on topic: <ns>/to-device/<mac>/print-job
    """

    title: Literal["print-job"]
    job_token: Optional[str] = Field(default=None, alias="jobToken")
    job_type: Optional[str] = Field(default=None, alias="jobType")
    media_types: Optional[List[str]] = Field(default=None, alias="mediaTypes")
    print_data: Optional[str] = Field(default=None, alias="printData")

    @field_validator("job_token", mode="before")
    @classmethod
    def coerce_numeric_token(cls, value):
        return numeric_token(value)


class ClientStatusMessage(WireModel):
    """Published to topic: <ns>/to-server/<mac>/client-status"""

    title: Literal["client-status"] = "client-status"
    printer_mac: str = Field(alias="printerMAC")
    status_code: str = Field(default=STATUS_OK, alias="statusCode")
    printing_in_progress: bool = Field(alias="printingInProgress")


class PrintResultMessage(WireModel):
    """Published to topic: <ns>/to-server/<mac>/print-result"""

    title: Literal["print-result"] = "print-result"
    job_token: Optional[str] = Field(default=None, alias="jobToken")
    print_succeeded: bool = Field(alias="printSucceeded")
    status_code: str = Field(alias="statusCode")
    printer_mac: str = Field(alias="printerMAC")


class ClientWillMessage(WireModel):
    """Last will, delivered by the broker to <ns>/to-server/<mac>/client-will"""

    title: Literal["client-will"] = "client-will"
    printer_mac: str = Field(alias="printerMAC")
    unintentional_disconnection: bool = Field(default=True, alias="unintentionalDisconnection")


# Inbound MQTT messages, keyed by their "title" field
SERVER_MESSAGES = {
    "print-job": PrintJobMessage,
}


def server_message_model(payload: Any) -> type:
    """Look up the model for an inbound MQTT payload by its title."""
    if not isinstance(payload, dict):
        raise ProtocolViolationError(f"Expected a JSON object, got {type(payload).__name__}")

    title = payload.get("title")
    model = SERVER_MESSAGES.get(title)
    if model is None:
        raise ProtocolViolationError(f"Unsupported message type: {title}")
    return model


def invalid_fields(error: ValidationError) -> set:
    """Top-level field names (aliases as sent) that failed validation."""
    return {err["loc"][0] for err in error.errors() if err["loc"]}


def parse_model(model, payload: Any, what: str):
    """Validate a server JSON body, mapping validation failures to ProtocolViolationError."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProtocolViolationError(f"Invalid {what}: {e}") from e


# Jobs and images

class Job:
    """A single print job, alive from notification to acknowledgment."""

    def __init__(self, token: Optional[str] = None, media_types: Optional[List[str]] = None):
        self.token = token
        self.media_types = media_types
        self.media_type: Optional[str] = None
        self.code = AckCode.FAILURE

    @property
    def succeeded(self) -> bool:
        return self.code == AckCode.OK

    def __repr__(self) -> str:
        return f"Job(token={self.token!r}, media_type={self.media_type!r}, code={self.code!r})"


class DecodedImage:
    """RGBA pixel buffer, four bytes per pixel, row-major."""

    def __init__(self, width: int, height: int, buffer: bytes):
        if len(buffer) != width * height * 4:
            raise ValueError(
                f"Buffer length {len(buffer)} does not match {width}x{height} RGBA image"
            )
        self.width = width
        self.height = height
        self.buffer = bytes(buffer)

    def pixel(self, x: int, y: int) -> tuple:
        """Return the (r, g, b, a) tuple at column x, row y."""
        offset = (y * self.width + x) * 4
        return tuple(self.buffer[offset:offset + 4])

    def __eq__(self, other) -> bool:
        if not isinstance(other, DecodedImage):
            return NotImplemented
        return (self.width, self.height, self.buffer) == (other.width, other.height, other.buffer)

    def __repr__(self) -> str:
        return f"DecodedImage({self.width}x{self.height})"


# Session state machine

class SessionState(Enum):
    NEGOTIATING = "negotiating"
    POLLING = "polling"
    SERVICING = "servicing"
    MQTT_CONNECTED = "mqtt_connected"
    FALLBACK_PENDING = "fallback_pending"


def after_negotiation(settings: ServerSettings) -> SessionState:
    return SessionState.MQTT_CONNECTED if settings.use_mqtt else SessionState.POLLING


def after_poll(status: PollStatus) -> SessionState:
    return SessionState.SERVICING if status.job_ready else SessionState.POLLING


def after_service() -> SessionState:
    return SessionState.POLLING


def after_mqtt_failure() -> SessionState:
    return SessionState.FALLBACK_PENDING


def after_fallback() -> SessionState:
    # Fallback is permanent: HTTP polling for the rest of the run
    return SessionState.POLLING
