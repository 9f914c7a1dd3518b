"""
Capability negotiation for the CloudPRNT emulator.
Asks the server, through cloudprnt-setting.json, whether it wants Full MQTT
or classic HTTP polling.
"""

import time
from typing import Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import requests

from .config import config
from .exceptions import ProtocolViolationError, TransportError, UnsupportedModeError
from .models import CloudPRNTSettings, ServerSettings, parse_model
from .utils.logger import logger

SETTINGS_RESOURCE = "cloudprnt-setting.json"


def settings_url(poll_url: str, mac: str) -> str:
    """
    Derive the settings URL from the poll URL.

    The last path segment is replaced with cloudprnt-setting.json and kept
    as the replaced_path query parameter.

    Args:
        poll_url: URL the printer polls
        mac: Printer MAC address

    Returns:
        Settings URL
    """
    parts = urlsplit(poll_url)
    segments = [segment for segment in parts.path.split('/') if segment]
    if not segments:
        raise ValueError(f"Poll URL has no path segment to replace: {poll_url}")

    replaced_path = segments[-1]
    segments[-1] = SETTINGS_RESOURCE

    query = urlencode({"mac": mac, "replaced_path": replaced_path})
    return urlunsplit((parts.scheme, parts.netloc, '/' + '/'.join(segments), query, ''))


def parse_server_settings(body) -> ServerSettings:
    """
    Interpret a cloudprnt-setting.json body.

    Raises:
        UnsupportedModeError: server requires Trigger POST mode
        ProtocolViolationError: body does not describe a usable MQTT setup
    """
    settings = parse_model(CloudPRNTSettings, body, "server settings")

    if "MQTT" not in settings.server_support_protocol:
        return ServerSettings(use_mqtt=False)

    mqtt_setting = settings.setting_for_mqtt
    if mqtt_setting.use_trigger_post is True:
        raise UnsupportedModeError(
            "Server requires Trigger POST mode, which is not supported. "
            "Only Full MQTT mode is supported."
        )

    if mqtt_setting.mqtt_connection_setting is None:
        raise ProtocolViolationError("Server supports MQTT but sent no mqttConnectionSetting")

    return ServerSettings(use_mqtt=True, mqtt_settings=mqtt_setting.mqtt_connection_setting)


class CapabilityNegotiator:
    """Discovers the transport the server wants this printer to use."""

    def __init__(self, poll_url: str, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.poll_url = poll_url
        self.session = session or requests.Session()
        self.sleep = sleep
        self.attempts = config.SETTINGS_RETRY_ATTEMPTS
        self.retry_delay = config.SETTINGS_RETRY_DELAY
        self.timeout = config.SETTINGS_TIMEOUT

    def negotiate(self) -> ServerSettings:
        """
        Fetch and interpret the server settings, retrying transient failures.

        Returns:
            ServerSettings telling whether to use MQTT

        Raises:
            TransportError: non-retryable status, or retries exhausted
            UnsupportedModeError: server requires Trigger POST mode
        """
        url = settings_url(self.poll_url, config.PRINTER_MAC)
        logger.info("🔍 Discovering server protocol capabilities...", url=url)

        for attempt in range(1, self.attempts + 1):
            try:
                return self._fetch_settings(url)
            except TransportError as e:
                if not e.retryable or attempt == self.attempts:
                    raise
                logger.warning(f"⚠️ Settings fetch failed, retrying in {self.retry_delay}s",
                               attempt=attempt, error=str(e))
                self.sleep(self.retry_delay)

        raise TransportError(f"Settings fetch from {url} was never attempted (attempts={self.attempts})")

    def _fetch_settings(self, url: str) -> ServerSettings:
        """Single settings fetch attempt."""
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"GET request to {url} failed: {e}") from e

        if response.status_code == 404:
            logger.info("📭 No settings endpoint, server uses HTTP polling only")
            return ServerSettings(use_mqtt=False)

        if response.status_code == 200:
            try:
                body = response.json()
            except ValueError as e:
                raise ProtocolViolationError(f"Settings response is not JSON: {e}") from e
            return parse_server_settings(body)

        if response.status_code >= 500:
            raise TransportError(f"Server error: {response.status_code} {response.reason}",
                                 status_code=response.status_code)

        raise TransportError(f"Unexpected response: {response.status_code} {response.reason}",
                             status_code=response.status_code)
