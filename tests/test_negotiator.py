"""Tests for capability negotiation."""

from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from cloudprnt_emulator.config import config
from cloudprnt_emulator.exceptions import ProtocolViolationError, TransportError, UnsupportedModeError
from cloudprnt_emulator.negotiator import CapabilityNegotiator, settings_url
from tests.conftest import make_response

POLL_URL = "http://server/cloudprnt/poll"

MQTT_SETTINGS = {
    "serverSupportProtocol": ["HTTP", "MQTT"],
    "settingForMQTT": {
        "useTriggerPOST": False,
        "mqttConnectionSetting": {
            "hostName": "broker.example.com",
            "portNumber": 8883,
            "useTls": True,
            "authenticationSetting": {"username": "printer", "password": "secret"},
        },
    },
}


@pytest.fixture
def negotiator(session, no_sleep):
    return CapabilityNegotiator(POLL_URL, session=session, sleep=no_sleep)


def test_settings_url_replaces_last_segment():
    url = settings_url("http://server:8080/api/cloudprnt/poll.php?x=1", "00:11:22:33:44:55")
    parts = urlsplit(url)

    assert parts.path == "/api/cloudprnt/cloudprnt-setting.json"
    assert parse_qs(parts.query) == {"mac": ["00:11:22:33:44:55"], "replaced_path": ["poll.php"]}
    assert parts.netloc == "server:8080"


def test_settings_url_requires_a_path():
    with pytest.raises(ValueError):
        settings_url("http://server/", "00:00:00:00:00:00")


def test_404_means_http_only(negotiator, session):
    session.get.return_value = make_response(404)

    settings = negotiator.negotiate()

    assert settings.use_mqtt is False
    assert settings.mqtt_settings is None
    url = session.get.call_args.args[0]
    assert "cloudprnt-setting.json" in url
    assert session.get.call_args.kwargs["timeout"] == config.SETTINGS_TIMEOUT


def test_server_without_mqtt(negotiator, session):
    session.get.return_value = make_response(200, {"serverSupportProtocol": ["HTTP"]})

    assert negotiator.negotiate().use_mqtt is False


def test_full_mqtt_settings(negotiator, session):
    session.get.return_value = make_response(200, MQTT_SETTINGS)

    settings = negotiator.negotiate()

    assert settings.use_mqtt is True
    mqtt = settings.mqtt_settings
    assert mqtt.host_name == "broker.example.com"
    assert mqtt.port == 8883
    assert mqtt.use_tls is True
    assert (mqtt.username, mqtt.password) == ("printer", "secret")


def test_missing_port_defaults_to_1883(negotiator, session):
    body = {
        "serverSupportProtocol": ["MQTT"],
        "settingForMQTT": {"mqttConnectionSetting": {"hostName": "broker"}},
    }
    session.get.return_value = make_response(200, body)

    settings = negotiator.negotiate()

    assert settings.mqtt_settings.port == 1883
    assert settings.mqtt_settings.username is None


def test_trigger_post_is_fatal(negotiator, session, no_sleep):
    body = {
        "serverSupportProtocol": ["MQTT"],
        "settingForMQTT": {"useTriggerPOST": True,
                           "mqttConnectionSetting": {"hostName": "broker"}},
    }
    session.get.return_value = make_response(200, body)

    with pytest.raises(UnsupportedModeError):
        negotiator.negotiate()

    assert session.get.call_count == 1
    no_sleep.assert_not_called()


def test_mqtt_without_connection_setting_is_rejected(negotiator, session):
    session.get.return_value = make_response(200, {"serverSupportProtocol": ["MQTT"]})

    with pytest.raises(ProtocolViolationError):
        negotiator.negotiate()


def test_three_server_errors_exhaust_retries(negotiator, session, no_sleep):
    session.get.return_value = make_response(503, reason="Service Unavailable")

    with pytest.raises(TransportError) as excinfo:
        negotiator.negotiate()

    assert excinfo.value.status_code == 503
    assert session.get.call_count == 3
    assert no_sleep.call_count == 2
    no_sleep.assert_called_with(config.SETTINGS_RETRY_DELAY)


def test_server_error_then_success(negotiator, session, no_sleep):
    session.get.side_effect = [make_response(500), make_response(404)]

    assert negotiator.negotiate().use_mqtt is False
    assert session.get.call_count == 2
    assert no_sleep.call_count == 1


def test_network_errors_are_retried(negotiator, session, no_sleep):
    session.get.side_effect = [
        requests.ConnectionError("refused"),
        requests.Timeout("timed out"),
        make_response(200, MQTT_SETTINGS),
    ]

    assert negotiator.negotiate().use_mqtt is True
    assert no_sleep.call_count == 2


def test_network_errors_exhaust_retries(negotiator, session):
    session.get.side_effect = requests.Timeout("timed out")

    with pytest.raises(TransportError) as excinfo:
        negotiator.negotiate()

    assert excinfo.value.status_code is None
    assert session.get.call_count == 3


def test_unexpected_status_is_not_retried(negotiator, session, no_sleep):
    session.get.return_value = make_response(403, reason="Forbidden")

    with pytest.raises(TransportError):
        negotiator.negotiate()

    assert session.get.call_count == 1
    no_sleep.assert_not_called()


def test_no_attempts_raises_instead_of_returning_none(negotiator, session):
    negotiator.attempts = 0

    with pytest.raises(TransportError):
        negotiator.negotiate()

    session.get.assert_not_called()
