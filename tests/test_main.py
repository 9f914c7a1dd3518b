"""Tests for the session orchestrator and command line."""

from unittest.mock import MagicMock, patch

import pytest

from cloudprnt_emulator.exceptions import MqttSessionError, TransportError, UnsupportedModeError
from cloudprnt_emulator.main import CloudPRNTEmulatorApp, build_parser, main
from cloudprnt_emulator.models import (
    MqttConnectionSettings,
    PollStatus,
    ServerSettings,
    SessionState,
    after_fallback,
    after_mqtt_failure,
    after_negotiation,
    after_poll,
)

POLL_URL = "http://server/cloudprnt/poll"

MQTT = ServerSettings(use_mqtt=True, mqtt_settings=MqttConnectionSettings(host_name="broker"))
HTTP_ONLY = ServerSettings(use_mqtt=False)


@pytest.fixture
def factories():
    return MagicMock(name="mqtt_factory"), MagicMock(name="http_factory")


@pytest.fixture
def app(session, writer, no_sleep, factories):
    mqtt_factory, http_factory = factories
    return CloudPRNTEmulatorApp(POLL_URL, 5, session=session, writer=writer,
                                mqtt_factory=mqtt_factory, http_factory=http_factory,
                                sleep=no_sleep)


def negotiating(result):
    negotiator = MagicMock()
    if isinstance(result, Exception):
        negotiator.return_value.negotiate.side_effect = result
    else:
        negotiator.return_value.negotiate.return_value = result
    return patch("cloudprnt_emulator.main.CapabilityNegotiator", negotiator)


def test_state_transitions():
    assert after_negotiation(MQTT) is SessionState.MQTT_CONNECTED
    assert after_negotiation(HTTP_ONLY) is SessionState.POLLING
    assert after_poll(PollStatus(job_ready=True)) is SessionState.SERVICING
    assert after_poll(PollStatus(job_ready=False)) is SessionState.POLLING
    assert after_mqtt_failure() is SessionState.FALLBACK_PENDING
    assert after_fallback() is SessionState.POLLING


def test_http_only_server(app, factories):
    mqtt_factory, http_factory = factories

    with negotiating(HTTP_ONLY):
        app.run()

    mqtt_factory.assert_not_called()
    http_factory.assert_called_once()
    assert http_factory.call_args.args == (POLL_URL, 5)
    http_factory.return_value.run.assert_called_once()
    assert app.state is SessionState.POLLING


def test_mqtt_server(app, factories):
    mqtt_factory, http_factory = factories

    with negotiating(MQTT):
        app.run()

    assert mqtt_factory.call_args.args == (MQTT.mqtt_settings,)
    mqtt_factory.return_value.run.assert_called_once()
    http_factory.assert_not_called()
    assert app.state is SessionState.MQTT_CONNECTED
    assert app.fell_back is False


def test_mqtt_failure_falls_back_to_http(app, factories):
    mqtt_factory, http_factory = factories
    mqtt_factory.return_value.run.side_effect = MqttSessionError("connection lost")

    with negotiating(MQTT):
        app.run()

    mqtt_factory.return_value.run.assert_called_once()
    http_factory.return_value.run.assert_called_once()
    assert app.fell_back is True
    assert app.state is SessionState.POLLING
    assert app.get_status()["fell_back"] is True


def test_unsupported_mode_is_fatal(app, factories):
    mqtt_factory, http_factory = factories

    with negotiating(UnsupportedModeError("Trigger POST")):
        with pytest.raises(UnsupportedModeError):
            app.run()

    mqtt_factory.assert_not_called()
    http_factory.assert_not_called()


def test_negotiator_shares_session(session, writer, factories):
    mqtt_factory, http_factory = factories
    app = CloudPRNTEmulatorApp(POLL_URL, 5, auth=("user", "pw"), session=session, writer=writer,
                               mqtt_factory=mqtt_factory, http_factory=http_factory)

    with negotiating(HTTP_ONLY) as negotiator:
        app.run()

    assert session.auth == ("user", "pw")
    assert negotiator.call_args.kwargs["session"] is session
    assert http_factory.call_args.kwargs["session"] is session


def test_stop_stops_active_transport(app, factories):
    with negotiating(HTTP_ONLY):
        app.run()

    app.stop()

    factories[1].return_value.stop.assert_called_once()


def test_parser_defaults():
    args = build_parser().parse_args([POLL_URL])

    assert args.poll_url == POLL_URL
    assert args.poll_interval == 5
    assert args.rotate180 is False
    assert args.username is None


def test_parser_options():
    args = build_parser().parse_args([POLL_URL, "--poll-interval", "2", "--rotate180",
                                      "--username", "u", "--password", "p"])

    assert (args.poll_interval, args.rotate180, args.username, args.password) == (2, True, "u", "p")


@pytest.mark.parametrize("argv", [
    [POLL_URL, "--poll-interval", "soon"],
    [POLL_URL, "--poll-interval", "0"],
    ["ftp://server/poll"],
    [],
])
def test_invalid_arguments_exit_non_zero(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)

    assert excinfo.value.code != 0


@pytest.mark.parametrize("error", [
    UnsupportedModeError("Trigger POST"),
    TransportError("Server error: 503", status_code=503),
])
def test_startup_failure_exits_with_1(error):
    with patch("cloudprnt_emulator.main.CloudPRNTEmulatorApp") as app_cls:
        app_cls.return_value.run.side_effect = error
        with pytest.raises(SystemExit) as excinfo:
            main([POLL_URL])

    assert excinfo.value.code == 1
    app_cls.assert_called_once_with(POLL_URL, 5, False, auth=None)
