"""
MQTT push transport for the CloudPRNT emulator.
Implements the CloudPRNT Full MQTT job flow over a persistent session.
"""

import base64
import json
import queue
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from .config import config
from .exceptions import MqttSessionError, ProtocolViolationError, UnsupportedMediaTypeError
from .models import (
    STARPRNT_MEDIA_TYPE,
    AckCode,
    ClientStatusMessage,
    ClientWillMessage,
    Job,
    MqttConnectionSettings,
    PrintJobMessage,
    PrintResultMessage,
    WireModel,
    invalid_fields,
    server_message_model,
    token_text,
)
from .utils.image_writer import ImageWriter
from .utils.logger import logger
from .utils.starprnt import decode_starprnt, rotate_180

PUBLISH_TIMEOUT = 10


def default_client_factory(client_id: str) -> mqtt.Client:
    """Create a paho client for a persistent MQTT 3.1.1 session."""
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=False,
        protocol=mqtt.MQTTv311,
    )


class MQTTPushTransport:
    """
    CloudPRNT Full MQTT client.

    Paho callbacks only enqueue events; run() consumes them one at a time,
    so a job's result and status messages are out before the next message
    is looked at.
    """

    def __init__(self, settings: MqttConnectionSettings, rotate180: bool = False,
                 writer: Optional[ImageWriter] = None,
                 client_factory: Callable[[str], mqtt.Client] = default_client_factory):
        self.settings = settings
        self.rotate180 = rotate180
        self.writer = writer or ImageWriter()
        self.client_factory = client_factory
        self.client = None
        self.events = queue.Queue()
        self.is_connected = False
        self.stopping = False

        # Statistics
        self.stats = {
            "messages_received": 0,
            "messages_sent": 0,
            "print_jobs_received": 0,
            "print_jobs_completed": 0,
        }

    def run(self):
        """
        Connect and process messages until stopped.

        Raises:
            MqttSessionError: connection failed or was lost
        """
        logger.info("📡 Starting MQTT mode...", broker=self.settings.host_name,
                    port=self.settings.port, tls=self.settings.use_tls)
        try:
            self.connect()

            while True:
                kind, *args = self.events.get()

                if kind == "stop":
                    return
                if kind == "error":
                    raise args[0]
                if kind == "connected":
                    self.publish_status(False)
                elif kind == "message":
                    self._dispatch(*args)
        finally:
            self.close()

    def stop(self):
        """Disconnect cleanly and let run() return."""
        self.stopping = True
        self.events.put(("stop",))

    def connect(self):
        """
        Open the MQTT session and wait for the broker to accept it.

        Raises:
            MqttSessionError: connection refused, failed or timed out
        """
        host, port = self.settings.host_name, self.settings.port
        logger.info(f"🔌 Connecting to MQTT broker: {host}:{port}")

        self.client = self.client_factory(config.PRINTER_MAC)

        if self.settings.username:
            logger.info(f"👤 Using username: {self.settings.username}")
            self.client.username_pw_set(self.settings.username, self.settings.password)

        if self.settings.use_tls:
            self.client.tls_set()

        will = ClientWillMessage(printer_mac=config.PRINTER_MAC)
        self.client.will_set(config.TOPIC_CLIENT_WILL, json.dumps(will.to_payload()), qos=1)

        # Set callbacks
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_subscribe = self._on_subscribe
        self.client.on_message = self._on_message
        self.client.on_publish = self._on_publish

        try:
            self.client.connect(host, port, config.MQTT_KEEPALIVE)
        except (OSError, ValueError) as e:
            raise MqttSessionError(f"MQTT connection error: {e}") from e

        # Start network loop
        self.client.loop_start()

        try:
            kind, *args = self.events.get(timeout=config.MQTT_CONNECT_TIMEOUT)
        except queue.Empty:
            raise MqttSessionError("MQTT connection timeout") from None

        if kind == "error":
            raise args[0]
        if kind == "stop":
            self.events.put((kind,))
            return

        self.is_connected = True
        logger.mqtt_connect(host, port)
        self.publish_status(False)
        logger.info("📤 Initial status sent")

    def close(self):
        """Stop the network loop and disconnect."""
        if self.client is None:
            return

        self.stopping = True
        self.client.loop_stop()
        self.client.disconnect()
        self.is_connected = False

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Handle MQTT connection callback."""
        if reason_code.is_failure:
            self.events.put(("error", MqttSessionError(f"MQTT connection refused: {reason_code}")))
            return

        result, _ = client.subscribe(config.TOPIC_TO_DEVICE, qos=config.MQTT_QOS)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self.events.put(("error", MqttSessionError(f"MQTT subscribe failed: {result}")))
            return

        logger.info(f"📡 Subscribed to {config.TOPIC_TO_DEVICE}")
        self.events.put(("connected",))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        """Handle MQTT subscription acknowledgment."""
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                self.events.put(("error", MqttSessionError(f"MQTT subscription rejected: {reason_code}")))
                return

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Handle MQTT disconnection callback."""
        self.is_connected = False
        if self.stopping:
            logger.info("🔌 MQTT disconnected gracefully")
            return

        logger.mqtt_disconnect(str(reason_code))
        self.events.put(("error", MqttSessionError(f"MQTT connection lost: {reason_code}")))

    def _on_message(self, client, userdata, msg):
        """Queue incoming MQTT messages for the processing loop."""
        self.events.put(("message", msg.topic, msg.payload))

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        """Handle MQTT publish callback."""
        self.stats["messages_sent"] += 1
        logger.debug(f"📤 Message published: {mid}")

    def _dispatch(self, topic: str, payload: bytes):
        """Handle one queued message. Only session errors escape."""
        try:
            self.handle_message(topic, payload)
        except MqttSessionError:
            raise
        except Exception as e:
            logger.error(f"❌ Error handling MQTT message: {str(e)}")

    def handle_message(self, topic: str, payload: bytes):
        """
        Decode and dispatch an inbound message by its title.

        Raises:
            ProtocolViolationError: not JSON, an unsupported title, or an
                invalid print job (reported to the server first)
        """
        logger.mqtt_message(topic, len(payload))
        self.stats["messages_received"] += 1

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise ProtocolViolationError(f"Invalid JSON in MQTT message: {e}") from e

        if server_message_model(data) is PrintJobMessage:
            self.handle_print_job(data)

    @contextmanager
    def pending_result(self, payload: dict) -> Iterator[Job]:
        """
        Hold a job until its result is reported.

        Exactly one print-result and one idle client-status are published on
        every exit path.
        """
        job = Job(token_text(payload.get("jobToken")), payload.get("mediaTypes"))
        self.stats["print_jobs_received"] += 1
        try:
            self.publish_status(True)
            yield job
        except Exception as e:
            logger.job_error(job.token, job.code, str(e))
            raise
        finally:
            self.publish_result(job)
            self.publish_status(False)

    def handle_print_job(self, payload: dict) -> Job:
        """Render a print-job message and report the outcome."""
        with self.pending_result(payload) as job:
            try:
                message = PrintJobMessage.model_validate(payload)
            except ValidationError as e:
                bad_media = invalid_fields(e) & {"mediaTypes", "media_types"}
                if bad_media and payload.get("jobType") == "raw":
                    job.code = AckCode.UNSUPPORTED_MEDIA
                raise ProtocolViolationError(f"Invalid print-job message: {e}") from e

            if message.job_type != "raw":
                job.code = AckCode.FAILURE
                raise ProtocolViolationError(f"Unsupported job type: {message.job_type}")

            if message.media_types != [STARPRNT_MEDIA_TYPE]:
                job.code = AckCode.UNSUPPORTED_MEDIA
                raise UnsupportedMediaTypeError(f"Unsupported media types: {message.media_types}")

            job.media_type = STARPRNT_MEDIA_TYPE
            logger.job_start(job.token, job.media_type)

            # Line-wrapped base64 is accepted; other stray characters are not
            data = "".join((message.print_data or "").split())
            image = decode_starprnt(base64.b64decode(data, validate=True))
            if self.rotate180:
                image = rotate_180(image)

            path = self.writer.write_image(image)
            job.code = AckCode.OK
            self.stats["print_jobs_completed"] += 1
            logger.job_complete(job.token, path)

        return job

    def publish_status(self, printing: bool):
        """Publish client-status."""
        status = ClientStatusMessage(printer_mac=config.PRINTER_MAC, printing_in_progress=printing)
        self._publish(config.TOPIC_CLIENT_STATUS, status)

    def publish_result(self, job: Job):
        """Publish print-result for a finished job."""
        result = PrintResultMessage(
            job_token=job.token,
            print_succeeded=job.succeeded,
            status_code=job.code,
            printer_mac=config.PRINTER_MAC,
        )
        self._publish(config.TOPIC_PRINT_RESULT, result)
        logger.ack_sent(job.token, job.code)

    def _publish(self, topic: str, message: WireModel):
        """
        Publish a message and wait until it is handed to the broker.

        Raises:
            MqttSessionError: the client refused or failed to send
        """
        payload = json.dumps(message.to_payload())
        info = self.client.publish(topic, payload, qos=config.MQTT_QOS)

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MqttSessionError(f"Publish to {topic} failed: {info.rc}")

        try:
            info.wait_for_publish(timeout=PUBLISH_TIMEOUT)
        except RuntimeError as e:
            raise MqttSessionError(f"Publish to {topic} failed: {e}") from e

        logger.debug(f"📤 Published to {topic}", size=len(payload))
