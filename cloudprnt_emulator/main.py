#!/usr/bin/env python3
"""
CloudPRNT Emulator - Main Application
Emulates a network receipt printer speaking CloudPRNT, so that print
servers can be exercised without hardware. Jobs are written out as PNG.
"""

import argparse
import signal
import sys
import time
from typing import Callable, Optional
from urllib.parse import urlsplit

import requests

from .config import config
from .exceptions import CloudPRNTError
from .http_client import HttpPollingTransport
from .models import SessionState, ServerSettings, after_fallback, after_mqtt_failure, after_negotiation
from .mqtt_client import MQTTPushTransport
from .negotiator import CapabilityNegotiator
from .utils.image_writer import ImageWriter
from .utils.logger import logger


class CloudPRNTEmulatorApp:
    """Main application class: negotiates a transport and drives it."""

    def __init__(self, poll_url: str, poll_interval: float = 5, rotate180: bool = False,
                 auth: Optional[tuple] = None,
                 session: Optional[requests.Session] = None,
                 writer: Optional[ImageWriter] = None,
                 mqtt_factory: Callable[..., MQTTPushTransport] = MQTTPushTransport,
                 http_factory: Callable[..., HttpPollingTransport] = HttpPollingTransport,
                 sleep: Callable[[float], None] = time.sleep):
        self.poll_url = poll_url
        self.poll_interval = poll_interval
        self.rotate180 = rotate180
        self.session = session or requests.Session()
        if auth:
            self.session.auth = auth
        self.writer = writer or ImageWriter()
        self.mqtt_factory = mqtt_factory
        self.http_factory = http_factory
        self.sleep = sleep

        self.state = SessionState.NEGOTIATING
        self.transport = None
        self.fell_back = False
        self.startup_time = time.time()

    def install_signal_handlers(self):
        """Stop the active transport on SIGINT/SIGTERM."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def run(self):
        """
        Negotiate once, then run MQTT or HTTP polling until stopped.

        Raises:
            CloudPRNTError: negotiation failed (fatal at startup)
        """
        settings = CapabilityNegotiator(self.poll_url, session=self.session, sleep=self.sleep).negotiate()
        self.state = after_negotiation(settings)

        if self.state is SessionState.MQTT_CONNECTED:
            logger.info("✅ Server supports MQTT, starting MQTT mode")
            if self._run_mqtt(settings):
                return
        else:
            logger.info("📭 Server does not support MQTT, using HTTP polling mode")

        self._run_http()

    def stop(self):
        """Stop the active transport."""
        if self.transport is not None:
            self.transport.stop()

    def _run_mqtt(self, settings: ServerSettings) -> bool:
        """
        Run the MQTT transport.

        Returns:
            True if it stopped cleanly, False if the session failed and the
            app has fallen back to HTTP polling for good
        """
        self.transport = self.mqtt_factory(settings.mqtt_settings, rotate180=self.rotate180,
                                           writer=self.writer)
        try:
            self.transport.run()
            return True
        except Exception as e:
            logger.error(f"❌ MQTT mode failed, falling back to HTTP polling: {str(e)}")
            self.state = after_mqtt_failure()
            self.fell_back = True
            self.state = after_fallback()
            return False

    def _run_http(self):
        """Run the HTTP polling transport."""
        self.state = SessionState.POLLING
        self.transport = self.http_factory(self.poll_url, self.poll_interval,
                                           rotate180=self.rotate180, writer=self.writer,
                                           session=self.session, sleep=self.sleep)
        self.transport.run()

    def log_system_info(self):
        """Log system information."""
        try:
            import platform
            import psutil

            system_info = {
                "platform": platform.system(),
                "platform_version": platform.version(),
                "architecture": platform.machine(),
                "python_version": platform.python_version(),
                "cpu_count": psutil.cpu_count(),
                "memory_gb": round(psutil.virtual_memory().total / (1024**3), 2),
            }

            logger.system_info(system_info)

        except Exception as e:
            logger.debug(f"🔍 System info error: {str(e)}")

    def _signal_handler(self, signum, frame):
        """Handle system signals."""
        logger.info(f"📝 Received signal {signum}")
        self.stop()

    def get_status(self) -> dict:
        """Get application status."""
        return {
            "state": self.state.value,
            "fell_back": self.fell_back,
            "uptime": int(time.time() - self.startup_time),
            "transport": type(self.transport).__name__ if self.transport else None,
            "stats": dict(self.transport.stats) if self.transport else {},
        }


def positive_int(value: str) -> int:
    """argparse type for the poll interval."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid poll interval: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"Invalid poll interval: {value}")
    return number


def http_url(value: str) -> str:
    """argparse type for the poll URL."""
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise argparse.ArgumentTypeError(f"Invalid poll URL: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudprnt-emulator",
        description="CloudPRNT Emulator",
    )
    parser.add_argument("poll_url", type=http_url, metavar="poll-url",
                        help="A URL that the client will poll regularly through an HTTP POST.")
    parser.add_argument("--poll-interval", type=positive_int, default=5, metavar="INTERVAL",
                        help="Seconds between status polls (default: 5).")
    parser.add_argument("--rotate180", action="store_true",
                        help="Rotate the image 180 degrees.")
    parser.add_argument("--username", help="HTTP basic auth username.")
    parser.add_argument("--password", default="", help="HTTP basic auth password.")
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        auth = (args.username, args.password) if args.username else None
        app = CloudPRNTEmulatorApp(args.poll_url, args.poll_interval, args.rotate180, auth=auth)
        app.install_signal_handlers()

        # Print startup banner
        print("=" * 60)
        print("🖨️  CloudPRNT Emulator")
        print("=" * 60)
        print(f"📱 Printer MAC: {config.PRINTER_MAC}")
        print(f"🌐 Poll URL: {args.poll_url}")
        print(f"⏱️  Poll interval: {args.poll_interval}s")
        print(f"🔄 Rotate 180: {args.rotate180}")
        print("=" * 60)

        logger.info(str(config))
        app.log_system_info()

        app.run()
        sys.exit(0)

    except KeyboardInterrupt:
        logger.info("📝 Received keyboard interrupt")
        sys.exit(0)
    except CloudPRNTError as e:
        logger.critical(f"🚨 Startup failed: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"🚨 Critical error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
