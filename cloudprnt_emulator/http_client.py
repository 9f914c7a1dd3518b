"""
HTTP polling transport for the CloudPRNT emulator.
Implements the classic CloudPRNT POST/GET/DELETE job cycle.
"""

import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

import requests

from .config import config
from .exceptions import ProtocolViolationError, TransportError, UnsupportedMediaTypeError
from .models import (
    PNG_MEDIA_TYPE,
    STARPRNT_MEDIA_TYPE,
    AckCode,
    ClientActionRequest,
    ClientActionResult,
    Job,
    PollStatus,
    SessionState,
    StatusRequest,
    after_poll,
    after_service,
    parse_model,
    token_text,
)
from .utils.image_writer import ImageWriter, encode_png, rotate_png
from .utils.logger import logger
from .utils.starprnt import decode_starprnt, rotate_180


def select_media_type(media_types: Optional[List[str]]) -> Optional[str]:
    """
    Pick the media type to request for a job.

    StarPRNT raster is preferred; when the server did not list media types
    it is assumed. PNG is passed through unchanged.

    Returns:
        Media type to fetch, or None if none of the offered ones is supported
    """
    if media_types is None or STARPRNT_MEDIA_TYPE in media_types:
        return STARPRNT_MEDIA_TYPE
    if PNG_MEDIA_TYPE in media_types:
        return PNG_MEDIA_TYPE
    return None


class HttpPollingTransport:
    """
    CloudPRNT HTTP polling client.
    Polls for jobs, fetches and renders them, and acknowledges each one.
    """

    def __init__(self, poll_url: str, poll_interval: float, rotate180: bool = False,
                 writer: Optional[ImageWriter] = None,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.poll_url = poll_url
        self.poll_interval = poll_interval
        self.rotate180 = rotate180
        self.writer = writer or ImageWriter()
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = config.HTTP_TIMEOUT
        self.running = False
        self.state = SessionState.POLLING

        # Statistics
        self.stats = {
            "polls": 0,
            "jobs_received": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
            "cycle_errors": 0,
        }

    def run(self):
        """Poll until stopped. A failed cycle never ends the loop."""
        logger.info("🔄 Starting HTTP polling mode...", url=self.poll_url,
                    interval=f"{self.poll_interval}s")
        self.running = True

        while self.running:
            if not self.run_cycle():
                self.sleep(self.poll_interval)

    def stop(self):
        """Stop polling after the current cycle."""
        self.running = False

    def run_cycle(self) -> bool:
        """
        Run one Polling step, and Servicing if a job is ready.

        Returns:
            True if a job was serviced and the next poll should follow at once
        """
        try:
            self.state = SessionState.POLLING
            status = self.post_status()
            self.state = after_poll(status)

            if self.state is SessionState.POLLING:
                if status.client_action:
                    self.answer_client_actions(status.client_action)
                return False

            self.service_job(status)
            self.state = after_service()
            return True

        except Exception as e:
            self.stats["cycle_errors"] += 1
            logger.error(f"❌ Polling cycle error: {str(e)}")
            self.state = SessionState.POLLING
            return False

    def post_status(self, client_action: Optional[List[ClientActionResult]] = None) -> PollStatus:
        """
        Send the status POST.

        Args:
            client_action: Answers to the server's client action requests

        Returns:
            Validated PollStatus from the server
        """
        body = StatusRequest(printer_mac=config.PRINTER_MAC, client_action=client_action)
        response = self._request('POST', self.poll_url, json=body.to_payload())
        self.stats["polls"] += 1

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"POST response from {self.poll_url} is not JSON: {e}") from e

        try:
            status = parse_model(PollStatus, payload, "poll response")
        except ProtocolViolationError:
            if isinstance(payload, dict) and payload.get("jobReady") is True:
                self.reject_job(token_text(payload.get("jobToken")))
            raise

        logger.poll_status(status.job_ready, status.media_types)
        return status

    def answer_client_actions(self, actions: List[ClientActionRequest]) -> List[ClientActionResult]:
        """
        Answer client action requests in one follow-up POST.

        Unknown requests are skipped.
        """
        answers = {
            "GetPollInterval": lambda: int(self.poll_interval * 1000),
            "Encodings": lambda: STARPRNT_MEDIA_TYPE,
            "ClientType": lambda: config.CLIENT_TYPE,
            "ClientVersion": lambda: config.CLIENT_VERSION,
        }

        results = []
        for action in actions:
            answer = answers.get(action.request)
            if answer is None:
                logger.debug(f"🔍 Skipping unknown client action: {action.request}")
                continue
            results.append(ClientActionResult(request=action.request, result=answer()))

        if results:
            logger.debug("📤 Answering client actions", count=len(results))
            self.post_status(client_action=results)

        return results

    def fetch_job(self, media_type: str, token: Optional[str] = None) -> bytes:
        """GET the job payload in the given media type."""
        params = {"type": media_type, "mac": config.PRINTER_MAC}
        if token:
            params["token"] = token

        response = self._request('GET', self.poll_url, params=params)
        return response.content

    def acknowledge(self, code: str, token: Optional[str] = None):
        """DELETE the job with its completion code."""
        params = {"code": code, "mac": config.PRINTER_MAC}
        if token:
            params["token"] = token

        self._request('DELETE', self.poll_url, params=params)
        logger.ack_sent(token, code)

    @contextmanager
    def pending_job(self, job: Job) -> Iterator[Job]:
        """
        Hold a job until it is acknowledged.

        Exactly one DELETE carrying job.code is sent on every exit path.
        """
        self.stats["jobs_received"] += 1
        try:
            yield job
        except Exception as e:
            logger.job_error(job.token, job.code, str(e))
            raise
        finally:
            if job.succeeded:
                self.stats["jobs_completed"] += 1
            else:
                self.stats["jobs_failed"] += 1
            self.acknowledge(job.code, job.token)

    def service_job(self, status: PollStatus) -> Job:
        """Fetch, render and acknowledge the job announced by `status`."""
        with self.pending_job(Job(status.job_token, status.media_types)) as job:
            job.media_type = select_media_type(job.media_types)
            if job.media_type is None:
                job.code = AckCode.UNSUPPORTED_MEDIA
                raise UnsupportedMediaTypeError(f"Unsupported media types: {job.media_types}")

            logger.job_start(job.token, job.media_type)
            data = self.fetch_job(job.media_type, job.token)

            path = self.writer.write(self.render(job.media_type, data))
            job.code = AckCode.OK
            logger.job_complete(job.token, path)

        return job

    def reject_job(self, token: Optional[str]):
        """Acknowledge an announced job that could not be read with 500."""
        with self.pending_job(Job(token)):
            pass

    def render(self, media_type: str, data: bytes) -> bytes:
        """Turn fetched job data into PNG bytes."""
        if media_type == STARPRNT_MEDIA_TYPE:
            image = decode_starprnt(data)
            if self.rotate180:
                image = rotate_180(image)
            return encode_png(image)

        # Already an image, passed through as is
        if self.rotate180:
            return rotate_png(data)
        return data

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Issue a request, mapping failures and non-2xx responses to TransportError."""
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} request to {url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{method} request to {response.url} failed: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        return response
