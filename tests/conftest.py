"""Shared fixtures for the CloudPRNT emulator tests."""

import os

# Must be set before cloudprnt_emulator.config is imported
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from unittest.mock import MagicMock

import pytest

from cloudprnt_emulator.utils.image_writer import ImageWriter


def make_raster(width_bytes: int, height: int, data: bytes = b"") -> bytes:
    """Build StarPRNT raster bytes, padding missing pixel bytes with zeros."""
    header = bytes([0x1b, 0x1d, 0x53, 0x01, width_bytes & 0xff, width_bytes >> 8,
                    height & 0xff, height >> 8, 0x00])
    size = width_bytes * height
    return header + data + bytes(max(0, size - len(data)))


def make_response(status: int = 200, json_body=None, content: bytes = b"", reason: str = ""):
    """Fake requests.Response."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.reason = reason or ("OK" if status == 200 else "Error")
    response.url = "http://server/cloudprnt/poll"
    response.content = content
    if json_body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def writer():
    """Fake image writer."""
    mock_writer = MagicMock(spec=ImageWriter)
    mock_writer.write.return_value = "img-test.png"
    mock_writer.write_image.return_value = "img-test.png"
    return mock_writer


@pytest.fixture
def session():
    """Fake requests session."""
    return MagicMock()


@pytest.fixture
def no_sleep():
    """Recording replacement for time.sleep."""
    return MagicMock()
