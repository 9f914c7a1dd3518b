"""
Image output for the CloudPRNT emulator.
Encodes decoded jobs to PNG and writes them to timestamped files.
"""

import io
import os
from datetime import datetime, timezone

from PIL import Image

from ..config import config
from ..models import DecodedImage
from .logger import logger


def encode_png(image: DecodedImage) -> bytes:
    """Encode an RGBA image to PNG bytes."""
    img = Image.frombytes('RGBA', (image.width, image.height), image.buffer)

    output = io.BytesIO()
    img.save(output, format='PNG')
    return output.getvalue()


def rotate_png(png_data: bytes) -> bytes:
    """Rotate PNG bytes by 180 degrees, keeping the image mode."""
    with Image.open(io.BytesIO(png_data)) as img:
        rotated = img.transpose(Image.Transpose.ROTATE_180)

    output = io.BytesIO()
    rotated.save(output, format='PNG')
    return output.getvalue()


def timestamped_filename(now: datetime = None) -> str:
    """File name for a job printed at `now`, with ':' made filesystem safe."""
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    return f"img-{stamp.replace(':', '.')}.png"


class ImageWriter:
    """Writes finished print jobs to disk."""

    def __init__(self, output_dir: str = None):
        self.output_dir = output_dir or config.OUTPUT_DIR
        self.written = 0

    def write(self, png_data: bytes) -> str:
        """
        Write PNG bytes to a new file.

        Args:
            png_data: Encoded PNG image

        Returns:
            Path of the written file
        """
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, timestamped_filename())

        with open(path, 'wb') as f:
            f.write(png_data)

        self.written += 1
        logger.debug("💾 Image written", path=path, size=len(png_data))
        return path

    def write_image(self, image: DecodedImage) -> str:
        """Encode and write a decoded image."""
        return self.write(encode_png(image))
