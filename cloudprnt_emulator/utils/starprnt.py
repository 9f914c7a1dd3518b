"""
StarPRNT raster utilities for the CloudPRNT emulator.
Decodes application/vnd.star.starprnt job data into RGBA pixel buffers.
"""

from PIL import Image

from ..exceptions import MalformedRasterError
from ..models import DecodedImage

# ESC GS S 1, then width (2 bytes LE), height (2 bytes LE), then a zero byte
HEADER_MAGIC = b'\x1b\x1d\x53\x01'
HEADER_SIZE = 9

INK = b'\x00\x00\x00\xff'
NO_INK = b'\xff\xff\xff\xff'


def _build_byte_table() -> list:
    """Precompute the 8 RGBA pixels for every possible raster byte (MSB first)."""
    table = []
    for value in range(256):
        pixels = bytearray()
        for bit_index in range(7, -1, -1):
            pixels += INK if (value >> bit_index) & 1 else NO_INK
        table.append(bytes(pixels))
    return table


_BYTE_TABLE = _build_byte_table()


def parse_header(data: bytes) -> tuple:
    """
    Validate a StarPRNT raster header.

    Args:
        data: Raw job bytes

    Returns:
        Tuple of (width_bytes, height)

    Raises:
        MalformedRasterError: header missing or magic bytes mismatch
    """
    if len(data) < HEADER_SIZE:
        raise MalformedRasterError(f"Raster data too short for header: {len(data)} bytes")

    if data[0:4] != HEADER_MAGIC or data[8] != 0x00:
        raise MalformedRasterError("Unimplemented StarPRNT data")

    width_bytes = data[4] | (data[5] << 8)
    height = data[6] | (data[7] << 8)

    return width_bytes, height


def decode_starprnt(data: bytes) -> DecodedImage:
    """
    Decode StarPRNT raster data to an RGBA image.

    Pixels are packed 1 bit per pixel, MSB first, row-major, starting right
    after the 9 byte header. A set bit is ink (black), a clear bit is paper
    (white). Alpha is always 255.

    Args:
        data: Raw job bytes

    Returns:
        DecodedImage with width = width_bytes * 8

    Raises:
        MalformedRasterError: bad header, or fewer pixel bytes than declared
    """
    width_bytes, height = parse_header(data)
    width = width_bytes * 8

    end = HEADER_SIZE + width_bytes * height
    if len(data) < end:
        raise MalformedRasterError(
            f"Raster declares {width}x{height} pixels but holds only "
            f"{len(data) - HEADER_SIZE} of {end - HEADER_SIZE} data bytes"
        )

    buffer = b''.join(_BYTE_TABLE[value] for value in data[HEADER_SIZE:end])

    return DecodedImage(width, height, buffer)


def rotate_180(image: DecodedImage) -> DecodedImage:
    """
    Rotate an image by 180 degrees.

    Pixel (x, y) moves to (width-1-x, height-1-y); dimensions are unchanged.
    """
    if image.width == 0 or image.height == 0:
        return DecodedImage(image.width, image.height, image.buffer)

    img = Image.frombytes('RGBA', (image.width, image.height), image.buffer)
    rotated = img.transpose(Image.Transpose.ROTATE_180)

    return DecodedImage(image.width, image.height, rotated.tobytes())
