"""
Raster Encoder
==============

Converts compressed screencast frames into binary PPM rasters.

Design Rules:
    - This is the ONLY place in the codebase that decodes images
    - The declared format must match the payload's magic bytes
    - Validates shape and dtype before building the raster
    - Fails fast on corrupt frames; never returns a partial raster
    - Pure: no state, no I/O

Output layout (one Flaschen-Taschen datagram):

    b"P6\\n<width> <height>\\n255\\n" + width * height * 3 RGB bytes
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np

from ft_screencast.stream.frame import Frame, ImageFormat


logger = logging.getLogger(__name__)


PPM_MAGIC = b"P6"
PPM_MAX_VALUE = 255

_SIGNATURES = {
    ImageFormat.JPEG: b"\xff\xd8\xff",
    ImageFormat.PNG: b"\x89PNG\r\n\x1a\n",
}


class RasterError(Exception):
    """Base class for frame conversion failures."""
    pass


class DecodeError(RasterError):
    """Raised when the compressed payload cannot be decoded."""
    pass


class EncodeError(RasterError):
    """Raised when a decoded image cannot be turned into a raster."""
    pass


@dataclass(frozen=True, slots=True)
class RasterImage:
    """
    Binary PPM raster ready to be sent to the display.

    Attributes:
        width: Image width in pixels
        height: Image height in pixels
        data: Complete PPM bytes (header + RGB samples)
    """

    width: int
    height: int
    data: bytes

    @property
    def header(self) -> bytes:
        return ppm_header(self.width, self.height)

    @property
    def pixels(self) -> bytes:
        return self.data[len(self.header):]

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"RasterImage({self.width}x{self.height}, {len(self.data)} bytes)"


def ppm_header(width: int, height: int) -> bytes:
    """Build the binary PPM header for the given dimensions."""
    return b"%s\n%d %d\n%d\n" % (PPM_MAGIC, width, height, PPM_MAX_VALUE)


class RasterEncoder:
    """
    Stateless JPEG/PNG to PPM converter.

    A single instance can be shared by any number of workers; every
    call is independent and the caller is responsible for counting
    failures.

    Example:
        encoder = RasterEncoder()
        raster = encoder.encode(frame.data, frame.format)
        link.send(raster)
    """

    def encode(
        self,
        data: Union[str, bytes],
        image_format: ImageFormat,
    ) -> RasterImage:
        """
        Convert one compressed payload into a PPM raster.

        Args:
            data: Base64 text (str) or already decoded image bytes
            image_format: Declared compressed format of the payload

        Returns:
            RasterImage with the decoded dimensions

        Raises:
            DecodeError: If the payload is not a decodable image of the
                declared format
            EncodeError: If the decoded image cannot be re-encoded
        """
        try:
            image_format = ImageFormat(image_format)
        except ValueError:
            raise DecodeError(f"Unsupported image format: {image_format!r}")
        payload = _to_bytes(data)
        rgb = self._decode(payload, image_format)
        return self._to_raster(rgb)

    def _decode(self, payload: bytes, image_format: ImageFormat) -> np.ndarray:
        """Decode compressed bytes to an RGB array."""
        if not payload:
            raise DecodeError("Empty image payload")

        signature = _SIGNATURES[image_format]
        if not payload.startswith(signature):
            raise DecodeError(
                f"Payload is not a valid {image_format.value.upper()} image "
                f"(leading bytes {payload[:8].hex()})"
            )

        buffer = np.frombuffer(payload, np.uint8)
        try:
            bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as e:
            raise DecodeError(f"{image_format.value.upper()} decode failed: {e}")

        if bgr is None:
            raise DecodeError(
                f"Failed to decode {image_format.value.upper()} payload: "
                f"cv2.imdecode returned None"
            )

        if bgr.ndim != 3 or bgr.shape[2] != 3:
            raise EncodeError(f"Invalid image shape: {bgr.shape}")

        if bgr.dtype != np.uint8:
            raise EncodeError(f"Invalid dtype: {bgr.dtype}")

        try:
            return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
        except cv2.error as e:
            raise EncodeError(f"Color conversion failed: {e}")

    def _to_raster(self, rgb: np.ndarray) -> RasterImage:
        """Pack an RGB array into binary PPM bytes."""
        height, width = rgb.shape[:2]
        if width == 0 or height == 0:
            raise EncodeError(f"Decoded image is empty: {width}x{height}")

        body = np.ascontiguousarray(rgb).tobytes()
        if len(body) != width * height * 3:
            raise EncodeError(
                f"Sample buffer has {len(body)} bytes, "
                f"expected {width * height * 3}"
            )

        return RasterImage(
            width=width,
            height=height,
            data=ppm_header(width, height) + body,
        )


def _to_bytes(data: Union[str, bytes]) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Base64 decode failed: {e}")


_default_encoder = RasterEncoder()


def encode_frame(frame: Frame) -> RasterImage:
    """
    Convert a screencast frame to a PPM raster.

    Raises:
        DecodeError: If the frame payload cannot be decoded
        EncodeError: If the decoded image cannot be re-encoded
    """
    return _default_encoder.encode(frame.data, frame.format)
