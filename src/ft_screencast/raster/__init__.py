"""
Raster Module
=============

Conversion of compressed screencast frames into PPM rasters.

    - RasterEncoder: JPEG/PNG (base64 or raw bytes) -> RasterImage
    - RasterImage: Binary P6 PPM bytes plus dimensions
    - DecodeError / EncodeError: Per-frame conversion failures
"""

from ft_screencast.raster.encoder import (
    DecodeError,
    EncodeError,
    RasterEncoder,
    RasterError,
    RasterImage,
    encode_frame,
    ppm_header,
)


__all__ = [
    "DecodeError",
    "EncodeError",
    "RasterEncoder",
    "RasterError",
    "RasterImage",
    "encode_frame",
    "ppm_header",
]
