"""
Frame Data Model
=================

Internal frame representation for the capture pipeline.

This module defines the typed Frame class that is used as the interface
between the screencast source and the frame handler.

Design Rules:
    - This is the ONLY frame format passed to downstream stages
    - Does NOT decode or manipulate image data
    - Preserves the correlation token needed to acknowledge the frame
"""

from dataclasses import dataclass
from enum import Enum


class ImageFormat(str, Enum):
    """Compressed image formats the browser can screencast in."""

    JPEG = "jpeg"
    PNG = "png"


@dataclass(frozen=True, slots=True)
class Frame:
    """
    Screencast frame received from the browser.

    It is immutable (frozen) and consumed exactly once by the
    frame handler.

    Attributes:
        session_id: Correlation token, echoed back in the acknowledgment
        timestamp: Capture time in seconds (0.0 if the browser omitted it)
        format: Compressed format of `data`
        data: Base64-encoded image payload (NOT decoded)
    """

    session_id: int
    timestamp: float
    format: ImageFormat
    data: str

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(session_id={self.session_id}, "
            f"timestamp={self.timestamp:.3f}, "
            f"format={self.format.value})"
        )
