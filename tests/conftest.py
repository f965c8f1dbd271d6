"""
Test Configuration
==================

Pytest fixtures and test helpers for ft-screencast.
"""

import asyncio
import base64
import json
import socket
from typing import Callable, List, Optional

import cv2
import numpy as np
import pytest

from ft_screencast.display.link import TransmitError
from ft_screencast.stream.frame import Frame, ImageFormat
from ft_screencast.stream.source import ControlCallError


# =============================================================================
# Image helpers
# =============================================================================

def encode_image(rgb: np.ndarray, image_format: ImageFormat, quality: int = 100) -> bytes:
    """Compress an RGB array with OpenCV."""
    bgr = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
    if image_format == ImageFormat.JPEG:
        ok, buf = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
    else:
        ok, buf = cv2.imencode(".png", bgr)
    assert ok
    return buf.tobytes()


def solid_image(width: int, height: int, rgb=(255, 0, 0)) -> np.ndarray:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = rgb
    return image


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def make_frame(data: str, image_format: ImageFormat = ImageFormat.JPEG, session_id: int = 1) -> Frame:
    return Frame(session_id=session_id, timestamp=1.0, format=image_format, data=data)


@pytest.fixture
def red_jpeg_b64() -> str:
    """2x2 all-red JPEG, base64 encoded."""
    return b64(encode_image(solid_image(2, 2), ImageFormat.JPEG))


@pytest.fixture
def red_png_b64() -> str:
    """2x2 all-red PNG, base64 encoded."""
    return b64(encode_image(solid_image(2, 2), ImageFormat.PNG))


@pytest.fixture
def corrupt_jpeg_b64() -> str:
    """JPEG whose leading header bytes were overwritten."""
    data = bytearray(encode_image(solid_image(4, 4), ImageFormat.JPEG))
    data[0:4] = b"\x00\x00\x00\x00"
    return b64(bytes(data))


# =============================================================================
# Collaborator fakes
# =============================================================================

class FakeControl:
    """Records ack/stop calls made by the handler."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: List[tuple] = []
        self.fail = fail

    async def ack(self, session_id: int) -> None:
        self.calls.append(("ack", session_id))
        if self.fail:
            raise ControlCallError("browser went away")

    async def stop(self) -> None:
        self.calls.append(("stop", None))
        if self.fail:
            raise ControlCallError("browser went away")

    @property
    def acks(self) -> int:
        return sum(1 for call in self.calls if call[0] == "ack")

    @property
    def stops(self) -> int:
        return sum(1 for call in self.calls if call[0] == "stop")


class FakeLink:
    """DisplayLink stand-in that keeps sent datagrams in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[bytes] = []
        self.fail = fail

    def send(self, raster) -> int:
        if self.fail:
            raise TransmitError("Failed to send PPM to FlaschenTaschen@test: unreachable")
        self.sent.append(raster.data)
        return len(raster.data)


class FakeWebSocket:
    """
    In-memory DevTools websocket.

    Every command sent is recorded and answered through `responder`,
    which returns the list of messages the browser would send back.
    """

    def __init__(self, responder: Optional[Callable[[dict], list]] = None) -> None:
        self.sent: List[dict] = []
        self.closed = False
        self.responder = responder or (lambda command: [{"id": command["id"], "result": {}}])
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        command = json.loads(message)
        self.sent.append(command)
        for reply in self.responder(command):
            self.push(reply)

    def push(self, message) -> None:
        if not isinstance(message, str):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def disconnect(self) -> None:
        self._incoming.put_nowait(None)

    def methods(self) -> List[str]:
        return [command["method"] for command in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self) -> None:
        self.closed = True
        self.disconnect()


@pytest.fixture
def fake_control() -> FakeControl:
    return FakeControl()


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def udp_receiver():
    """UDP socket on the loopback interface, standing in for the display."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run in an empty directory without FT_* environment variables."""
    for name in (
        "FT_CAPTURE_URL",
        "FT_ENDPOINT",
        "FT_SCREEN_WIDTH",
        "FT_SCREEN_HEIGHT",
        "FT_FRAME_FORMAT",
        "FT_EVERY_NTH_FRAME",
        "FT_CHROME_PATH",
        "FT_FAILURE_THRESHOLD",
        "FT_WORKERS",
        "FT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path
