"""
Frame Handler
=============

Per-frame pipeline: decode, convert, transmit, then acknowledge or stop.

For every frame the handler makes exactly one control call back to the
frame source:

    encode ok              -> send (errors logged only) -> reset gate -> ack
    encode failed, count <= threshold                   -> ack
    encode failed, count >  threshold                   -> stop

Design Rules:
    - No per-frame error propagates out of handle()
    - Only decode/encode failures feed the failure gate; a transmit
      failure cannot be told apart from an unreachable display that
      silently drops datagrams, so it is logged but not counted
    - Encoding runs in a worker thread, outside the gate lock
"""

import asyncio
import logging
from enum import Enum
from typing import Protocol

from ft_screencast.display.link import DisplayLink, TransmitError
from ft_screencast.pipeline.gate import FailureGate
from ft_screencast.raster.encoder import (
    DecodeError,
    RasterEncoder,
    RasterError,
    RasterImage,
)
from ft_screencast.stream.frame import Frame
from ft_screencast.stream.source import ControlCallError


logger = logging.getLogger(__name__)


class ControlAction(str, Enum):
    """Control call issued to the frame source for one frame."""

    ACK = "ack"
    STOP = "stop"


class FrameControl(Protocol):
    """
    Control surface of a frame source.

    Implemented by ScreencastSource; tests use in-memory fakes.
    """

    async def ack(self, session_id: int) -> None:
        """Acknowledge a frame so the source sends the next one."""
        ...

    async def stop(self) -> None:
        """Stop frame acquisition."""
        ...


class FrameHandlerMetrics:
    """Metrics for FrameHandler observability."""

    __slots__ = (
        "frames_handled",
        "frames_sent",
        "bytes_sent",
        "decode_failures",
        "encode_failures",
        "transmit_failures",
        "control_errors",
        "acks",
        "stops",
    )

    def __init__(self) -> None:
        self.frames_handled: int = 0
        self.frames_sent: int = 0
        self.bytes_sent: int = 0
        self.decode_failures: int = 0
        self.encode_failures: int = 0
        self.transmit_failures: int = 0
        self.control_errors: int = 0
        self.acks: int = 0
        self.stops: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


class FrameHandler:
    """
    Orchestrates encoder, display link and failure gate for each frame.

    Safe to call concurrently for distinct frames: the only shared
    mutable state is the gate counter (locked) and the metrics
    (updated from the event loop thread only).

    Example:
        handler = FrameHandler(
            encoder=RasterEncoder(),
            link=DisplayLink("localhost:1337"),
            gate=FailureGate(threshold=1000),
            control=source,
        )
        action = await handler.handle(frame)
    """

    def __init__(
        self,
        encoder: RasterEncoder,
        link: DisplayLink,
        gate: FailureGate,
        control: FrameControl,
        offload_encoding: bool = True,
    ) -> None:
        """
        Initialize the frame handler.

        Args:
            encoder: Converter from compressed frames to rasters
            link: Transport to the display
            gate: Shared consecutive failure counter
            control: Frame source to ack/stop
            offload_encoding: Run encoding in a worker thread
        """
        self.encoder = encoder
        self.link = link
        self.gate = gate
        self.control = control
        self.offload_encoding = offload_encoding

        self.metrics = FrameHandlerMetrics()
        self._tripped_logged = False

    async def handle(self, frame: Frame) -> ControlAction:
        """
        Process one frame and issue its control call.

        Args:
            frame: Frame received from the source

        Returns:
            The control action that was issued
        """
        self.metrics.frames_handled += 1
        logger.debug(f"got frame: {frame.timestamp:.3f} (session {frame.session_id})")

        try:
            raster = await self._encode(frame)
        except RasterError as e:
            if isinstance(e, DecodeError):
                self.metrics.decode_failures += 1
            else:
                self.metrics.encode_failures += 1
            count = self.gate.record_failure()
            logger.error(
                f"frame handler failed (consecutive errors: {count}): {e}"
            )
        else:
            self._transmit(raster)
            self.gate.record_success()
            count = 0

        if self.gate.is_tripped(count):
            await self._stop(count)
            return ControlAction.STOP

        await self._ack(frame.session_id)
        return ControlAction.ACK

    async def _encode(self, frame: Frame) -> RasterImage:
        if self.offload_encoding:
            return await asyncio.to_thread(
                self.encoder.encode, frame.data, frame.format
            )
        return self.encoder.encode(frame.data, frame.format)

    def _transmit(self, raster: RasterImage) -> None:
        try:
            sent = self.link.send(raster)
        except TransmitError as e:
            self.metrics.transmit_failures += 1
            logger.error(str(e))
            return

        self.metrics.frames_sent += 1
        self.metrics.bytes_sent += sent

    async def _ack(self, session_id: int) -> None:
        self.metrics.acks += 1
        try:
            await self.control.ack(session_id)
        except ControlCallError as e:
            self.metrics.control_errors += 1
            logger.error(f"Failed to acknowledge frame {session_id}: {e}")

    async def _stop(self, count: int) -> None:
        self.metrics.stops += 1
        if not self._tripped_logged:
            self._tripped_logged = True
            logger.error(
                f"{count} consecutive frame failures exceed threshold "
                f"{self.gate.threshold}, stopping capture"
            )
        else:
            logger.warning(f"Capture still failing ({count} consecutive), stopping again")

        try:
            await self.control.stop()
        except ControlCallError as e:
            self.metrics.control_errors += 1
            logger.error(f"Failed to stop capture: {e}")
