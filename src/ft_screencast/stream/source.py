"""
Screencast Source
=================

Chrome DevTools Protocol (CDP) client that turns a browser tab into a
stream of frames.

This module provides the ScreencastSource class which:
    - Connects to a page target's DevTools websocket
    - Navigates the tab and starts the screencast
    - Converts Page.screencastFrame events into Frame values
    - Pushes frames into a FrameBuffer for the workers
    - Exposes the ack/stop control surface used by the frame handler

Design Rules:
    - Does NOT decode image data
    - A single reader task owns the websocket receive side
    - Frames dropped by the buffer are acknowledged immediately so the
      browser keeps producing
    - The stream is finished once stop() was issued or the connection
      closed; workers use this to drain and exit
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ft_screencast.stream.buffer import FrameBuffer
from ft_screencast.stream.frame import Frame, ImageFormat


logger = logging.getLogger(__name__)


class CdpError(Exception):
    """Raised when a CDP command fails or cannot be delivered."""
    pass


class ControlCallError(Exception):
    """Raised when an ack or stop call cannot be delivered to the browser."""
    pass


@dataclass(frozen=True)
class ScreencastOptions:
    """
    Capture parameters negotiated with the browser.

    Attributes:
        max_width: Maximum frame width in pixels
        max_height: Maximum frame height in pixels
        quality: Compression quality 0-100 (JPEG only)
        format: Compressed frame format
        every_nth_frame: Sampling stride (1 = every frame)
    """

    max_width: int
    max_height: int
    quality: int = 100
    format: ImageFormat = ImageFormat.JPEG
    every_nth_frame: int = 1

    def __post_init__(self) -> None:
        if self.max_width < 1 or self.max_height < 1:
            raise ValueError("max_width and max_height must be >= 1")
        if not 0 <= self.quality <= 100:
            raise ValueError("quality must be within 0-100")
        if self.every_nth_frame < 1:
            raise ValueError("every_nth_frame must be >= 1")

    def to_params(self) -> Dict[str, Any]:
        """CDP parameters for Page.startScreencast."""
        return {
            "format": ImageFormat(self.format).value,
            "quality": self.quality,
            "maxWidth": self.max_width,
            "maxHeight": self.max_height,
            "everyNthFrame": self.every_nth_frame,
        }


class SourceMetrics:
    """Metrics for ScreencastSource observability."""

    __slots__ = (
        "frames_received",
        "frames_dropped",
        "parse_errors",
        "last_session_id",
        "last_timestamp",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.frames_dropped: int = 0
        self.parse_errors: int = 0
        self.last_session_id: int = -1
        self.last_timestamp: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


class ScreencastSource:
    """
    Frame source backed by a browser tab.

    Attributes:
        url: DevTools websocket URL of the page target
        buffer: FrameBuffer frames are pushed into
        metrics: Operational metrics

    Example:
        buffer = FrameBuffer(maxsize=8)
        async with ScreencastSource(ws_url, buffer) as source:
            await source.navigate("https://example.com")
            await source.start(ScreencastOptions(max_width=45, max_height=35))
            await source.wait_finished()
    """

    def __init__(
        self,
        url: str,
        buffer: FrameBuffer,
        command_timeout: float = 10.0,
    ) -> None:
        """
        Initialize screencast source.

        Args:
            url: DevTools websocket URL of the page target
            buffer: FrameBuffer to push frames into
            command_timeout: Seconds to wait for a command response
        """
        self.url = url
        self.buffer = buffer
        self.command_timeout = command_timeout

        self._websocket: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._load_event = asyncio.Event()
        self._finished = asyncio.Event()
        self._format = ImageFormat.JPEG

        self.metrics = SourceMetrics()

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    @property
    def finished(self) -> bool:
        """Whether the frame stream has ended."""
        return self._finished.is_set()

    async def wait_finished(self) -> None:
        await self._finished.wait()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the DevTools websocket and start the reader task."""
        logger.info(f"Connecting to DevTools target: {self.url}")
        try:
            websocket = await websockets.connect(
                self.url,
                max_size=None,
                ping_interval=None,
                close_timeout=5,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise CdpError(f"Could not connect to {self.url}: {e}")
        self.attach(websocket)

    def attach(self, websocket: Any) -> None:
        """Use an already open websocket connection."""
        self._websocket = websocket
        self._finished.clear()
        self._reader_task = asyncio.create_task(
            self._read_loop(), name="cdp_reader"
        )

    async def close(self) -> None:
        """Close the websocket and stop the reader task."""
        websocket = self._websocket
        self._websocket = None

        if websocket is not None:
            try:
                await websocket.close()
            except ConnectionClosed:
                pass

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"DevTools reader failed: {e}")
            self._reader_task = None

        self._finish("source closed")

    async def __aenter__(self) -> "ScreencastSource":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def send_command(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        wait: bool = True,
    ) -> Dict[str, Any]:
        """
        Send a CDP command.

        Args:
            method: CDP method name, e.g. "Page.navigate"
            params: Command parameters
            wait: Wait for the response (never from inside the reader)

        Returns:
            The command result, or {} when not waiting

        Raises:
            CdpError: If the command cannot be sent, times out or fails
        """
        websocket = self._websocket
        if websocket is None:
            raise CdpError(f"Cannot send {method}: not connected")

        command_id = next(self._ids)
        message = {"id": command_id, "method": method, "params": params or {}}

        future: Optional[asyncio.Future] = None
        if wait:
            future = asyncio.get_running_loop().create_future()
            self._pending[command_id] = future

        try:
            await websocket.send(json.dumps(message))
            if future is None:
                return {}
            response = await asyncio.wait_for(future, timeout=self.command_timeout)
        except ConnectionClosed as e:
            raise CdpError(f"Connection closed while sending {method}: {e}")
        except asyncio.TimeoutError:
            raise CdpError(
                f"No response to {method} within {self.command_timeout:.1f}s"
            )
        finally:
            self._pending.pop(command_id, None)

        if "error" in response:
            error = response["error"]
            raise CdpError(
                f"{method} failed: {error.get('message', error)} "
                f"(code {error.get('code')})"
            )
        return response.get("result", {})

    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        """
        Navigate the tab and wait for the load event.

        Raises:
            CdpError: If navigation fails or does not finish in time
        """
        await self.send_command("Page.enable")
        self._load_event.clear()

        result = await self.send_command("Page.navigate", {"url": url})
        if result.get("errorText"):
            raise CdpError(f"Could not navigate to {url}: {result['errorText']}")

        try:
            await asyncio.wait_for(self._load_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise CdpError(f"Page {url} did not finish loading within {timeout:.0f}s")
        logger.info(f"Navigated to {url}")

    async def start(self, options: ScreencastOptions) -> None:
        """Start the screencast with the given capture parameters."""
        self._format = ImageFormat(options.format)
        logger.info(
            f"Starting screencast: {options.max_width}x{options.max_height}, "
            f"format={self._format.value}, quality={options.quality}, "
            f"every_nth_frame={options.every_nth_frame}"
        )
        try:
            await self.send_command("Page.startScreencast", options.to_params())
        except CdpError as e:
            raise CdpError(f"failed to start screencasting: {e}")

    async def ack(self, session_id: int, wait: bool = True) -> None:
        """
        Acknowledge a frame so the browser sends the next one.

        Raises:
            ControlCallError: If the acknowledgment cannot be delivered
        """
        try:
            await self.send_command(
                "Page.screencastFrameAck", {"sessionId": session_id}, wait=wait
            )
        except CdpError as e:
            raise ControlCallError(f"screencastFrameAck({session_id}): {e}")

    async def stop(self) -> None:
        """
        Stop the screencast. The frame stream is finished afterwards.

        Raises:
            ControlCallError: If the stop command cannot be delivered
        """
        try:
            await self.send_command("Page.stopScreencast")
        except CdpError as e:
            raise ControlCallError(f"stopScreencast: {e}")
        finally:
            self._finish("screencast stopped")

    # -------------------------------------------------------------------------
    # Receive side
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        websocket = self._websocket
        try:
            async for message in websocket:
                try:
                    await self._dispatch(message)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.metrics.parse_errors += 1
                    logger.error(f"Error handling DevTools message: {e}")
        except ConnectionClosed as e:
            logger.warning(f"DevTools connection closed: {e}")
        finally:
            self._fail_pending(CdpError("DevTools connection closed"))
            self._finish("connection closed")

    async def _dispatch(self, raw: Any) -> None:
        """Route one websocket message to a pending command or an event handler."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            self.metrics.parse_errors += 1
            logger.error(f"Failed to parse DevTools message: {e}")
            return

        if not isinstance(data, dict):
            self.metrics.parse_errors += 1
            logger.error(f"Unexpected DevTools message: {data!r:.80}")
            return

        if "id" in data:
            future = self._pending.get(data["id"])
            if future is not None and not future.done():
                future.set_result(data)
            return

        method = data.get("method")
        params = data.get("params") or {}
        if not isinstance(params, dict):
            self.metrics.parse_errors += 1
            logger.error(f"Unexpected params for {method}: {params!r:.80}")
            return

        if method == "Page.screencastFrame":
            await self._on_frame(params)
        elif method == "Page.loadEventFired":
            self._load_event.set()
        elif method in ("Inspector.detached", "Target.targetCrashed"):
            logger.error(f"DevTools target went away: {method} {params}")
            self._finish(method)

    async def _on_frame(self, params: Dict[str, Any]) -> None:
        frame = self._parse_frame(params)
        if frame is None:
            return

        self.metrics.frames_received += 1
        self.metrics.last_session_id = frame.session_id
        self.metrics.last_timestamp = frame.timestamp

        dropped = await self.buffer.put(frame)
        if dropped is not None:
            self.metrics.frames_dropped += 1
            try:
                await self.ack(dropped.session_id, wait=False)
            except ControlCallError as e:
                logger.error(f"Failed to acknowledge dropped frame: {e}")

    def _parse_frame(self, params: Dict[str, Any]) -> Optional[Frame]:
        """
        Build a Frame from Page.screencastFrame parameters.

        Events without a usable session id cannot be acknowledged and
        are skipped. A missing payload still yields a Frame so that the
        handler counts it as a decode failure and acks it. Unusable
        metadata only loses the timestamp.
        """
        try:
            session_id = int(params["sessionId"])
        except (KeyError, ValueError, TypeError) as e:
            self.metrics.parse_errors += 1
            logger.error(f"Invalid screencast frame: missing sessionId ({e})")
            return None

        metadata = params.get("metadata") or {}
        if not isinstance(metadata, dict):
            self.metrics.parse_errors += 1
            logger.error(f"Invalid screencast frame metadata: {metadata!r:.80}")
            metadata = {}
        try:
            timestamp = float(metadata.get("timestamp") or 0.0)
        except (ValueError, TypeError):
            timestamp = 0.0

        data = params.get("data")
        if not isinstance(data, str):
            data = ""

        return Frame(
            session_id=session_id,
            timestamp=timestamp,
            format=self._format,
            data=data,
        )

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def _finish(self, reason: str) -> None:
        if not self._finished.is_set():
            logger.info(f"Frame stream finished: {reason}")
            self._finished.set()
