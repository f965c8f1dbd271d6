"""
Stream Module
=============

Frame acquisition from a headless browser tab.

This module provides the ingestion layer for ft-screencast:
    - Frame: Typed frame data model (internal representation)
    - FrameBuffer: Async-safe bounded queue (drops oldest on overflow)
    - BrowserProcess: Headless Chrome launcher with DevTools enabled
    - ScreencastSource: CDP client producing frames, accepting ack/stop

Example:
    from ft_screencast.stream import (
        BrowserProcess, FrameBuffer, ScreencastOptions, ScreencastSource,
    )

    browser = BrowserProcess(width=45, height=35)
    ws_url = await browser.start()

    buffer = FrameBuffer(maxsize=8)
    async with ScreencastSource(ws_url, buffer) as source:
        await source.navigate("https://example.com")
        await source.start(ScreencastOptions(max_width=45, max_height=35))

        frame = await buffer.get()
        process(frame)
        await source.ack(frame.session_id)
"""

from ft_screencast.stream.frame import Frame, ImageFormat
from ft_screencast.stream.buffer import FrameBuffer
from ft_screencast.stream.browser import BrowserError, BrowserProcess
from ft_screencast.stream.source import (
    CdpError,
    ControlCallError,
    ScreencastOptions,
    ScreencastSource,
    SourceMetrics,
)


__all__ = [
    "BrowserError",
    "BrowserProcess",
    "CdpError",
    "ControlCallError",
    "Frame",
    "FrameBuffer",
    "ImageFormat",
    "ScreencastOptions",
    "ScreencastSource",
    "SourceMetrics",
]
