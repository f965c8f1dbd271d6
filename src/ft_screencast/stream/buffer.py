"""
Frame Buffer
=============

Async-safe bounded queue between the screencast source and the workers.

Design Rules:
    - Fixed maximum size (drops oldest on overflow)
    - Dropped frames are handed back to the producer so they can
      still be acknowledged
    - Exposes minimal metrics for observability
    - Does NOT process or modify frames
"""

import asyncio
import logging
from typing import Optional

from ft_screencast.stream.frame import Frame


logger = logging.getLogger(__name__)


class FrameBuffer:
    """
    Async-safe bounded queue for frames.

    Uses a drop-oldest policy when the buffer is full so that a slow
    display never makes the capture fall further and further behind.

    Attributes:
        maxsize: Maximum number of frames to buffer
        dropped_count: Number of frames dropped due to overflow

    Example:
        buffer = FrameBuffer(maxsize=8)

        # Producer
        dropped = await buffer.put(frame)
        if dropped is not None:
            await source.ack(dropped.session_id)

        # Consumer
        frame = await buffer.get()
    """

    def __init__(self, maxsize: int = 8) -> None:
        """
        Initialize frame buffer.

        Args:
            maxsize: Maximum frames to buffer. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)
        self._dropped_count: int = 0
        self._total_put: int = 0

    @property
    def size(self) -> int:
        """Current number of frames in buffer."""
        return self._queue.qsize()

    async def put(self, frame: Frame) -> Optional[Frame]:
        """
        Add frame to buffer, dropping oldest if full.

        Args:
            frame: Frame to add

        Returns:
            The frame that was dropped to make room, or None.
        """
        self._total_put += 1
        dropped: Optional[Frame] = None

        if self._queue.full():
            try:
                dropped = self._queue.get_nowait()
                self._dropped_count += 1
                logger.warning(
                    f"Buffer full, dropped oldest frame {dropped.session_id}. "
                    f"Total dropped: {self._dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(frame)
        return dropped

    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Get next frame from buffer.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next frame, or None if timeout occurred.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(
                    self._queue.get(),
                    timeout=timeout
                )
            else:
                return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def metrics(self) -> dict:
        """Get buffer metrics for observability."""
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
