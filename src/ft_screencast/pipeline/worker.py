"""
Frame Worker
============

Consumes frames from the FrameBuffer and runs the FrameHandler on each.

Design Rules:
    - Workers are the only consumers of the buffer
    - A worker exits once the source has finished and the buffer is empty
    - Unexpected errors are logged and the worker moves on to the next frame
"""

import asyncio
import logging
from typing import Callable

from ft_screencast.pipeline.handler import FrameHandler
from ft_screencast.stream.buffer import FrameBuffer


logger = logging.getLogger(__name__)


class FrameWorker:
    """
    Buffer consumer running one frame at a time.

    Several workers may share a buffer and a handler; each one then
    processes distinct frames concurrently.

    Example:
        worker = FrameWorker(buffer, handler, is_finished=lambda: source.finished)
        task = asyncio.create_task(worker.run())
    """

    def __init__(
        self,
        buffer: FrameBuffer,
        handler: FrameHandler,
        is_finished: Callable[[], bool],
        name: str = "frame-worker",
        poll_interval: float = 0.5,
    ) -> None:
        self.buffer = buffer
        self.handler = handler
        self.is_finished = is_finished
        self.name = name
        self.poll_interval = poll_interval

        self.frames_processed: int = 0
        self.errors: int = 0

    async def run(self) -> None:
        """Process frames until the source finishes and the buffer drains."""
        logger.info(f"{self.name} started")

        while True:
            try:
                frame = await self.buffer.get(timeout=self.poll_interval)

                if frame is None:
                    if self.is_finished():
                        break
                    continue

                await self.handler.handle(frame)
                self.frames_processed += 1

            except asyncio.CancelledError:
                logger.info(f"{self.name} cancelled")
                raise
            except Exception as e:
                self.errors += 1
                logger.error(f"{self.name} error: {e}")
                await asyncio.sleep(0.1)

        logger.info(
            f"{self.name} stopped after {self.frames_processed} frames"
        )
