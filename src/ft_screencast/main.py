"""
ft-screencast Main Application
==============================

Command line entry point: screencasts a web page to a Flaschen-Taschen
display.

Session layout:
    BrowserProcess -> ScreencastSource -> FrameBuffer -> FrameWorker(s)
                                                            |
                          FrameHandler: RasterEncoder -> DisplayLink
                                        FailureGate  -> ack / stop

The session runs until SIGINT/SIGTERM is received or the frame stream
ends (capture stopped after sustained failures, or the browser went away).

Exit codes:
    0 - stopped by signal
    1 - capture stopped by the failure gate or lost the browser
    2 - startup or configuration error

Usage:
    ft-screencast -u https://example.com -f localhost:1337 -w 45 -h 35 -vv
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError

from ft_screencast import __version__
from ft_screencast.config import (
    Settings,
    load_config,
    setup_logging,
    verbosity_to_level,
)
from ft_screencast.display import DisplayLink, TransmitError
from ft_screencast.pipeline import FailureGate, FrameHandler, FrameWorker
from ft_screencast.raster import RasterEncoder
from ft_screencast.stream import (
    BrowserError,
    BrowserProcess,
    CdpError,
    FrameBuffer,
    ImageFormat,
    ScreencastOptions,
    ScreencastSource,
)


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_CAPTURE_STOPPED = 1
EXIT_STARTUP_ERROR = 2


# =============================================================================
# Command Line
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser. -h is the screen height, --help is help."""
    parser = argparse.ArgumentParser(
        prog="ft-screencast",
        description="Screencast a web page to a Flaschen-Taschen display",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this help and exit")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-u", "--url", help="The URL of the website to screencast"
    )
    parser.add_argument(
        "-f", "--ft-endpoint",
        help="The address of the target flaschentaschen server, e.g. localhost:1337",
    )
    parser.add_argument(
        "-w", "--screen-width", type=int,
        help="The width of the LED screen (in pixels)",
    )
    parser.add_argument(
        "-h", "--screen-height", type=int,
        help="The height of the LED screen (in pixels)",
    )
    parser.add_argument(
        "-v", "--verbosity", action="count", default=0,
        help="Increase verbosity (e.g. -vvv)",
    )
    parser.add_argument("-c", "--config", help="Path to a YAML config file")
    parser.add_argument(
        "--format", choices=[f.value for f in ImageFormat],
        help="Frame format requested from the browser",
    )
    parser.add_argument("--quality", type=int, help="Compression quality (0-100)")
    parser.add_argument(
        "--every-nth-frame", type=int, help="Only capture every Nth frame"
    )
    parser.add_argument(
        "--failure-threshold", type=int,
        help="Consecutive frame failures tolerated before capture stops",
    )
    parser.add_argument("--workers", type=int, help="Number of frame workers")
    parser.add_argument("--chrome", help="Chrome/Chromium executable")
    parser.add_argument(
        "--no-headless", action="store_true",
        help="Show the browser window",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """
    Merge command line flags into the loaded configuration.

    Raises:
        ValueError: If URL or display endpoint is missing
        ValidationError: If a value is out of range
    """
    overrides = {
        "capture": {
            "url": args.url,
            "width": args.screen_width,
            "height": args.screen_height,
            "format": args.format,
            "quality": args.quality,
            "every_nth_frame": args.every_nth_frame,
        },
        "display": {"endpoint": args.ft_endpoint},
        "browser": {
            "executable": args.chrome,
            "headless": False if args.no_headless else None,
        },
        "pipeline": {
            "failure_threshold": args.failure_threshold,
            "workers": args.workers,
        },
        "logging": {"level": verbosity_to_level(args.verbosity)},
    }
    settings = load_config(args.config, overrides)

    if not settings.capture.url:
        raise ValueError("A URL to screencast is required (-u/--url)")
    if not settings.display.endpoint:
        raise ValueError("A display endpoint is required (-f/--ft-endpoint)")
    return settings


# =============================================================================
# Session
# =============================================================================

async def run_session(
    settings: Settings,
    shutdown_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Run one screencast session until shutdown or end of stream.

    Owns every resource of the session and releases them on exit.

    Args:
        settings: Effective configuration
        shutdown_event: Set to end the session; created if None

    Returns:
        Process exit code
    """
    shutdown_event = shutdown_event or asyncio.Event()
    capture = settings.capture

    with DisplayLink(
        settings.display.endpoint,
        default_port=settings.display.default_port,
    ) as link:
        async with BrowserProcess(
            width=capture.width,
            height=capture.height,
            executable=settings.browser.executable,
            headless=settings.browser.headless,
            startup_timeout=settings.browser.startup_timeout_seconds,
            extra_args=settings.browser.extra_args,
        ) as browser:
            ws_url = await browser.start()

            buffer = FrameBuffer(maxsize=settings.pipeline.max_queue_size)
            async with ScreencastSource(
                ws_url,
                buffer,
                command_timeout=settings.browser.command_timeout_seconds,
            ) as source:
                await source.navigate(
                    capture.url,
                    timeout=settings.browser.navigation_timeout_seconds,
                )

                handler = FrameHandler(
                    encoder=RasterEncoder(),
                    link=link,
                    gate=FailureGate(threshold=settings.pipeline.failure_threshold),
                    control=source,
                )
                workers = [
                    asyncio.create_task(
                        FrameWorker(
                            buffer,
                            handler,
                            is_finished=lambda: source.finished,
                            name=f"frame-worker-{i}",
                        ).run(),
                        name=f"frame-worker-{i}",
                    )
                    for i in range(settings.pipeline.workers)
                ]

                try:
                    await source.start(ScreencastOptions(
                        max_width=capture.width,
                        max_height=capture.height,
                        quality=capture.quality,
                        format=capture.format,
                        every_nth_frame=capture.every_nth_frame,
                    ))
                    exit_code = await _wait_for_end(shutdown_event, source)
                finally:
                    await _stop_workers(workers)
                    logger.info(f"Frame handler metrics: {handler.metrics.to_dict()}")
                    logger.info(f"Source metrics: {source.metrics.to_dict()}")
                    logger.info(f"Frame buffer metrics: {buffer.metrics()}")

    return exit_code


async def _wait_for_end(shutdown_event: asyncio.Event, source: ScreencastSource) -> int:
    shutdown = asyncio.create_task(shutdown_event.wait(), name="shutdown")
    finished = asyncio.create_task(source.wait_finished(), name="stream_finished")
    try:
        await asyncio.wait({shutdown, finished}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (shutdown, finished):
            task.cancel()

    if shutdown_event.is_set():
        logger.info("Shutdown requested, exiting...")
        return EXIT_OK

    logger.error("Frame stream ended, exiting...")
    return EXIT_CAPTURE_STOPPED


async def _stop_workers(workers: List[asyncio.Task]) -> None:
    for task in workers:
        task.cancel()
    await asyncio.gather(*workers, return_exceptions=True)


async def _main_async(settings: Settings) -> int:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}, exiting...")
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle_signal, signum)
        except NotImplementedError:
            signal.signal(signum, lambda s, _: loop.call_soon_threadsafe(_handle_signal, s))

    return await run_session(settings, shutdown_event)


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except (ValueError, ValidationError) as e:
        print(f"ft-screencast: error: {e}", file=sys.stderr)
        return EXIT_STARTUP_ERROR

    setup_logging(settings)

    try:
        return asyncio.run(_main_async(settings))
    except (BrowserError, CdpError, TransmitError) as e:
        logger.error(f"Startup failed: {e}")
        return EXIT_STARTUP_ERROR
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
