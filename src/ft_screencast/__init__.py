"""
ft-screencast
=============

Screencasts a web page to a Flaschen-Taschen LED display.

A headless browser tab is captured over the Chrome DevTools Protocol;
every frame is converted from JPEG/PNG to a binary PPM raster and sent
to the display as a single UDP datagram. Sustained conversion failures
stop the capture.

Components:
    - stream: Browser launcher, CDP screencast source, frame buffer
    - raster: JPEG/PNG to PPM conversion
    - display: UDP link to the display
    - pipeline: Failure gate, frame handler, workers

Example:
    from ft_screencast.main import main

    main(["-u", "https://example.com", "-f", "localhost:1337", "-w", "45", "-h", "35"])
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
