"""
Display Module
==============

UDP transport to the Flaschen-Taschen display.
"""

from ft_screencast.display.link import (
    DEFAULT_PORT,
    DisplayLink,
    TransmitError,
    parse_endpoint,
)


__all__ = [
    "DEFAULT_PORT",
    "DisplayLink",
    "TransmitError",
    "parse_endpoint",
]
