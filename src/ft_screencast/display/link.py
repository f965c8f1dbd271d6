"""
Display Link
============

Connectionless transmit endpoint for a Flaschen-Taschen display.

Design Rules:
    - One datagram per raster, no fragmentation
    - No retry, no buffering
    - A successful send only means the local stack accepted the datagram;
      UDP gives no delivery confirmation
    - The socket is read-only after construction and may be used by
      concurrent senders
"""

import logging
import socket
from typing import Optional, Tuple, Union

from ft_screencast.raster.encoder import RasterImage


logger = logging.getLogger(__name__)


DEFAULT_PORT = 1337


class TransmitError(Exception):
    """Raised when a datagram cannot be handed to the network stack."""
    pass


def parse_endpoint(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """
    Split a display address into host and port.

    Accepts "host:port", "host", "[v6addr]:port" and "[v6addr]".

    Raises:
        ValueError: If the address or port is malformed
    """
    address = address.strip()
    if not address:
        raise ValueError("Empty display address")

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not host:
            raise ValueError(f"Malformed IPv6 address: {address}")
        if rest and not rest.startswith(":"):
            raise ValueError(f"Malformed address: {address}")
        port_str = rest[1:] if rest else ""
    elif address.count(":") == 1:
        host, _, port_str = address.partition(":")
    elif ":" in address:
        # Bare IPv6 literal without brackets
        host, port_str = address, ""
    else:
        host, port_str = address, ""

    if not host:
        raise ValueError(f"Missing host in address: {address}")

    if not port_str:
        return host, default_port

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in address: {address}")
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address: {address}")
    return host, port


class DisplayLink:
    """
    Connected UDP socket to one display.

    Attributes:
        address: Address string as given by the user
        host: Resolved host part
        port: Resolved port

    Example:
        with DisplayLink("localhost:1337") as link:
            link.send(raster)
    """

    def __init__(self, address: str, default_port: int = DEFAULT_PORT) -> None:
        """
        Resolve the address and connect a datagram socket to it.

        Args:
            address: "host:port" of the display server
            default_port: Port used when the address has none

        Raises:
            TransmitError: If the address cannot be resolved or the
                socket cannot be opened
        """
        self.address = address
        try:
            self.host, self.port = parse_endpoint(address, default_port)
        except ValueError as e:
            raise TransmitError(str(e))

        self._socket: Optional[socket.socket] = None
        try:
            infos = socket.getaddrinfo(
                self.host, self.port, type=socket.SOCK_DGRAM
            )
        except socket.gaierror as e:
            raise TransmitError(f"Could not resolve {address}: {e}")

        last_error: Optional[OSError] = None
        for family, socktype, proto, _, sockaddr in infos:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as e:
                last_error = e
                continue
            try:
                sock.connect(sockaddr)
            except OSError as e:
                sock.close()
                last_error = e
                continue
            self._socket = sock
            break

        if self._socket is None:
            raise TransmitError(f"Could not connect to {address}: {last_error}")

        logger.info(f"Opened display link to {self}")

    @property
    def closed(self) -> bool:
        return self._socket is None

    def send(self, raster: Union[RasterImage, bytes]) -> int:
        """
        Send one raster as a single datagram.

        Args:
            raster: RasterImage or raw PPM bytes

        Returns:
            Number of bytes handed to the network stack

        Raises:
            TransmitError: If the local stack rejects the datagram
        """
        payload = raster.data if isinstance(raster, RasterImage) else raster
        sock = self._socket
        if sock is None:
            raise TransmitError(f"Failed to send PPM to {self}: link is closed")
        try:
            return sock.send(payload)
        except OSError as e:
            raise TransmitError(f"Failed to send PPM to {self}: {e}")

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.info(f"Closed display link to {self}")

    def __enter__(self) -> "DisplayLink":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __str__(self) -> str:
        return f"FlaschenTaschen@{self.address}"
