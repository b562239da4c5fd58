"""A TCP connection that exchanges protocol messages with a peer."""

from __future__ import annotations

import logging
import socket
import threading
from types import TracebackType

from .messages import Message, decode, describe, encode
from .packet import receive_packet, send_packet

logger = logging.getLogger(__name__)


class ConnectionClosed(ConnectionError):
    """Raised when the peer is gone or the connection was closed."""


class RemoteConnection:
    """One end of a message connection between game clients and servers."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._closed = False
        self._send_lock = threading.Lock()
        self._receive_lock = threading.Lock()

    @classmethod
    def connect(
        cls, host: str, port: int, timeout: float | None = None
    ) -> RemoteConnection:
        """Open a connection to a listening server."""
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise ConnectionError(f"could not connect to server {host}:{port}") from exc
        logger.info("Connected to server %s:%s", host, port)
        return cls(sock)

    @classmethod
    def accept(cls, listener: socket.socket) -> RemoteConnection:
        """Wait for and accept the next connection on a listening socket."""
        try:
            sock, address = listener.accept()
        except OSError as exc:
            raise ConnectionError("could not accept connection") from exc
        logger.info("Accepted connection from %s:%s", address[0], address[1])
        return cls(sock)

    def send(self, message: Message) -> None:
        """Send one message; close the connection and raise if that fails."""
        packet = encode(message)
        if self._closed:
            raise ConnectionClosed(f"cannot send {describe(message.kind)}: connection closed")
        try:
            with self._send_lock:
                send_packet(self._sock, packet)
        except OSError as exc:
            logger.error("Error sending %s", describe(message.kind))
            self.close()
            raise ConnectionClosed(f"error sending {describe(message.kind)}") from exc
        logger.info("%s sent", describe(message.kind))
        logger.debug("%r", message)

    def receive(self) -> Message:
        """Wait for the next message from the peer.

        Raises ConnectionClosed if the connection is or becomes closed, and
        PacketError if the packet holds no valid message.
        """
        if not self.is_connected():
            raise ConnectionClosed("connection is not open")
        try:
            with self._receive_lock:
                packet = receive_packet(self._sock)
        except OSError as exc:
            logger.error("Error receiving message")
            self.close()
            raise ConnectionClosed("error receiving message") from exc
        message = decode(packet)
        logger.info("%s received", describe(message.kind))
        logger.debug("%r", message)
        return message

    def is_connected(self) -> bool:
        """Whether the socket is open and bound to a peer."""
        if self._closed:
            return False
        try:
            self._sock.getpeername()
        except OSError:
            return False
        return True

    def remote_address(self) -> tuple[str, int]:
        """Host and port of the peer."""
        if self._closed:
            raise ConnectionClosed("connection is closed")
        try:
            peer = self._sock.getpeername()
        except OSError as exc:
            raise ConnectionClosed("connection has no peer") from exc
        return peer[0], peer[1]

    def close(self) -> None:
        """Shut the connection down; closing twice does nothing."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def __enter__(self) -> RemoteConnection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RemoteConnection {state}>"