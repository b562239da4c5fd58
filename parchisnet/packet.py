"""Binary packets of big-endian integers and length-prefixed strings, framed for TCP."""

from __future__ import annotations

import socket
import struct

_INT = struct.Struct(">i")
_LEN = struct.Struct(">I")


class PacketError(ValueError):
    """Raised when a packet cannot be built or read."""


class Packet:
    """A growable byte buffer with a read cursor.

    Integers are signed 32-bit big-endian values; strings are UTF-8 bytes
    preceded by their unsigned 32-bit big-endian length.
    """

    __slots__ = ("_data", "_pos")

    def __init__(self, data: bytes = b"") -> None:
        self._data = bytearray(data)
        self._pos = 0

    def append_int(self, value: int) -> Packet:
        """Append a signed 32-bit integer and return the packet."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise PacketError(f"not an integer: {value!r}")
        try:
            self._data += _INT.pack(value)
        except struct.error as exc:
            raise PacketError(f"integer out of 32-bit range: {value}") from exc
        return self

    def append_str(self, value: str) -> Packet:
        """Append a length-prefixed UTF-8 string and return the packet."""
        if not isinstance(value, str):
            raise PacketError(f"not a string: {value!r}")
        encoded = value.encode("utf-8")
        self._data += _LEN.pack(len(encoded))
        self._data += encoded
        return self

    def _take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise PacketError(
                f"packet too short: wanted {count} bytes at offset {self._pos}, "
                f"have {len(self._data) - self._pos}"
            )
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def read_int(self) -> int:
        """Read the next signed 32-bit integer."""
        return _INT.unpack(self._take(_INT.size))[0]

    def read_str(self) -> str:
        """Read the next length-prefixed UTF-8 string."""
        (length,) = _LEN.unpack(self._take(_LEN.size))
        raw = self._take(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PacketError("string is not valid UTF-8") from exc

    def at_end(self) -> bool:
        """Whether every byte has been read."""
        return self._pos >= len(self._data)

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Packet):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"Packet({bytes(self._data)!r})"

    def copy(self) -> Packet:
        """An independent packet with the same bytes and read position."""
        duplicate = Packet(self._data)
        duplicate._pos = self._pos
        return duplicate


def _recv_exact(sock: socket.socket, count: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < count:
        chunk = sock.recv(count - len(chunks))
        if not chunk:
            raise ConnectionError("connection closed by peer")
        chunks += chunk
    return bytes(chunks)


def send_packet(sock: socket.socket, packet: Packet) -> None:
    """Send a packet preceded by its 32-bit big-endian size."""
    payload = bytes(packet)
    sock.sendall(_LEN.pack(len(payload)) + payload)


def receive_packet(sock: socket.socket) -> Packet:
    """Receive one framed packet; raise ConnectionError if the peer closes."""
    (size,) = _LEN.unpack(_recv_exact(sock, _LEN.size))
    return Packet(_recv_exact(sock, size))