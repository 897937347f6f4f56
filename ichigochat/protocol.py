"""Wire protocol shared by the chat client and server.

Integers travel little-endian; strings travel as a u32 byte length followed
by that many UTF-8 bytes.
"""

from __future__ import annotations

import enum
import struct
from typing import Protocol

MAX_STATUS_LENGTH = 32
MAX_MESSAGE_LENGTH = 256


class Opcode(enum.IntEnum):
    """Request codes a client sends as the first byte of every request."""

    SEND_MESSAGE = 0
    DELETE_MESSAGE = 1
    GET_MESSAGES = 2
    GET_USERS = 3
    GET_GROUPS = 4
    SET_STATUS = 5
    LOGIN = 6
    LOGOUT = 7
    REGISTER = 8
    REGISTER_GROUP = 9
    GOODBYE = 10
    HEARTBEAT = 11


class Status(enum.IntEnum):
    """Result codes the server answers with."""

    SUCCESS = 0
    INVALID_REQUEST = 1
    UNAUTHORIZED = 2


class RecipientType(enum.IntEnum):
    """Whether a message is addressed to a single user or to a group."""

    USER = 0
    GROUP = 1


class ConnectionDropped(ConnectionError):
    """The peer closed the connection before a complete value arrived."""


class _Receiver(Protocol):
    def recv(self, bufsize: int) -> bytes: ...


_U8 = struct.Struct("<B")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")


def clamp(value: int, minimum: int, maximum: int) -> int:
    """Return *value* limited to the range [minimum, maximum]."""
    if value < minimum:
        return minimum
    if value > maximum:
        return maximum
    return value


def _pack(layout: struct.Struct, value: int) -> bytes:
    try:
        return layout.pack(value)
    except struct.error as exc:
        raise ValueError(f"{value!r} does not fit the field: {exc}") from exc


def pack_u8(value: int) -> bytes:
    """Encode an unsigned 8-bit integer."""
    return _pack(_U8, value)


def pack_u32(value: int) -> bytes:
    """Encode an unsigned 32-bit little-endian integer."""
    return _pack(_U32, value)


def pack_i32(value: int) -> bytes:
    """Encode a signed 32-bit little-endian integer."""
    return _pack(_I32, value)


def pack_string(text: str) -> bytes:
    """Encode a string as its UTF-8 byte length followed by the bytes."""
    data = text.encode("utf-8")
    return pack_u32(len(data)) + data


def recv_exact(sock: _Receiver, size: int) -> bytes:
    """Read exactly *size* bytes from *sock*, raising ConnectionDropped on EOF."""
    if size < 0:
        raise ValueError("size must not be negative")
    received = bytearray()
    while len(received) < size:
        chunk = sock.recv(size - len(received))
        if not chunk:
            raise ConnectionDropped(
                f"connection closed after {len(received)} of {size} bytes"
            )
        received += chunk
    return bytes(received)


def recv_u8(sock: _Receiver) -> int:
    """Read an unsigned 8-bit integer."""
    return _U8.unpack(recv_exact(sock, _U8.size))[0]


def recv_u32(sock: _Receiver) -> int:
    """Read an unsigned 32-bit little-endian integer."""
    return _U32.unpack(recv_exact(sock, _U32.size))[0]


def recv_i32(sock: _Receiver) -> int:
    """Read a signed 32-bit little-endian integer."""
    return _I32.unpack(recv_exact(sock, _I32.size))[0]


def recv_string(sock: _Receiver) -> str:
    """Read a length-prefixed UTF-8 string."""
    length = recv_u32(sock)
    return recv_exact(sock, length).decode("utf-8", errors="replace")