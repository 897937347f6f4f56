"""Client-side users and messages that know how to talk to the server.

The conversations follow the server's request flows. Every request starts with
a one-byte opcode. The login id goes as a little-endian i32, and each step is
answered with a one-byte status. Message content and recipient names are
length-prefixed strings. A new status is sent as raw bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .models import Group, Message, Recipient, User
from .protocol import (
    Opcode,
    RecipientType,
    Status,
    pack_i32,
    pack_string,
    pack_u8,
    recv_u8,
)


class _Connection(Protocol):
    def sendall(self, data: bytes) -> None: ...

    def recv(self, bufsize: int) -> bytes: ...


def _require_socket(sock: _Connection | None) -> _Connection:
    if sock is None:
        raise ValueError("not connected to a server")
    return sock


def _open_request(sock: _Connection, opcode: Opcode, connection_id: int) -> bool:
    """Send an opcode and login id; return whether the server accepted them."""
    sock.sendall(pack_u8(int(opcode)) + pack_i32(connection_id))
    return recv_u8(sock) == Status.SUCCESS


@dataclass(eq=False)
class ClientUser(User, Recipient):
    """A user as the client sees it."""

    def usernames(self) -> list[str]:
        return [self.name]

    def update_status(self, sock: _Connection | None, status: str) -> bool:
        """Ask the server to change this user's status text.

        Returns whether the server accepted the new status. An empty status is
        rejected without contacting the server. Raises ValueError if there is
        no connection or the user is not logged in.
        """
        if len(status) < 1:
            return False
        sock = _require_socket(sock)
        if self.id == -1:
            raise ValueError("the user is not logged in")

        if not _open_request(sock, Opcode.SET_STATUS, self.id):
            return False
        sock.sendall(status.encode("utf-8"))
        return recv_u8(sock) == Status.SUCCESS


@dataclass(eq=False)
class ClientMessage(Message):
    """A message the client can send to, or delete from, the server."""

    read: bool = False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClientMessage):
            return NotImplemented
        return self.id == other.id

    __hash__ = None  # type: ignore[assignment]

    def _addressing(self) -> tuple[RecipientType, str]:
        if self.recipient is None:
            raise ValueError("the message has no recipient")
        usernames = self.recipient.usernames()
        if len(usernames) > 1:
            if not isinstance(self.recipient, Group):
                raise TypeError("a recipient with several users must be a Group")
            return RecipientType.GROUP, self.recipient.name
        if not usernames:
            raise ValueError("the recipient has no users")
        return RecipientType.USER, usernames[0]

    def send(self, sock: _Connection | None, connection_id: int) -> bool:
        """Send this message as the user logged in with *connection_id*.

        Returns whether the server accepted the message.
        """
        sock = _require_socket(sock)
        recipient_type, recipient_name = self._addressing()

        if not _open_request(sock, Opcode.SEND_MESSAGE, connection_id):
            return False
        sock.sendall(
            pack_u8(int(recipient_type))
            + pack_string(recipient_name)
            + pack_string(self.content)
        )
        return recv_u8(sock) == Status.SUCCESS

    def delete_from_server(self, sock: _Connection | None, connection_id: int) -> bool:
        """Delete this message on the server as the user logged in with *connection_id*.

        Returns whether the server deleted it.
        """
        sock = _require_socket(sock)
        if not _open_request(sock, Opcode.DELETE_MESSAGE, connection_id):
            return False
        sock.sendall(pack_i32(self.id))
        return recv_u8(sock) == Status.SUCCESS