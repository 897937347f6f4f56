"""Client connection to a chat server.

A ServerConnection holds one TCP socket to the server and caches what the
server last reported: users, groups and the inbox, plus every message sent
during the session. A background thread sends a heartbeat at a fixed interval
so the server keeps the connection alive. A lock keeps the heartbeat from
interleaving with a request on the socket.
"""

from __future__ import annotations

import logging
import socket
import threading

from .client_models import ClientMessage, ClientUser
from .models import Group
from .protocol import (
    Opcode,
    Status,
    pack_i32,
    pack_string,
    pack_u8,
    pack_u32,
    recv_i32,
    recv_string,
    recv_u8,
    recv_u32,
)

_log = logging.getLogger(__name__)


class ServerConnection:
    """A session with the chat server and the data cached from it."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        heartbeat_interval: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval
        self.cached_users: list[ClientUser] = []
        self.cached_groups: list[Group] = []
        self.cached_inbox: list[ClientMessage] = []
        self.cached_outbox: list[ClientMessage] = []
        self.logged_in_user = ClientUser("")
        self._sock: socket.socket | None = None
        self._lock = threading.Lock()
        self._stop_heartbeat = threading.Event()
        self._heartbeat_thread: threading.Thread | None = None

    @property
    def connected(self) -> bool:
        """Whether a connection to the server is open."""
        return self._sock is not None

    # Connection lifetime --------------------------------------------------

    def connect(self) -> None:
        """Open the TCP connection and start the heartbeat thread.

        Raises OSError if the server cannot be reached.
        """
        with self._lock:
            if self._sock is not None:
                raise ValueError("already connected")
            self._sock = socket.create_connection((self.host, self.port))
            self._stop_heartbeat.clear()
            self._heartbeat_thread = threading.Thread(
                target=self._heartbeat_loop, name="chat-heartbeat", daemon=True
            )
            self._heartbeat_thread.start()

    def close(self) -> None:
        """Log out if needed, stop the heartbeat, say goodbye and close the socket."""
        if self._sock is None:
            return
        if self.logged_in_user.logged_in:
            try:
                self.logout()
            except OSError as exc:
                _log.error("Logout during close failed: %s", exc)

        self._stop_heartbeat.set()
        thread = self._heartbeat_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._heartbeat_thread = None

        with self._lock:
            sock, self._sock = self._sock, None
            if sock is None:
                return
            try:
                sock.sendall(pack_u8(int(Opcode.GOODBYE)))
            except OSError:
                pass
            sock.close()

    def __enter__(self) -> ServerConnection:
        if self._sock is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _heartbeat_loop(self) -> None:
        while not self._stop_heartbeat.wait(self.heartbeat_interval):
            with self._lock:
                sock = self._sock
                if sock is None:
                    return
                try:
                    sock.sendall(pack_u8(int(Opcode.HEARTBEAT)))
                    result = recv_u8(sock)
                except OSError as exc:
                    _log.error("Heartbeat failed: %s", exc)
                    return
                if result != Status.SUCCESS:
                    _log.error("Server rejected heartbeat with status %d", result)

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise ValueError("not connected to a server")
        return self._sock

    # Requests -------------------------------------------------------------

    def send_message(self, message: ClientMessage) -> bool:
        """Send *message* as the logged-in user; return whether it was accepted."""
        with self._lock:
            return message.send(self._sock, self.logged_in_user.id)

    def delete_message(self, message: ClientMessage) -> bool:
        """Delete *message* on the server and drop it from the cached inbox."""
        with self._lock:
            deleted = message.delete_from_server(self._sock, self.logged_in_user.id)
            if message in self.cached_inbox:
                self.cached_inbox.remove(message)
            return deleted

    def set_status(self, status: str) -> bool:
        """Change the status text of the logged-in user."""
        with self._lock:
            return self.logged_in_user.update_status(self._sock, status)

    def register_user(self, username: str) -> bool:
        """Register a new user called *username*."""
        with self._lock:
            sock = self._socket()
            sock.sendall(pack_u8(int(Opcode.REGISTER)) + username.encode("utf-8"))
            return recv_u8(sock) == Status.SUCCESS

    def register_group(self, name: str, usernames: list[str]) -> bool:
        """Register a group called *name* holding the users in *usernames*."""
        with self._lock:
            sock = self._socket()
            sock.sendall(pack_u8(int(Opcode.REGISTER_GROUP)) + pack_string(name))
            if recv_u8(sock) != Status.SUCCESS:
                return False
            members = list(usernames)
            sock.sendall(
                pack_u32(len(members))
                + b"".join(pack_string(member) for member in members)
            )
            return recv_u8(sock) == Status.SUCCESS

    def login(self, username: str) -> bool:
        """Log in as *username*; on success logged_in_user describes the session."""
        with self._lock:
            sock = self._socket()
            _log.info("Attempting login with username=%s", username)
            sock.sendall(pack_u8(int(Opcode.LOGIN)) + username.encode("utf-8"))
            user_id = recv_i32(sock)
            result = recv_u8(sock)
            if result != Status.SUCCESS:
                return False
            self.logged_in_user = ClientUser(
                username, status="Online", logged_in=True, id=user_id
            )
            return True

    def logout(self) -> bool:
        """Log out the logged-in user and clear the cached users and inbox."""
        with self._lock:
            sock = self._socket()
            _log.info("Attempting to logout")
            sock.sendall(
                pack_u8(int(Opcode.LOGOUT)) + pack_i32(self.logged_in_user.id)
            )
            if recv_u8(sock) != Status.SUCCESS:
                return False
            self.logged_in_user = ClientUser("")
            self.cached_users.clear()
            self.cached_inbox.clear()
            return True

    def refresh(self) -> int:
        """Fetch users, groups and messages; return how many new messages arrived.

        Returns 0 without contacting the server when nobody is logged in, and
        stops at the first request the server refuses.
        """
        with self._lock:
            if not self.logged_in_user.logged_in:
                return 0
            sock = self._socket()
            user_id = self.logged_in_user.id

            sock.sendall(pack_u8(int(Opcode.GET_USERS)) + pack_i32(user_id))
            if recv_u8(sock) != Status.SUCCESS:
                return 0
            count = recv_u32(sock)
            self.cached_users.clear()
            for _ in range(count):
                name = recv_string(sock)
                status = recv_string(sock)
                self.cached_users.append(ClientUser(name, status=status))
            recv_u8(sock)

            sock.sendall(pack_u8(int(Opcode.GET_GROUPS)) + pack_i32(user_id))
            if recv_u8(sock) != Status.SUCCESS:
                return 0
            count = recv_u32(sock)
            self.cached_groups.clear()
            for _ in range(count):
                group_name = recv_string(sock)
                member_count = recv_u32(sock)
                members = [recv_string(sock) for _ in range(member_count)]
                self.cached_groups.append(Group(group_name, members))
            recv_u8(sock)

            sock.sendall(pack_u8(int(Opcode.GET_MESSAGES)) + pack_i32(user_id))
            if recv_u8(sock) != Status.SUCCESS:
                return 0
            count = recv_u32(sock)
            received = [
                (recv_i32(sock), recv_string(sock), recv_string(sock))
                for _ in range(count)
            ]
            final = recv_u8(sock)
            if final != Status.SUCCESS:
                _log.error("Server ended message list with status %d", final)

            old_count = len(self.cached_inbox)
            known_ids = {message.id for message in self.cached_inbox}
            users_by_name = {user.name: user for user in self.cached_users}
            for message_id, sender_name, content in received:
                sender = users_by_name.get(sender_name)
                if sender is None:
                    raise LookupError(f"message from unknown user {sender_name!r}")
                if message_id in known_ids:
                    continue
                known_ids.add(message_id)
                self.cached_inbox.append(
                    ClientMessage(content, self.logged_in_user, sender, message_id)
                )
            return len(self.cached_inbox) - old_count