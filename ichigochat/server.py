"""TCP chat server: accepts clients and answers their requests against a ChatState.

Every request starts with a one-byte opcode. Most values follow the wire
conventions in ``protocol``. Usernames sent for REGISTER and LOGIN, and the
status text sent for SET_STATUS, arrive as raw bytes without a length prefix.
"""

from __future__ import annotations

import argparse
import logging
import selectors
import socket
import threading
import time
from collections.abc import Callable

from .journal import Journal
from .protocol import (
    ConnectionDropped,
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
from .state import ChatState

_log = logging.getLogger(__name__)

_LISTENER = "listener"
_WAKE = "wake"
_RAW_LIMIT = 4095


def _status(status: int) -> bytes:
    return pack_u8(int(status))


class ChatServer:
    """Serves chat clients over TCP, one request at a time."""

    HEARTBEAT_TIMEOUT = 20
    RECEIVE_TIMEOUT = 0.2
    POLL_INTERVAL = 0.5

    def __init__(
        self, state: ChatState, host: str = "127.0.0.1", port: int = 8080
    ) -> None:
        self.state = state
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._listener.bind((host, port))
            self._listener.listen(10)
        except OSError:
            self._listener.close()
            raise
        self._listener.setblocking(False)
        self._address = self._listener.getsockname()[:2]

        self._wake_reader, self._wake_writer = socket.socketpair()
        self._wake_reader.setblocking(False)

        self._selector = selectors.DefaultSelector()
        self._selector.register(self._listener, selectors.EVENT_READ, _LISTENER)
        self._selector.register(self._wake_reader, selectors.EVENT_READ, _WAKE)

        self._heartbeats: dict[socket.socket, float] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._finished = threading.Event()
        self._serving_thread: threading.Thread | None = None
        self._closed = False

        self._handlers: dict[Opcode, Callable[[socket.socket], None]] = {
            Opcode.SEND_MESSAGE: self._send_message,
            Opcode.DELETE_MESSAGE: self._delete_message,
            Opcode.GET_MESSAGES: self._get_messages,
            Opcode.GET_USERS: self._get_users,
            Opcode.GET_GROUPS: self._get_groups,
            Opcode.SET_STATUS: self._set_status,
            Opcode.LOGIN: self._login,
            Opcode.LOGOUT: self._logout,
            Opcode.REGISTER: self._register_user,
            Opcode.REGISTER_GROUP: self._register_group,
            Opcode.GOODBYE: self._goodbye,
            Opcode.HEARTBEAT: self._heartbeat,
        }

    def address(self) -> tuple[str, int]:
        """Return the (host, port) the server listens on."""
        return self._address

    # Event loop -----------------------------------------------------------

    def serve_forever(self) -> None:
        """Accept connections and answer requests until shutdown() is called."""
        self._serving_thread = threading.current_thread()
        self._finished.clear()
        try:
            while not self._stop.is_set():
                events = self._selector.select(timeout=self.POLL_INTERVAL)
                with self._lock:
                    for key, _ in events:
                        if key.data == _LISTENER:
                            self._accept()
                        elif key.data == _WAKE:
                            self._drain_wake()
                        elif key.fileobj in self._heartbeats:
                            self._handle(key.fileobj)
                    self.prune_dead_connections()
        finally:
            self._close()
            self._serving_thread = None
            self._finished.set()

    def shutdown(self) -> None:
        """Stop serving and close every socket."""
        self._stop.set()
        try:
            self._wake_writer.send(b"\0")
        except OSError:
            pass
        serving = self._serving_thread
        if serving is None:
            self._close()
        elif serving is not threading.current_thread():
            self._finished.wait()

    def prune_dead_connections(self, now: float | None = None) -> int:
        """Close connections silent for longer than HEARTBEAT_TIMEOUT seconds.

        Whoever was logged in over such a connection is logged out. Returns
        how many connections were closed.
        """
        now = time.time() if now is None else now
        with self._lock:
            dead = [
                connection
                for connection, last in self._heartbeats.items()
                if now - last > self.HEARTBEAT_TIMEOUT
            ]
            for connection in dead:
                _log.info(
                    "Socket did not say goodbye properly, but is assumed dead "
                    "since its last heartbeat was a long time ago"
                )
                self.state.drop_connection(connection)
                self._goodbye(connection)
        return len(dead)

    def _close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for connection in list(self._heartbeats):
                connection.close()
            self._heartbeats.clear()
            self._selector.close()
            self._listener.close()
            self._wake_reader.close()
            self._wake_writer.close()

    def _drain_wake(self) -> None:
        try:
            while self._wake_reader.recv(64):
                pass
        except (BlockingIOError, OSError):
            pass

    def _accept(self) -> None:
        try:
            connection, _ = self._listener.accept()
        except (BlockingIOError, InterruptedError):
            return
        connection.settimeout(self.RECEIVE_TIMEOUT)
        self._selector.register(connection, selectors.EVENT_READ, None)
        self._heartbeats[connection] = time.time()
        _log.info("Accepted new connection")

    def _handle(self, connection: socket.socket) -> None:
        try:
            first = connection.recv(1)
        except TimeoutError:
            _log.error("Client dropped connection before sending opcode")
            return
        except OSError:
            first = b""
        if not first:
            self.state.drop_connection(connection)
            self._goodbye(connection)
            return

        try:
            opcode = Opcode(first[0])
        except ValueError:
            _log.error("Unknown opcode %d", first[0])
            return
        _log.info("opcode=%s", opcode.name)

        try:
            self._handlers[opcode](connection)
        except (TimeoutError, ConnectionDropped):
            _log.error("Client dropped connection")
        except OSError as exc:
            _log.error("Connection failed: %s", exc)
            self.state.drop_connection(connection)
            self._goodbye(connection)

    # Conversations --------------------------------------------------------

    @staticmethod
    def _recv_raw(connection: socket.socket) -> str:
        data = connection.recv(_RAW_LIMIT)
        if not data:
            raise ConnectionDropped("connection closed before data arrived")
        return data.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    def _get_users(self, connection: socket.socket) -> None:
        user = self.state.find_user_by_id(recv_i32(connection))
        if user is None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        if not user.logged_in:
            connection.sendall(_status(Status.UNAUTHORIZED))
            return
        user.last_heartbeat_time = int(time.time())

        parts = [_status(Status.SUCCESS), pack_u32(len(self.state.users))]
        for listed in self.state.users:
            parts.append(pack_string(listed.name))
            parts.append(pack_string(listed.status))
        parts.append(_status(Status.SUCCESS))
        connection.sendall(b"".join(parts))

    def _get_groups(self, connection: socket.socket) -> None:
        user = self.state.find_user_by_id(recv_i32(connection))
        if user is None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        if not user.logged_in:
            connection.sendall(_status(Status.UNAUTHORIZED))
            return

        parts = [_status(Status.SUCCESS), pack_u32(len(self.state.groups))]
        for group in self.state.groups:
            members = group.usernames()
            parts.append(pack_string(group.name))
            parts.append(pack_u32(len(members)))
            parts.extend(pack_string(member) for member in members)
        parts.append(_status(Status.SUCCESS))
        connection.sendall(b"".join(parts))

    def _register_user(self, connection: socket.socket) -> None:
        name = self._recv_raw(connection)
        connection.sendall(_status(self.state.register_user(name)))

    def _register_group(self, connection: socket.socket) -> None:
        name = recv_string(connection)
        if self.state.find_group(name) is not None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        connection.sendall(_status(Status.SUCCESS))

        count = recv_u32(connection)
        usernames = [recv_string(connection) for _ in range(count)]
        connection.sendall(_status(self.state.register_group(name, usernames)))

    def _login(self, connection: socket.socket) -> None:
        name = self._recv_raw(connection)
        user_id, status = self.state.login(name, connection, int(time.time()))
        connection.sendall(pack_i32(user_id) + _status(status))

    def _logout(self, connection: socket.socket) -> None:
        user_id = recv_i32(connection)
        connection.sendall(_status(self.state.logout(user_id, connection)))

    def _goodbye(self, connection: socket.socket) -> None:
        _log.info("Farewell socket %d", connection.fileno())
        self._heartbeats.pop(connection, None)
        try:
            self._selector.unregister(connection)
        except (KeyError, ValueError):
            pass
        connection.close()

    def _heartbeat(self, connection: socket.socket) -> None:
        if connection not in self._heartbeats:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        self._heartbeats[connection] = time.time()
        connection.sendall(_status(Status.SUCCESS))

    def _set_status(self, connection: socket.socket) -> None:
        user_id = recv_i32(connection)
        if self.state.authenticate(user_id, connection) is None:
            _log.info(
                "User id=%d is not logged in, was not found, or may not update status",
                user_id,
            )
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        connection.sendall(_status(Status.SUCCESS))

        text = self._recv_raw(connection)
        connection.sendall(_status(self.state.set_status(user_id, connection, text)))

    def _send_message(self, connection: socket.socket) -> None:
        user_id = recv_i32(connection)
        if self.state.authenticate(user_id, connection) is None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        connection.sendall(_status(Status.SUCCESS))

        recipient_type = recv_u8(connection)
        recipient_name = recv_string(connection)
        content = recv_string(connection)
        status = self.state.send_message(
            user_id, connection, recipient_type, recipient_name, content
        )
        connection.sendall(_status(status))

    def _delete_message(self, connection: socket.socket) -> None:
        user_id = recv_i32(connection)
        if self.state.authenticate(user_id, connection) is None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return
        connection.sendall(_status(Status.SUCCESS))

        message_id = recv_i32(connection)
        status = self.state.delete_message(user_id, connection, message_id)
        connection.sendall(_status(status))

    def _get_messages(self, connection: socket.socket) -> None:
        user = self.state.authenticate(recv_i32(connection), connection)
        if user is None:
            connection.sendall(_status(Status.INVALID_REQUEST))
            return

        messages = self.state.messages_for(user.name)
        parts = [_status(Status.SUCCESS), pack_u32(len(messages))]
        for message in messages:
            sender = message.sender.name if message.sender is not None else ""
            parts.append(pack_i32(message.id))
            parts.append(pack_string(sender))
            parts.append(pack_string(message.content))
        parts.append(_status(Status.SUCCESS))
        connection.sendall(b"".join(parts))


def main(argv: list[str] | None = None) -> int:
    """Run the chat server until interrupted."""
    parser = argparse.ArgumentParser(prog="ichigochat-server", description=__doc__)
    parser.add_argument("--host", default="127.0.0.1", help="address to listen on")
    parser.add_argument("--port", type=int, default=8080, help="port to listen on")
    parser.add_argument(
        "--journal", default="default.chatjournal", help="path of the journal file"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="(%(levelname)s) %(name)s: %(message)s")

    with Journal(args.journal) as journal:
        state = ChatState(journal)
        state.replay()
        _log.info("Running")
        server = ChatServer(state, args.host, args.port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            server.shutdown()
    return 0