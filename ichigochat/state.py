"""In-memory server state: users, groups and messages, kept in step with the journal.

Every change is committed to the journal (when there is one) before it is
applied, so replaying the journal from the start rebuilds the same state.
Request handlers answer with a protocol Status, which the server sends back
to the client unchanged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from .journal import (
    DeleteMessageTransaction,
    Journal,
    JournalError,
    NewGroupTransaction,
    NewMessageTransaction,
    NewUserTransaction,
    Operation,
    Transaction,
    UpdateIdTransaction,
)
from .models import Group, Message, ServerUser
from .protocol import MAX_MESSAGE_LENGTH, MAX_STATUS_LENGTH, RecipientType, Status

_log = logging.getLogger(__name__)


class ChatState:
    """Users, groups and messages held by the server."""

    def __init__(self, journal: Journal | None = None) -> None:
        self.journal = journal
        self.users: list[ServerUser] = []
        self.groups: list[Group] = []
        self.messages: list[Message] = []
        self.next_id = 0

    # Lookups --------------------------------------------------------------

    def find_user(self, name: str) -> ServerUser | None:
        """Return the user called *name*, or None."""
        return next((user for user in self.users if user.name == name), None)

    def find_user_by_id(self, user_id: int) -> ServerUser | None:
        """Return the user holding login id *user_id*, or None."""
        return next((user for user in self.users if user.id == user_id), None)

    def find_user_by_connection(self, connection: object) -> ServerUser | None:
        """Return the user that logged in over *connection*, or None."""
        if connection is None:
            return None
        return next(
            (user for user in self.users if user.connection == connection), None
        )

    def find_group(self, name: str) -> Group | None:
        """Return the group called *name*, or None."""
        return next((group for group in self.groups if group.name == name), None)

    def find_message(self, message_id: int) -> Message | None:
        """Return the message with id *message_id*, or None."""
        return next(
            (message for message in self.messages if message.id == message_id), None
        )

    def messages_for(self, username: str) -> list[Message]:
        """Return every message addressed to *username*, oldest first."""
        return [
            message
            for message in self.messages
            if message.recipient is not None and username in message.recipient.usernames()
        ]

    # Journal --------------------------------------------------------------

    def _commit(self, transaction: Transaction) -> None:
        if self.journal is not None:
            self.journal.commit(transaction)

    def next_message_id(self) -> int:
        """Hand out the next id and record it in the journal."""
        self.next_id += 1
        self._commit(UpdateIdTransaction(self.next_id))
        return self.next_id

    def _remove_message(self, target: Message) -> None:
        for index, message in enumerate(self.messages):
            if message is target:
                del self.messages[index]
                return

    def _apply_message(self, transaction: NewMessageTransaction) -> None:
        sender = self.find_user(transaction.sender)
        if sender is None:
            raise JournalError(f"unknown sender {transaction.sender!r}")

        if transaction.recipient_type == RecipientType.USER:
            recipient = self.find_user(transaction.recipient)
            if recipient is None:
                raise JournalError(f"unknown recipient {transaction.recipient!r}")
            # The preceding UPDATE_ID already set the id of this message.
            self.messages.append(
                Message(transaction.content, recipient, sender, self.next_id)
            )
        elif transaction.recipient_type == RecipientType.GROUP:
            group = self.find_group(transaction.recipient)
            if group is None:
                raise JournalError(f"unknown group {transaction.recipient!r}")
            for username in group.usernames():
                member = self.find_user(username)
                if member is None:
                    raise JournalError(f"unknown group member {username!r}")
                self.messages.append(
                    Message(transaction.content, member, sender, self.next_id)
                )
                self.next_id += 1
        else:
            _log.error("Invalid recipient type when reading new message from journal")

    def apply(self, transaction: Transaction) -> None:
        """Apply one journal transaction to the state without recording it.

        Raises JournalError if the transaction refers to something unknown.
        """
        operation = transaction.operation()
        if operation is Operation.NEW_USER:
            self.users.append(ServerUser(transaction.username))
        elif operation is Operation.NEW_MESSAGE:
            self._apply_message(transaction)
        elif operation is Operation.DELETE_MESSAGE:
            message = self.find_message(transaction.id)
            if message is None:
                raise JournalError(f"cannot delete unknown message {transaction.id}")
            self._remove_message(message)
        elif operation is Operation.UPDATE_ID:
            self.next_id = transaction.id
        elif operation is Operation.NEW_GROUP:
            self.groups.append(Group(transaction.name, list(transaction.users)))

    def replay(self) -> int:
        """Apply every unread journal transaction and return how many were applied.

        Reading stops at the first transaction that cannot be parsed; the
        journal is then invalid and the server carries on without it.
        """
        if self.journal is None:
            return 0
        applied = 0
        while self.journal.has_more_transactions():
            try:
                transaction = self.journal.next_transaction()
            except JournalError as exc:
                _log.error(
                    "Failed to parse transaction (%s). "
                    "The server will now operate without a journal!",
                    exc,
                )
                break
            self.apply(transaction)
            applied += 1
        return applied

    # Requests -------------------------------------------------------------

    def authenticate(self, user_id: int, connection: object) -> ServerUser | None:
        """Return the logged-in user with *user_id* on *connection*, or None."""
        user = self.find_user_by_id(user_id)
        if user is None or not user.logged_in or user.connection != connection:
            return None
        return user

    def register_user(self, name: str) -> Status:
        """Register a new user called *name*."""
        if self.find_user(name) is not None:
            return Status.INVALID_REQUEST
        self._commit(NewUserTransaction(name))
        self.users.append(ServerUser(name))
        _log.info("Registered user: %s", name)
        return Status.SUCCESS

    def register_group(self, name: str, usernames: Iterable[str]) -> Status:
        """Register a group called *name* made of the users in *usernames*.

        Fails if the group already exists or any of the users is unknown.
        """
        if self.find_group(name) is not None:
            return Status.INVALID_REQUEST
        members: list[str] = []
        failed = False
        for username in usernames:
            if self.find_user(username) is None:
                failed = True
            else:
                members.append(username)
        if failed:
            return Status.INVALID_REQUEST
        self._commit(NewGroupTransaction(name, tuple(members)))
        self.groups.append(Group(name, members))
        _log.info("New group: %s", name)
        return Status.SUCCESS

    def login(
        self, name: str, connection: object, now: int | None = None
    ) -> tuple[int, Status]:
        """Log *name* in over *connection*.

        Returns the new login id and SUCCESS, or -1 and INVALID_REQUEST if the
        user is unknown or already logged in.
        """
        user = self.find_user(name)
        if user is None or user.logged_in:
            _log.info("User %s already logged in or does not exist.", name)
            return -1, Status.INVALID_REQUEST
        user_id = self.next_message_id()
        user.status = "Online"
        user.logged_in = True
        user.last_heartbeat_time = int(time.time()) if now is None else now
        user.id = user_id
        user.connection = connection
        _log.info("User logged in: %s", name)
        return user_id, Status.SUCCESS

    def logout(self, user_id: int, connection: object) -> Status:
        """Log out the user with *user_id*, which must be logged in on *connection*."""
        user = self.authenticate(user_id, connection)
        if user is None:
            _log.info("User id=%d is not logged in.", user_id)
            return Status.INVALID_REQUEST
        user.status = "Offline"
        user.logged_in = False
        user.last_heartbeat_time = 0
        user.id = -1
        _log.info("User logged out: %s", user.name)
        return Status.SUCCESS

    def set_status(self, user_id: int, connection: object, status: str) -> Status:
        """Change the status text of a logged-in user."""
        user = self.authenticate(user_id, connection)
        if user is None:
            return Status.INVALID_REQUEST
        length = len(status.encode("utf-8"))
        if length == 0 or length > MAX_STATUS_LENGTH:
            return Status.INVALID_REQUEST
        user.status = status
        _log.info('User "%s" updated status to "%s"', user.name, status)
        return Status.SUCCESS

    def send_message(
        self,
        user_id: int,
        connection: object,
        recipient_type: int,
        recipient_name: str,
        content: str,
    ) -> Status:
        """Send *content* from a logged-in user to a user or a group.

        A group message becomes one message, each with its own id, per member.
        """
        sender = self.authenticate(user_id, connection)
        if sender is None:
            return Status.INVALID_REQUEST

        if recipient_type == RecipientType.USER:
            recipient = self.find_user(recipient_name)
        else:
            recipient = self.find_group(recipient_name)
        if recipient is None or len(content.encode("utf-8")) > MAX_MESSAGE_LENGTH:
            return Status.INVALID_REQUEST

        message_id = self.next_message_id()
        transaction = NewMessageTransaction(
            sender.name, recipient_name, int(recipient_type), content
        )
        if recipient_type == RecipientType.USER:
            self._commit(transaction)
            self.messages.append(Message(content, recipient, sender, message_id))
        else:
            self._commit(transaction)
            for username in recipient.usernames():
                member = self.find_user(username)
                if member is None:
                    raise LookupError(f"group member {username!r} does not exist")
                self.messages.append(Message(content, member, sender, message_id))
                message_id = self.next_message_id()
        return Status.SUCCESS

    def delete_message(
        self, user_id: int, connection: object, message_id: int
    ) -> Status:
        """Delete a message; only its recipient may do so."""
        user = self.authenticate(user_id, connection)
        if user is None:
            return Status.INVALID_REQUEST
        message = self.find_message(message_id)
        if message is None:
            return Status.INVALID_REQUEST
        if message.recipient is None or message.recipient.usernames()[0] != user.name:
            return Status.UNAUTHORIZED
        self._commit(DeleteMessageTransaction(message_id))
        self._remove_message(message)
        return Status.SUCCESS

    def drop_connection(self, connection: object) -> ServerUser | None:
        """Log out whoever was logged in over a dead *connection*.

        Returns the affected user, or None if nobody used that connection.
        """
        user = self.find_user_by_connection(connection)
        if user is not None:
            user.logged_in = False
            user.status = "Offline"
            user.connection = None
        return user