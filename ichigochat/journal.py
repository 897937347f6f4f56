"""Append-only journal of server transactions.

Each transaction sits on its own line as an operation word followed by its
arguments. Strings are wrapped in double quotes and are not escaped, and
numbers are written in base 10:

    NEW_USER "name"
    NEW_MESSAGE "sender" recipient_type "recipient" "content"
    DELETE_MESSAGE id
    UPDATE_ID id
    NEW_GROUP "name" member_count "user" "user" ...

Replaying the journal from the start rebuilds the server's users, groups and
messages. Once a line cannot be parsed the journal is marked invalid. After
that no transactions are read back and no new ones are written, so the server
carries on without a journal.
"""

from __future__ import annotations

import enum
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import IO

from .files import file_exists, open_file

_log = logging.getLogger(__name__)

# Longest line the writer produces and longest field the reader accepts.
_LINE_LIMIT = 1023
_INVALID_U32 = 0xFFFFFFFF
_NUMBER = re.compile(rb"[+-]?[0-9]+")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class Operation(enum.Enum):
    """The kinds of transaction the journal records."""

    NEW_USER = "NEW_USER"
    NEW_MESSAGE = "NEW_MESSAGE"
    DELETE_MESSAGE = "DELETE_MESSAGE"
    UPDATE_ID = "UPDATE_ID"
    NEW_GROUP = "NEW_GROUP"


class JournalError(Exception):
    """The journal is malformed or was used out of order."""


def _quote(text: str) -> str:
    return f'"{text}"'


class Transaction(ABC):
    """A single change to the server state."""

    @abstractmethod
    def operation(self) -> Operation:
        """Return the kind of change this transaction records."""

    @abstractmethod
    def to_line(self) -> str:
        """Return the transaction as one journal line, without the newline."""


@dataclass(frozen=True)
class NewUserTransaction(Transaction):
    """A new user was registered."""

    username: str

    def operation(self) -> Operation:
        return Operation.NEW_USER

    def to_line(self) -> str:
        return f"NEW_USER {_quote(self.username)}"


@dataclass(frozen=True)
class NewMessageTransaction(Transaction):
    """A message was sent to a user or a group."""

    sender: str
    recipient: str
    recipient_type: int
    content: str

    def operation(self) -> Operation:
        return Operation.NEW_MESSAGE

    def to_line(self) -> str:
        return (
            f"NEW_MESSAGE {_quote(self.sender)} {self.recipient_type & _INVALID_U32} "
            f"{_quote(self.recipient)} {_quote(self.content)}"
        )


@dataclass(frozen=True)
class NewGroupTransaction(Transaction):
    """A new group was registered with the given members."""

    name: str
    users: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "users", tuple(self.users))

    @property
    def user_count(self) -> int:
        return len(self.users)

    def operation(self) -> Operation:
        return Operation.NEW_GROUP

    def to_line(self) -> str:
        members = "".join(f"{_quote(user)} " for user in self.users)
        return f"NEW_GROUP {_quote(self.name)} {self.user_count} {members}"


@dataclass(frozen=True)
class DeleteMessageTransaction(Transaction):
    """A message was deleted."""

    id: int

    def operation(self) -> Operation:
        return Operation.DELETE_MESSAGE

    def to_line(self) -> str:
        return f"DELETE_MESSAGE {self.id & _INVALID_U32}"


@dataclass(frozen=True)
class UpdateIdTransaction(Transaction):
    """The most recently handed out id changed."""

    id: int

    def operation(self) -> Operation:
        return Operation.UPDATE_ID

    def to_line(self) -> str:
        return f"UPDATE_ID {self.id & _INVALID_U32}"


class Journal:
    """A journal file, opened for reading back and appending transactions."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)
        self._file: IO[bytes] = open_file(
            self.path, "r+b" if file_exists(self.path) else "w+b"
        )
        self._file.seek(0, os.SEEK_END)
        self.size = self._file.tell()
        self._file.seek(0, os.SEEK_SET)
        self._invalid = False
        _log.info("Journal file loaded: size is %d", self.size)

    @property
    def valid(self) -> bool:
        """Whether the journal can still be read from and written to."""
        return not self._invalid

    def close(self) -> None:
        """Close the journal file."""
        self._file.close()

    def __enter__(self) -> Journal:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def has_more_transactions(self) -> bool:
        """Return whether unread transactions remain in the file."""
        if self._invalid:
            _log.error("Invalid journal: the server is operating without a journal")
            return False
        position = self._file.tell()
        while True:
            byte = self._file.read(1)
            if not byte:
                return False
            if not byte.isspace():
                break
        self._file.seek(position, os.SEEK_SET)
        return True

    def next_transaction(self) -> Transaction:
        """Read and return the next transaction.

        Raises JournalError, and marks the journal invalid, if it cannot be parsed.
        """
        if self._invalid:
            raise JournalError("the journal is invalid and cannot be read")
        try:
            return self._parse_transaction()
        except JournalError:
            self._invalid = True
            raise

    def transactions(self) -> Iterator[Transaction]:
        """Yield every unread transaction in order."""
        while self.has_more_transactions():
            yield self.next_transaction()

    def commit(self, transaction: Transaction) -> None:
        """Append *transaction* to the file and flush it.

        Only allowed once every earlier transaction has been read. On an
        invalid journal nothing is written.
        """
        if self._invalid:
            _log.error("Invalid journal: the server is operating without a journal")
            return
        if self.has_more_transactions():
            raise JournalError("cannot commit before all transactions have been read")
        line = transaction.to_line().encode("utf-8")[:_LINE_LIMIT]
        self._file.seek(0, os.SEEK_END)
        self._file.write(b"\n" + line)
        self._file.flush()

    # Parsing helpers ------------------------------------------------------

    def _next_non_whitespace(self) -> bytes:
        while True:
            byte = self._file.read(1)
            if not byte or not byte.isspace():
                return byte

    def _read_word(self) -> bytes:
        first = self._next_non_whitespace()
        if not first:
            raise JournalError("unexpected end of journal")
        word = bytearray(first)
        while len(word) < _LINE_LIMIT:
            byte = self._file.read(1)
            if not byte or byte.isspace():
                return bytes(word)
            word += byte
        raise JournalError("field too long")

    def _read_u32(self) -> int:
        word = self._read_word()
        match = _NUMBER.match(word)
        if match is None:
            raise JournalError(f"invalid number {word!r}")
        value = max(_INT32_MIN, min(_INT32_MAX, int(match.group())))
        value &= _INVALID_U32
        if value == _INVALID_U32:
            raise JournalError("invalid number")
        return value

    def _read_quoted_string(self) -> str:
        if self._next_non_whitespace() != b'"':
            raise JournalError('expected " to begin string')
        text = bytearray()
        while len(text) < _LINE_LIMIT:
            byte = self._file.read(1)
            if not byte:
                raise JournalError("unterminated string")
            if byte == b'"':
                return text.decode("utf-8", errors="replace")
            text += byte
        raise JournalError("string too long")

    def _parse_transaction(self) -> Transaction:
        word = self._read_word()
        try:
            operation = Operation(word.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            raise JournalError(f"unknown operation {word!r}") from None

        if operation is Operation.NEW_USER:
            return NewUserTransaction(self._read_quoted_string())
        if operation is Operation.UPDATE_ID:
            return UpdateIdTransaction(self._read_u32())
        if operation is Operation.NEW_MESSAGE:
            sender = self._read_quoted_string()
            recipient_type = self._read_u32()
            recipient = self._read_quoted_string()
            content = self._read_quoted_string()
            return NewMessageTransaction(sender, recipient, recipient_type, content)
        if operation is Operation.DELETE_MESSAGE:
            return DeleteMessageTransaction(self._read_u32())
        name = self._read_quoted_string()
        count = self._read_u32()
        users = tuple(self._read_quoted_string() for _ in range(count))
        return NewGroupTransaction(name, users)