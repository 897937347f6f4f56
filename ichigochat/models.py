"""Users, groups and messages shared by the client and the server."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class Recipient(ABC):
    """Someone or something that can accept messages."""

    @abstractmethod
    def usernames(self) -> list[str]:
        """Return the names of every user the recipient stands for."""


@dataclass(eq=False)
class User:
    """A single chat user."""

    name: str = ""
    status: str = "Offline"
    logged_in: bool = False
    last_heartbeat_time: int = 0
    id: int = -1


@dataclass(eq=False)
class ServerUser(User, Recipient):
    """A user as the server sees it, tied to the connection it logged in on."""

    connection: object | None = None

    def usernames(self) -> list[str]:
        return [self.name]


@dataclass
class Group(Recipient):
    """A named group of users."""

    name: str = ""
    users: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.users = list(self.users)

    def usernames(self) -> list[str]:
        return list(self.users)


@dataclass
class Message:
    """A single message from a sender to a recipient."""

    content: str = ""
    recipient: Recipient | None = None
    sender: User | None = None
    id: int = -1