"""TCP chat server, client library and replayable journal for users, groups and messages."""

__version__ = "1.0.0"