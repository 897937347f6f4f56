# ichigochat

A small chat system over TCP: a server that keeps users, groups and
messages, and a client library that talks to it. The server records every
change in a plain-text journal and rebuilds its state from that journal
when it starts again. Only the standard library is used.

## Features

- Register users and log in by name; each login gets a fresh session id.
  A user can be logged in from one connection at a time.
- Per-user status text of 1 to 32 bytes (UTF-8); "Online" after login and
  "Offline" after logout.
- Direct messages to a user, or group messages delivered to every member,
  each member's copy with its own id. Content is limited to 256 bytes (UTF-8).
- Groups are created from existing users only; group names are unique.
- Only the recipient of a message can delete it.
- The client sends a heartbeat in the background (every 10 seconds by
  default); the server closes connections that have been silent for more
  than 20 seconds and logs their user out.
- All changes are appended to a journal file and replayed on start-up.

## Installation

```
pip install ichigochat
```

For running the tests:

```
pip install "ichigochat[test]"
pytest
```

## Running the server

```
ichigochat-server
```

By default the server listens on `127.0.0.1:8080` and keeps its journal in
`default.chatjournal` in the current directory, creating the file if it is
missing. Options:

```
ichigochat-server --host 0.0.0.0 --port 9000 --journal chat.journal
```

The server runs until interrupted with Ctrl+C.

To embed the server in another program, build a `ChatState` and hand it to
`ChatServer`:

```python
import threading

from ichigochat.journal import Journal
from ichigochat.server import ChatServer
from ichigochat.state import ChatState

with Journal("chat.journal") as journal:
    state = ChatState(journal)
    state.replay()
    server = ChatServer(state, "127.0.0.1", 0)   # port 0 picks a free port
    host, port = server.address()
    thread = threading.Thread(target=server.serve_forever)
    thread.start()
    ...
    server.shutdown()
    thread.join()
```

`ChatState` can also be used on its own, without a journal (`ChatState()`),
to exercise the server's rules without any sockets.

## Using the client

`ichigochat.connection.ServerConnection` holds one connection to the server,
runs the heartbeat in a background thread and caches what the server last
reported in `cached_users`, `cached_groups` and `cached_inbox`. The logged-in
user is `logged_in_user`. Used as a context manager it connects on entry and,
on exit, logs out if needed, says goodbye and closes the socket.

```python
from ichigochat.client_models import ClientMessage
from ichigochat.connection import ServerConnection

with ServerConnection("127.0.0.1", 8080, 10) as conn:
    conn.register_user("alice")
    conn.register_user("bob")
    conn.login("alice")

    conn.refresh()                      # fetch users, groups and inbox
    bob = next(u for u in conn.cached_users if u.name == "bob")
    conn.send_message(ClientMessage("hello", bob, conn.logged_in_user))

    conn.set_status("at lunch")
    conn.register_group("friends", ["alice", "bob"])
    conn.refresh()
    friends = conn.cached_groups[0]
    conn.send_message(ClientMessage("hi all", friends, conn.logged_in_user))

    new_count = conn.refresh()          # messages that arrived since last refresh
    for message in conn.cached_inbox:
        print(message.sender.name, message.content)
    if conn.cached_inbox:
        conn.delete_message(conn.cached_inbox[0])

    conn.logout()
```

Every request method returns `True` or `False` depending on whether the
server accepted it. `refresh()` returns 0 without contacting the server when
nobody is logged in. `cached_outbox` is a list left for the caller to fill;
`send_message` does not add to it.

## Building blocks

- `ichigochat.protocol` – `Opcode`, `Status`, `RecipientType`,
  `ConnectionDropped`, `clamp`, and the framing helpers `pack_u8`,
  `pack_u32`, `pack_i32`, `pack_string`, `recv_exact`, `recv_u8`,
  `recv_u32`, `recv_i32`, `recv_string`.
- `ichigochat.models` – `Recipient`, `User`, `ServerUser`, `Group` and
  `Message`.
- `ichigochat.files` – `open_file`, `file_exists` and `recurse_directory`.
- `ichigochat.journal` – `Journal`, `JournalError`, `Operation` and the
  transaction types.
- `ichigochat.state` – `ChatState`, the server's rules independent of
  sockets.
- `ichigochat.server` – `ChatServer`, the network loop around a `ChatState`,
  and `main`, the `ichigochat-server` command.
- `ichigochat.client_models` – `ClientUser` and `ClientMessage`.
- `ichigochat.connection` – `ServerConnection`.

## Wire format

Every request starts with a one-byte opcode:

| Opcode | Value |
|---|---|
| SEND_MESSAGE | 0 |
| DELETE_MESSAGE | 1 |
| GET_MESSAGES | 2 |
| GET_USERS | 3 |
| GET_GROUPS | 4 |
| SET_STATUS | 5 |
| LOGIN | 6 |
| LOGOUT | 7 |
| REGISTER | 8 |
| REGISTER_GROUP | 9 |
| GOODBYE | 10 |
| HEARTBEAT | 11 |

Replies carry a one-byte status: `0` success, `1` invalid request,
`2` unauthorized. Integers are 32-bit little-endian; strings are sent as a
32-bit length followed by that many UTF-8 bytes. The username sent with
REGISTER and LOGIN, and the new text sent with SET_STATUS, go as raw bytes
without a length. Recipient type `0` is a user, `1` is a group.

## Journal format

One transaction per line:

```
NEW_USER "alice"
UPDATE_ID 1
NEW_MESSAGE "alice" 0 "bob" "hello"
DELETE_MESSAGE 1
NEW_GROUP "friends" 2 "alice" "bob"
```

Strings are not escaped, so they must not contain a double quote. If a line
cannot be parsed, replay stops and the server carries on without reading or
writing the journal.

## What it does not do

- There is no interactive or graphical chat client; the client side is a
  library to build one on.
- Messages cannot be exported (to CSV or otherwise).
- There are no passwords: anyone who knows a username can log in as that
  user while it is not logged in elsewhere.
- The server answers one request at a time in a single loop.