import pytest

from ichigochat.models import Group, Message, Recipient, ServerUser, User


def test_user_defaults():
    user = User("alice")
    assert user.name == "alice"
    assert user.status == "Offline"
    assert user.logged_in is False
    assert user.last_heartbeat_time == 0
    assert user.id == -1


def test_user_is_mutable():
    user = User("alice")
    user.status = "Online"
    user.logged_in = True
    user.id = 7
    assert (user.status, user.logged_in, user.id) == ("Online", True, 7)


def test_recipient_is_abstract():
    with pytest.raises(TypeError):
        Recipient()


def test_server_user_usernames_is_own_name():
    user = ServerUser("bob")
    assert user.usernames() == ["bob"]
    assert isinstance(user, Recipient)


def test_server_user_connection_default():
    user = ServerUser("bob")
    assert user.connection is None
    assert user.status == "Offline"


def test_server_users_compare_by_identity():
    first = ServerUser("bob")
    second = ServerUser("bob")
    assert first != second
    assert first == first


def test_group_usernames_keep_order():
    group = Group("team", ["carol", "alice", "bob"])
    assert group.name == "team"
    assert group.usernames() == ["carol", "alice", "bob"]


def test_group_usernames_returns_copy():
    group = Group("team", ["alice"])
    names = group.usernames()
    names.append("mallory")
    assert group.usernames() == ["alice"]


def test_group_copies_input_list():
    members = ["alice", "bob"]
    group = Group("team", members)
    members.clear()
    assert group.usernames() == ["alice", "bob"]


def test_group_default_is_empty():
    group = Group()
    assert group.name == ""
    assert group.usernames() == []


def test_message_defaults_and_fields():
    sender = ServerUser("alice")
    recipient = ServerUser("bob")
    message = Message("hello", recipient, sender)
    assert message.id == -1
    assert message.sender is sender
    assert message.recipient.usernames() == ["bob"]
    assert message.content == "hello"


def test_message_to_group():
    group = Group("team", ["alice", "bob"])
    message = Message("hi all", group, ServerUser("carol"), 5)
    assert message.id == 5
    assert message.recipient.usernames() == ["alice", "bob"]