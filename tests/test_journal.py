import pytest

from ichigochat.journal import (
    DeleteMessageTransaction,
    Journal,
    JournalError,
    NewGroupTransaction,
    NewMessageTransaction,
    NewUserTransaction,
    Operation,
    UpdateIdTransaction,
)


@pytest.fixture
def journal_path(tmp_path):
    return tmp_path / "default.chatjournal"


def _all_kinds():
    return [
        NewUserTransaction("alice"),
        NewUserTransaction("bob"),
        UpdateIdTransaction(1),
        NewMessageTransaction("alice", "bob", 0, "hello there"),
        NewGroupTransaction("friends", ["alice", "bob"]),
        UpdateIdTransaction(2),
        NewMessageTransaction("bob", "friends", 1, "group hi"),
        DeleteMessageTransaction(1),
    ]


def test_missing_file_is_created_empty(journal_path):
    with Journal(journal_path) as journal:
        assert journal.size == 0
        assert journal.has_more_transactions() is False
    assert journal_path.exists()


def test_round_trip_all_kinds(journal_path):
    written = _all_kinds()
    with Journal(journal_path) as journal:
        for transaction in written:
            journal.commit(transaction)
    with Journal(journal_path) as journal:
        assert list(journal.transactions()) == written
        assert journal.valid


def test_size_matches_existing_file(journal_path):
    journal_path.write_bytes(b'\nNEW_USER "alice"')
    with Journal(journal_path) as journal:
        assert journal.size == len(b'\nNEW_USER "alice"')


def test_new_user_line_format(journal_path):
    with Journal(journal_path) as journal:
        journal.commit(NewUserTransaction("alice"))
    assert journal_path.read_bytes() == b'\nNEW_USER "alice"'


def test_group_line_has_count_and_trailing_space():
    line = NewGroupTransaction("g", ["a", "b"]).to_line()
    assert line == 'NEW_GROUP "g" 2 "a" "b" '


def test_message_line_format():
    line = NewMessageTransaction("a", "b", 0, "hi").to_line()
    assert line == 'NEW_MESSAGE "a" 0 "b" "hi"'


def test_operations():
    kinds = [transaction.operation() for transaction in _all_kinds()]
    assert kinds == [
        Operation.NEW_USER,
        Operation.NEW_USER,
        Operation.UPDATE_ID,
        Operation.NEW_MESSAGE,
        Operation.NEW_GROUP,
        Operation.UPDATE_ID,
        Operation.NEW_MESSAGE,
        Operation.DELETE_MESSAGE,
    ]


def test_group_user_count():
    group = NewGroupTransaction("g", ["x", "y", "z"])
    assert group.user_count == len(group.users)
    assert group.users == ("x", "y", "z")


def test_reads_without_trailing_newline(journal_path):
    journal_path.write_bytes(b"UPDATE_ID 7")
    with Journal(journal_path) as journal:
        assert journal.next_transaction() == UpdateIdTransaction(7)
        assert journal.has_more_transactions() is False


def test_extra_whitespace_is_tolerated(journal_path):
    journal_path.write_bytes(b'\n\n   NEW_USER    "bob"  \n\t\n')
    with Journal(journal_path) as journal:
        assert list(journal.transactions()) == [NewUserTransaction("bob")]


def test_unicode_round_trip(journal_path):
    with Journal(journal_path) as journal:
        journal.commit(NewUserTransaction("いちご"))
    with Journal(journal_path) as journal:
        assert journal.next_transaction() == NewUserTransaction("いちご")


def test_unknown_operation_invalidates(journal_path):
    journal_path.write_bytes(b'\nBOGUS "x"\nNEW_USER "alice"')
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()
        assert journal.valid is False
        assert journal.has_more_transactions() is False
        with pytest.raises(JournalError):
            journal.next_transaction()


def test_unterminated_string_invalidates(journal_path):
    journal_path.write_bytes(b'\nNEW_USER "alice')
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            list(journal.transactions())
        assert journal.valid is False


def test_missing_quote_invalidates(journal_path):
    journal_path.write_bytes(b"\nNEW_USER alice")
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()


def test_non_numeric_id_invalidates(journal_path):
    journal_path.write_bytes(b"\nDELETE_MESSAGE abc")
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()


def test_all_ones_id_is_invalid(journal_path):
    journal_path.write_bytes(b"\nUPDATE_ID -1")
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()


def test_group_with_too_few_members_invalidates(journal_path):
    journal_path.write_bytes(b'\nNEW_GROUP "g" 3 "a" "b" ')
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()


def test_commit_before_reading_everything_is_refused(journal_path):
    journal_path.write_bytes(b'\nNEW_USER "alice"')
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.commit(NewUserTransaction("bob"))
    assert journal_path.read_bytes() == b'\nNEW_USER "alice"'


def test_commit_after_reading_appends(journal_path):
    journal_path.write_bytes(b'\nNEW_USER "alice"')
    with Journal(journal_path) as journal:
        first = list(journal.transactions())
        journal.commit(NewUserTransaction("bob"))
    with Journal(journal_path) as journal:
        assert first + [NewUserTransaction("bob")] == list(journal.transactions())


def test_commit_on_invalid_journal_writes_nothing(journal_path):
    original = b"\nGARBAGE"
    journal_path.write_bytes(original)
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()
        journal.commit(NewUserTransaction("bob"))
    assert journal_path.read_bytes() == original


def test_overlong_line_is_truncated_and_unreadable(journal_path):
    with Journal(journal_path) as journal:
        journal.commit(NewUserTransaction("x" * 2000))
    data = journal_path.read_bytes()
    assert len(data) == 1 + 1023
    with Journal(journal_path) as journal:
        with pytest.raises(JournalError):
            journal.next_transaction()