import pytest

from ichigochat.files import file_exists, open_file, recurse_directory


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "a.csv").write_text("x")
    (tmp_path / "b.txt").write_text("x")
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "c.csv").write_text("x")
    (sub / "d.log").write_text("x")
    return tmp_path


def test_open_file_binary_round_trip(tmp_path):
    path = tmp_path / "data.bin"
    with open_file(path, "wb") as handle:
        handle.write(b"\x00\x01journal")
    with open_file(path, "rb") as handle:
        assert handle.read() == b"\x00\x01journal"


def test_open_file_text_round_trip(tmp_path):
    path = tmp_path / "notes.txt"
    with open_file(path, "w") as handle:
        handle.write("いちご")
    with open_file(path, "r") as handle:
        assert handle.read() == "いちご"


def test_open_missing_file_for_reading(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_file(tmp_path / "missing", "r+b")


def test_file_exists(tree):
    assert file_exists(tree / "a.csv") is True
    assert file_exists(tree / "sub") is False
    assert file_exists(tree / "nope.csv") is False


def test_recurse_filters_by_extension(tree):
    root = str(tree)
    assert recurse_directory(root, ["csv"]) == [f"{root}/a.csv", f"{root}/sub/c.csv"]


def test_recurse_multiple_extensions(tree):
    root = str(tree)
    found = recurse_directory(root, ["txt", "log"])
    assert sorted(found) == sorted([f"{root}/b.txt", f"{root}/sub/d.log"])


def test_recurse_no_match(tree):
    assert recurse_directory(str(tree), ["png"]) == []


def test_recurse_uses_last_period(tmp_path):
    (tmp_path / "archive.csv.gz").write_text("x")
    (tmp_path / "report.gz.csv").write_text("x")
    root = str(tmp_path)
    assert recurse_directory(root, ["csv"]) == [f"{root}/report.gz.csv"]


def test_recurse_name_without_period_skips_first_character(tmp_path):
    (tmp_path / "xcsv").write_text("x")
    (tmp_path / ".csv").write_text("x")
    root = str(tmp_path)
    assert sorted(recurse_directory(root, ["csv"])) == sorted([f"{root}/.csv", f"{root}/xcsv"])


def test_recurse_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        recurse_directory(tmp_path / "absent", ["csv"])