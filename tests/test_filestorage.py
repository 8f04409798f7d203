import os

import pytest

from drizzle.filestorage import FileStorage


def test_open_creates_file_of_given_size(tmp_path):
    s = FileStorage(str(tmp_path))
    f, exists = s.open("a.bin", 10)
    with f:
        assert exists is False
    assert os.path.getsize(tmp_path / "a.bin") == 10


def test_reopen_reports_existing_and_resizes(tmp_path):
    s = FileStorage(str(tmp_path))
    f, _ = s.open("a.bin", 10)
    f.close()
    f, exists = s.open("a.bin", 4)
    f.close()
    assert exists is True
    assert os.path.getsize(tmp_path / "a.bin") == 4


def test_write_and_read_round_trip(tmp_path):
    s = FileStorage(str(tmp_path))
    f, _ = s.open("data", 16)
    with f:
        assert f.write_at(b"hello", 3) == len(b"hello")
        assert f.read_at(5, 3) == b"hello"
        assert f.read_at(3, 0) == bytes(3)
    assert (tmp_path / "data").read_bytes()[3:8] == b"hello"


def test_read_past_end_raises(tmp_path):
    s = FileStorage(str(tmp_path))
    f, _ = s.open("short", 4)
    with f:
        with pytest.raises(EOFError):
            f.read_at(8, 0)


def test_nested_directories_are_created(tmp_path):
    s = FileStorage(str(tmp_path))
    f, exists = s.open(os.path.join("sub", "dir", "x"), 0)
    f.close()
    assert exists is False
    assert (tmp_path / "sub" / "dir" / "x").is_file()


def test_name_is_cleaned(tmp_path):
    s = FileStorage(str(tmp_path))
    f, _ = s.open(os.path.join("sub", "..", "y"), 2)
    f.close()
    assert (tmp_path / "y").is_file()
    assert not (tmp_path / "sub").exists()


def test_relative_destination_is_made_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    s = FileStorage(".")
    assert s.dest == os.path.abspath(str(tmp_path))
    f, _ = s.open("z", 1)
    f.close()
    assert (tmp_path / "z").is_file()


def test_closed_file_rejects_io(tmp_path):
    s = FileStorage(str(tmp_path))
    f, _ = s.open("c", 1)
    f.close()
    with pytest.raises(ValueError):
        f.read_at(1, 0)