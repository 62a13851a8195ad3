import os

import pytest

from draftkit.reporeader import (
    BadPatternError,
    FakeRepoReader,
    LocalFSReader,
)


def _p(*parts):
    return os.sep.join(parts)


@pytest.fixture
def fake():
    return FakeRepoReader(
        files={
            "main.go": b"package main",
            _p("cmd", "app.go"): b"package cmd",
            _p("cmd", "deep", "x.go"): b"package deep",
            "README.md": b"# readme",
        }
    )


def test_fake_repo_name(fake):
    assert fake.get_repo_name() == "test-repo"


def test_fake_exists_and_read(fake):
    assert fake.exists("main.go")
    assert not fake.exists("missing.go")
    assert fake.read_file("main.go") == b"package main"


def test_fake_without_files():
    empty = FakeRepoReader()
    assert not empty.exists("main.go")
    assert empty.find_files(".", ["*"], 10) == []


def test_fake_find_files_depth(fake):
    assert fake.find_files(".", ["*.go"], 0) == ["main.go"]
    assert sorted(fake.find_files(".", ["*.go"], 1)) == sorted(["main.go", _p("cmd", "app.go")])
    assert len(fake.find_files(".", ["*.go"], 2)) == 3


def test_fake_find_files_multiple_patterns(fake):
    found = fake.find_files(".", ["*.md", "main.*"], 0)
    assert sorted(found) == ["README.md", "main.go"]


def test_fake_find_files_class_patterns(fake):
    assert fake.find_files(".", ["[mn]ain.go"], 0) == ["main.go"]
    assert fake.find_files(".", ["[^m]ain.go"], 0) == []
    assert fake.find_files(".", ["ma?n.go"], 0) == ["main.go"]


@pytest.mark.parametrize("pattern", ["[", "[]", "a\\", "[a-", "[-a]"])
def test_fake_bad_pattern_raises(fake, pattern):
    with pytest.raises(BadPatternError):
        fake.find_files(".", [pattern], 0)


@pytest.fixture
def repo(tmp_path, monkeypatch):
    (tmp_path / "sub" / "deeper").mkdir(parents=True)
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "b.md").write_text("b")
    (tmp_path / "sub" / "b.txt").write_text("b")
    (tmp_path / "sub" / "deeper" / "c.txt").write_text("c")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_fake_and_local_read_the_same(repo):
    contents = {
        "a.txt": b"a",
        "b.md": b"b",
        _p("sub", "b.txt"): b"b",
        _p("sub", "deeper", "c.txt"): b"c",
    }
    fake = FakeRepoReader(files=contents)
    local = LocalFSReader()
    for path, data in contents.items():
        assert fake.exists(path) and local.exists(path)
        assert fake.read_file(path) == data
        assert local.read_file(path) == data


def test_local_repo_name(repo):
    assert LocalFSReader().get_repo_name() == repo.name


def test_local_exists_and_read(repo):
    reader = LocalFSReader()
    assert reader.exists("a.txt")
    assert not reader.exists("zzz.txt")
    assert reader.read_file(os.path.join("sub", "b.txt")) == b"b"


def test_local_read_missing_raises(repo):
    with pytest.raises(FileNotFoundError):
        LocalFSReader().read_file("zzz.txt")


def test_local_find_files_depth(repo):
    reader = LocalFSReader()
    assert reader.find_files(".", ["*.txt"], 0) == ["a.txt", _p("sub", "b.txt")]
    assert reader.find_files(".", ["*.txt"], 1) == [
        "a.txt",
        _p("sub", "b.txt"),
        _p("sub", "deeper", "c.txt"),
    ]


def test_local_find_files_missing_root_raises(repo):
    with pytest.raises(FileNotFoundError):
        LocalFSReader().find_files("does-not-exist", ["*"], 3)