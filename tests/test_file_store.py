import pytest

from ftpcore.storage.file_store import LocalFileStore


@pytest.fixture
def store(tmp_path):
    return LocalFileStore(str(tmp_path / "store"))


def test_root_is_created(tmp_path):
    LocalFileStore(str(tmp_path / "fresh"))
    assert (tmp_path / "fresh").is_dir()


def test_write_then_read(store):
    with store.open_write("/notes.txt") as f:
        f.write(b"remember the milk")

    assert store.exists("/notes.txt")
    assert not store.is_dir("/notes.txt")
    assert store.size("/notes.txt") == 17
    with store.open_read("/notes.txt") as f:
        assert f.read() == b"remember the milk"


def test_open_write_truncates(store):
    with store.open_write("/f") as f:
        f.write(b"long content")
    with store.open_write("/f") as f:
        f.write(b"x")
    assert store.size("/f") == 1


def test_directories(store):
    store.mkdir("/a")
    store.mkdir("/a/b")
    assert store.is_dir("/a/b")
    with pytest.raises(FileExistsError):
        store.mkdir("/a")
    with pytest.raises(OSError):
        store.rmdir("/a")
    store.rmdir("/a/b")
    store.rmdir("/a")
    assert not store.exists("/a")


def test_remove(store):
    store.open_write("/gone").close()
    store.remove("/gone")
    assert not store.exists("/gone")
    with pytest.raises(FileNotFoundError):
        store.remove("/gone")


def test_remove_refuses_directories(store):
    store.mkdir("/d")
    with pytest.raises(IsADirectoryError):
        store.remove("/d")


def test_size_of_directory(store):
    store.mkdir("/d")
    with pytest.raises(IsADirectoryError):
        store.size("/d")


def test_rename_moves_between_directories(store):
    store.mkdir("/in")
    store.mkdir("/out")
    with store.open_write("/in/x") as f:
        f.write(b"payload")
    store.rename("/in/x", "/out/y")
    assert not store.exists("/in/x")
    assert store.size("/out/y") == 7


def test_root_cannot_be_removed_or_renamed(store):
    with pytest.raises(PermissionError):
        store.rmdir("/")
    with pytest.raises(PermissionError):
        store.rename("/", "/elsewhere")


def test_paths_cannot_escape_root(store, tmp_path):
    (tmp_path / "secret.txt").write_text("hidden")
    assert not store.exists("/../secret.txt")
    with pytest.raises(PermissionError):
        store.open_read("/../secret.txt")


def test_list_dir_orders_directories_first(store):
    for name in ("beta.txt", "Alpha.txt"):
        with store.open_write(f"/{name}") as f:
            f.write(b"12345")
    store.mkdir("/zeta")
    store.mkdir("/docs")

    entries = store.list_dir("/")
    assert [e.name for e in entries] == ["docs", "zeta", "Alpha.txt", "beta.txt"]
    assert [e.is_dir for e in entries] == [True, True, False, False]
    assert entries[0].size == 0
    assert entries[2].size == 5
    assert entries[2].modified > 0


def test_list_missing_directory(store):
    with pytest.raises(FileNotFoundError):
        store.list_dir("/missing")


def test_nul_in_path_is_an_os_error(store):
    assert not store.exists("/a\x00b")
    assert not store.is_dir("/a\x00b")
    with pytest.raises(OSError):
        store.mkdir("/a\x00b")
    with pytest.raises(OSError):
        store.open_read("/a\x00b")
