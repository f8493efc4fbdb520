import os

import pytest

from resumable_upload.core.exceptions import InvalidFileId
from resumable_upload.services import ChunkStore


def test_list_unknown_session_is_empty(chunk_store):
    assert chunk_store.list("never-seen") == []
    assert not chunk_store.exists("never-seen")


def test_put_creates_directory_and_lists_ascending(chunk_store, config):
    for n in (3, 0, 2, 1):
        chunk_store.put("abc", n, f"chunk-{n}".encode())

    assert (config.chunks_dir / "abc").is_dir()
    assert chunk_store.list("abc") == [0, 1, 2, 3]
    with chunk_store.open_chunk("abc", 2) as f:
        assert f.read() == b"chunk-2"


def test_put_overwrites_previous_bytes(chunk_store):
    chunk_store.put("abc", 0, b"first attempt")
    chunk_store.put("abc", 0, b"retry")

    assert chunk_store.list("abc") == [0]
    with chunk_store.open_chunk("abc", 0) as f:
        assert f.read() == b"retry"


def test_list_ignores_temp_and_foreign_files(chunk_store):
    chunk_store.put("abc", 0, b"x")
    session_dir = chunk_store.session_dir("abc")
    (session_dir / ".1.deadbeef.tmp").write_bytes(b"partial")
    (session_dir / "notes.txt").write_bytes(b"?")

    assert chunk_store.list("abc") == [0]


def test_put_leaves_no_temp_files(chunk_store):
    chunk_store.put("abc", 5, b"payload")
    assert os.listdir(chunk_store.session_dir("abc")) == ["5"]


def test_remove_deletes_directory(chunk_store):
    chunk_store.put("abc", 0, b"x")
    chunk_store.put("abc", 1, b"y")

    assert chunk_store.remove("abc") is True
    assert not chunk_store.exists("abc")
    assert chunk_store.list("abc") == []


def test_remove_missing_session_is_not_an_error(chunk_store):
    assert chunk_store.remove("ghost") is False


def test_remove_swallows_os_errors(chunk_store, monkeypatch, caplog):
    chunk_store.put("abc", 0, b"x")

    def boom(path):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("resumable_upload.services.chunk_store.shutil.rmtree", boom)

    assert chunk_store.remove("abc") is False
    assert "Failed to clean up chunks" in caplog.text


@pytest.mark.parametrize("file_id", ["", ".", "..", "../etc", "a/b", "a\\b", ".hidden"])
def test_unsafe_file_ids_are_rejected(chunk_store, file_id):
    with pytest.raises(InvalidFileId):
        chunk_store.put(file_id, 0, b"x")


def test_sessions_reports_in_flight_uploads(chunk_store):
    chunk_store.put("one", 0, b"12")
    chunk_store.put("one", 1, b"345")
    chunk_store.put("two", 0, b"6")

    sessions = {s.file_id: s for s in chunk_store.sessions()}

    assert set(sessions) == {"one", "two"}
    assert sessions["one"].chunk_count == 2
    assert sessions["one"].bytes_stored == 5
    assert sessions["two"].chunk_count == 1


def test_sessions_without_chunk_root(tmp_path):
    from resumable_upload.core.config import StorageConfig

    store = ChunkStore(StorageConfig(root=tmp_path / "missing"))
    assert store.sessions() == []


def test_open_missing_chunk(chunk_store):
    chunk_store.put("abc", 0, b"x")

    with pytest.raises(FileNotFoundError):
        chunk_store.open_chunk("abc", 1)
