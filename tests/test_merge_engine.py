import json
from datetime import datetime

import pytest

from resumable_upload.core.config import StorageConfig
from resumable_upload.core.exceptions import (
    ChunkCountMismatch,
    FileHashMismatch,
    MissingChunk,
    MissingChunkDirectory,
)
from resumable_upload.services import ChunkStore, DedupIndex, MergeEngine
from resumable_upload.services.merge_engine import split_file_name

from .conftest import md5


def put_chunks(chunk_store, file_id, chunks):
    for n, data in enumerate(chunks):
        chunk_store.put(file_id, n, data)


def test_merge_concatenates_in_index_order(merge_engine, chunk_store, config):
    chunks = [b"aa", b"bbb", b"cc"]
    for n in (2, 0, 1):
        chunk_store.put("abc", n, chunks[n])

    result = merge_engine.merge("abc", "report.pdf", 3, "application/pdf")

    final_path = config.root / result.relative_path
    assert final_path.read_bytes() == b"aabbbcc"
    assert result.size == 7
    assert result.deduplicated is False


def test_merge_destination_is_date_partitioned(merge_engine, chunk_store):
    put_chunks(chunk_store, "abc", [b"x"])

    result = merge_engine.merge("abc", "report.final.pdf", 1, "application/pdf")

    assert result.relative_path.startswith("files/2024-05-06/report.final_")
    assert result.relative_path.endswith(".pdf")
    assert result.url == f"http://testserver/upload/file/{result.relative_path}"


def test_same_name_merges_never_collide(merge_engine, chunk_store, config):
    put_chunks(chunk_store, "one", [b"first"])
    put_chunks(chunk_store, "two", [b"second"])

    first = merge_engine.merge("one", "a.txt", 1, "text/plain")
    second = merge_engine.merge("two", "a.txt", 1, "text/plain")

    assert first.relative_path != second.relative_path
    assert (config.root / first.relative_path).read_bytes() == b"first"
    assert (config.root / second.relative_path).read_bytes() == b"second"


def test_merge_removes_chunk_directory(merge_engine, chunk_store):
    put_chunks(chunk_store, "abc", [b"1", b"2"])

    merge_engine.merge("abc", "a.bin", 2, "application/octet-stream")

    assert not chunk_store.exists("abc")


def test_merge_without_hash_writes_no_sidecar(merge_engine, chunk_store, config):
    put_chunks(chunk_store, "abc", [b"data"])

    result = merge_engine.merge("abc", "a.bin", 1, "application/octet-stream")

    final_path = config.root / result.relative_path
    assert not final_path.with_name(final_path.name + ".meta.json").exists()


def test_merge_with_hash_writes_sidecar(merge_engine, chunk_store, config):
    put_chunks(chunk_store, "abc", [b"hello ", b"world"])

    result = merge_engine.merge("abc", "greeting.txt", 2, "text/plain", file_hash="H1", total_size=11)

    final_path = config.root / result.relative_path
    sidecar = json.loads(final_path.with_name(final_path.name + ".meta.json").read_text())
    assert sidecar["fileId"] == "abc"
    assert sidecar["fileName"] == "greeting.txt"
    assert sidecar["fileHash"] == "H1"
    assert sidecar["mimeType"] == "text/plain"
    assert sidecar["size"] == 11
    assert "uploadedAt" in sidecar


def test_merge_reuses_existing_file_for_known_hash(merge_engine, chunk_store, stored_files):
    put_chunks(chunk_store, "first", [b"same bytes"])
    first = merge_engine.merge("first", "a.txt", 1, "text/plain", file_hash="H1")

    put_chunks(chunk_store, "second", [b"same bytes"])
    second = merge_engine.merge("second", "b.txt", 1, "text/plain", file_hash="H1")

    assert second.deduplicated is True
    assert second.url == first.url
    assert len(stored_files()) == 1
    assert not chunk_store.exists("second")


def test_missing_chunk_directory(merge_engine):
    with pytest.raises(MissingChunkDirectory):
        merge_engine.merge("ghost", "a.txt", 2, "text/plain")


def test_missing_chunk_directory_is_a_count_mismatch(merge_engine):
    with pytest.raises(ChunkCountMismatch):
        merge_engine.merge("ghost", "a.txt", 2, "text/plain")


def test_count_mismatch(merge_engine, chunk_store):
    put_chunks(chunk_store, "abc", [b"1", b"2"])

    with pytest.raises(ChunkCountMismatch) as exc_info:
        merge_engine.merge("abc", "a.txt", 3, "text/plain")

    assert exc_info.value.uploaded == 2
    assert exc_info.value.expected == 3
    assert chunk_store.list("abc") == [0, 1]


def test_gap_in_indices_raises_missing_chunk(merge_engine, chunk_store, config, stored_files):
    # three chunks present, but 0,1,3 rather than 0,1,2
    for n in (0, 1, 3):
        chunk_store.put("abc", n, b"x")

    with pytest.raises(MissingChunk) as exc_info:
        merge_engine.merge("abc", "a.txt", 3, "text/plain")

    assert exc_info.value.index == 2
    assert stored_files() == []
    assert not any(p.name.endswith(".part") for p in config.files_dir.rglob("*"))
    assert chunk_store.list("abc") == [0, 1, 3]


def test_hash_verification(tmp_path):
    config = StorageConfig(root=tmp_path, verify_file_hash=True, hash_algorithm="md5")
    chunk_store = ChunkStore(config)
    engine = MergeEngine(config, chunk_store, DedupIndex(config))

    chunk_store.put("good", 0, b"payload")
    result = engine.merge("good", "a.bin", 1, "application/octet-stream", file_hash=md5(b"payload").upper())
    assert (config.root / result.relative_path).read_bytes() == b"payload"

    chunk_store.put("bad", 0, b"payload")
    with pytest.raises(FileHashMismatch):
        engine.merge("bad", "b.bin", 1, "application/octet-stream", file_hash=md5(b"other"))
    assert chunk_store.list("bad") == [0]
    assert not list(config.files_dir.rglob("b_*"))


def test_next_timestamp_is_strictly_increasing(merge_engine):
    now = datetime(2024, 1, 1)
    stamps = [merge_engine.next_timestamp(now) for _ in range(5)]
    assert stamps == sorted(set(stamps))


@pytest.mark.parametrize("file_name, expected", [
    ("report.pdf", ("report", ".pdf")),
    ("archive.tar.gz", ("archive.tar", ".gz")),
    ("README", ("README", "")),
    ("../../etc/passwd", ("passwd", "")),
    ("C:\\Users\\me\\photo.jpg", ("photo", ".jpg")),
    (".bashrc", ("bashrc", "")),
    ("", ("file", "")),
])
def test_split_file_name(file_name, expected):
    assert split_file_name(file_name) == expected
