"""Services module exports"""
from .chunk_store import ChunkStore, validate_file_id
from .dedup_index import DedupIndex, SqlDedupIndex, read_sidecar, sidecar_path, write_sidecar
from .merge_engine import MergeEngine, MergeResult
from .locks import KeyedLock
from .coordinator import UploadCoordinator, build_coordinator, build_dedup_index
from .file_server import FileServer, ServedFile

__all__ = [
    "ChunkStore",
    "validate_file_id",
    "DedupIndex",
    "SqlDedupIndex",
    "read_sidecar",
    "sidecar_path",
    "write_sidecar",
    "MergeEngine",
    "MergeResult",
    "KeyedLock",
    "UploadCoordinator",
    "build_coordinator",
    "build_dedup_index",
    "FileServer",
    "ServedFile",
]
