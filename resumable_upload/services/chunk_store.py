"""
Transient per-session chunk storage on the local filesystem
"""
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List

from ..core.config import StorageConfig
from ..core.exceptions import InvalidFileId
from ..schemas import SessionInfo

logger = logging.getLogger(__name__)


def validate_file_id(file_id: str) -> str:
    """fileId becomes a directory name, so it must be a single safe path component"""
    if (
        not file_id
        or file_id in (".", "..")
        or "/" in file_id
        or "\\" in file_id
        or "\x00" in file_id
        or file_id.startswith(".")
    ):
        raise InvalidFileId(file_id)
    return file_id


def parse_chunk_number(name: str):
    """Chunk files are named by their index; anything else (temp files) is ignored"""
    if name.isascii() and name.isdigit():
        return int(name)
    return None


class ChunkStore:
    """
    Stores raw chunk bytes under chunks/<fileId>/<chunkNumber>.

    - put() overwrites, so a client can re-send a chunk after a failed transfer
    - writes go through a temp file + rename, list() never sees partial chunks
    - a missing session directory simply means "no chunks yet"
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.root = config.chunks_dir

    def session_dir(self, file_id: str) -> Path:
        return self.root / validate_file_id(file_id)

    def chunk_path(self, file_id: str, chunk_number: int) -> Path:
        return self.session_dir(file_id) / str(chunk_number)

    def exists(self, file_id: str) -> bool:
        return self.session_dir(file_id).is_dir()

    def put(self, file_id: str, chunk_number: int, data: bytes) -> Path:
        """Write (or overwrite) one chunk"""
        session_dir = self.session_dir(file_id)
        session_dir.mkdir(parents=True, exist_ok=True)

        chunk_path = session_dir / str(chunk_number)
        tmp_path = session_dir / f".{chunk_number}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, chunk_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Stored chunk {chunk_number} of {file_id} ({len(data)} bytes)")
        return chunk_path

    def open_chunk(self, file_id: str, chunk_number: int) -> BinaryIO:
        """Binary reader for one chunk; FileNotFoundError if it was never stored"""
        return open(self.chunk_path(file_id, chunk_number), "rb")

    def list(self, file_id: str) -> list[int]:
        """Ascending chunk numbers present for a session ([] if none)"""
        try:
            names = os.listdir(self.session_dir(file_id))
        except FileNotFoundError:
            return []

        numbers = {parse_chunk_number(name) for name in names}
        numbers.discard(None)
        return sorted(numbers)

    def remove(self, file_id: str) -> bool:
        """
        Delete a session's chunks and directory.

        Best-effort: failures are logged and never raised, the caller may
        already hold a finished file.
        """
        try:
            session_dir = self.session_dir(file_id)
            shutil.rmtree(session_dir)
            logger.info(f"🧹 Cleaned up chunk directory {session_dir}")
            return True
        except FileNotFoundError:
            return False
        except (OSError, InvalidFileId) as e:
            logger.warning(f"⚠️ Failed to clean up chunks for {file_id}: {e}")
            return False

    def sessions(self) -> List[SessionInfo]:
        """In-flight sessions, oldest activity first (for an external reaper)"""
        result = []
        try:
            entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return result

        for entry in entries:
            if not entry.is_dir():
                continue
            chunk_count = 0
            bytes_stored = 0
            try:
                last_modified = entry.stat().st_mtime
                with os.scandir(entry.path) as chunks:
                    for chunk in chunks:
                        if parse_chunk_number(chunk.name) is None:
                            continue
                        stat = chunk.stat()
                        chunk_count += 1
                        bytes_stored += stat.st_size
                        last_modified = max(last_modified, stat.st_mtime)
            except FileNotFoundError:
                # merged and removed while we were looking
                continue

            result.append(SessionInfo(
                file_id=entry.name,
                chunk_count=chunk_count,
                bytes_stored=bytes_stored,
                last_modified=datetime.fromtimestamp(last_modified, tz=timezone.utc),
            ))

        return sorted(result, key=lambda s: s.last_modified)
