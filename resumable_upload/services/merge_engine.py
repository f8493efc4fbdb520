"""
Assembles a complete chunk set into one final file
"""
import hashlib
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..core.config import StorageConfig
from ..core.exceptions import (
    ChunkCountMismatch,
    FileHashMismatch,
    MissingChunk,
    MissingChunkDirectory,
)
from ..schemas import SidecarMetadata
from .chunk_store import ChunkStore
from .dedup_index import DedupIndex

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024  # 1MB


@dataclass(frozen=True)
class MergeResult:
    url: str
    relative_path: str
    size: Optional[int]
    deduplicated: bool = False


def split_file_name(file_name: str) -> tuple[str, str]:
    """
    Base name and extension of a client-supplied file name.

    Directory components are dropped so the name can't steer the
    destination outside its date partition.
    """
    name = os.path.basename(file_name.replace("\\", "/")).strip()
    base, ext = os.path.splitext(name)
    base = base.lstrip(".") or "file"
    return base, ext


class MergeEngine:
    """
    Merge flow:
    1. If a hash is supplied and already stored, reuse it (chunks are dropped)
    2. Re-verify the chunk count
    3. Pick files/<YYYY-MM-DD>/<base>_<timestamp><ext>
    4. Stream chunks 0..N-1 strictly in order into a temp file next to it
    5. fsync + atomic rename into place (readers never see a truncated file)
    6. Write sidecar metadata when a hash is supplied
    7. Drop the chunk directory (best-effort)
    8. Return the public URL
    """

    def __init__(
        self,
        config: StorageConfig,
        chunk_store: ChunkStore,
        dedup_index: DedupIndex,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.chunk_store = chunk_store
        self.dedup_index = dedup_index
        self.clock = clock
        self._timestamp_lock = threading.Lock()
        self._last_timestamp = 0

    def next_timestamp(self, now: datetime) -> int:
        """Epoch milliseconds, strictly increasing within this process"""
        millis = int(now.timestamp() * 1000)
        with self._timestamp_lock:
            self._last_timestamp = max(millis, self._last_timestamp + 1)
            return self._last_timestamp

    def destination(self, file_name: str, now: datetime) -> Path:
        date_dir = self.config.files_dir / now.strftime("%Y-%m-%d")
        date_dir.mkdir(parents=True, exist_ok=True)

        base, ext = split_file_name(file_name)
        while True:
            final_path = date_dir / f"{base}_{self.next_timestamp(now)}{ext}"
            if not final_path.exists():
                return final_path

    def _assemble(self, file_id: str, total_chunks: int, out, hasher) -> int:
        written = 0
        for index in range(total_chunks):
            try:
                src = self.chunk_store.open_chunk(file_id, index)
            except FileNotFoundError:
                logger.error(f"❌ Chunk {index} missing for {file_id}")
                raise MissingChunk(file_id, index)

            with src:
                chunk_size = 0
                while block := src.read(COPY_BUFFER_SIZE):
                    out.write(block)
                    if hasher is not None:
                        hasher.update(block)
                    chunk_size += len(block)
            written += chunk_size
            logger.debug(f"Wrote chunk {index} of {file_id} ({chunk_size} bytes)")
        return written

    def merge(
        self,
        file_id: str,
        file_name: str,
        total_chunks: int,
        mime_type: str,
        file_hash: Optional[str] = None,
        total_size: Optional[int] = None,
    ) -> MergeResult:
        if file_hash:
            existing = self.dedup_index.lookup(file_hash)
            if existing:
                logger.info(f"♻️ Instant upload for {file_id}: reusing {existing.url}")
                self.chunk_store.remove(file_id)
                return MergeResult(
                    url=existing.url,
                    relative_path=existing.relative_path,
                    size=existing.size,
                    deduplicated=True,
                )

        if not self.chunk_store.exists(file_id):
            logger.error(f"❌ No chunk directory for {file_id}")
            raise MissingChunkDirectory(file_id, total_chunks)

        uploaded = self.chunk_store.list(file_id)
        if len(uploaded) != total_chunks:
            logger.error(f"❌ Chunk count mismatch for {file_id}: {len(uploaded)}/{total_chunks}")
            raise ChunkCountMismatch(file_id, len(uploaded), total_chunks)

        started = time.monotonic()
        now = self.clock()
        final_path = self.destination(file_name, now)
        tmp_path = final_path.with_name(f".{final_path.name}.{uuid.uuid4().hex}.part")
        hasher = hashlib.new(self.config.hash_algorithm) if (self.config.verify_file_hash and file_hash) else None

        logger.info(f"🔧 Merging {total_chunks} chunks of {file_id} into {final_path}")
        try:
            with open(tmp_path, "wb") as out:
                size = self._assemble(file_id, total_chunks, out, hasher)
                out.flush()
                os.fsync(out.fileno())

            if hasher is not None:
                actual = hasher.hexdigest()
                if actual.lower() != file_hash.lower():
                    logger.error(f"❌ Hash mismatch for {file_id}: expected {file_hash}, got {actual}")
                    raise FileHashMismatch(file_id, file_hash, actual)

            os.replace(tmp_path, final_path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

        if total_size is not None and total_size != size:
            logger.warning(f"⚠️ {file_id}: declared totalSize {total_size}, assembled {size} bytes")

        if file_hash:
            metadata = SidecarMetadata(
                file_id=file_id,
                file_name=file_name,
                file_hash=file_hash,
                mime_type=mime_type,
                size=size,
                uploaded_at=datetime.now(timezone.utc),
            )
            try:
                self.dedup_index.record(final_path, metadata)
            except Exception as e:
                # the file itself is durable; it just won't be found by hash
                logger.error(f"❌ Failed to write metadata for {final_path}: {e}")

        self.chunk_store.remove(file_id)

        relative_path = final_path.relative_to(self.config.root).as_posix()
        url = self.config.public_url(relative_path)
        logger.info(f"✅ Merged {file_id} ({size} bytes) in {time.monotonic() - started:.2f}s -> {url}")
        return MergeResult(url=url, relative_path=relative_path, size=size)
