"""
Upload orchestration: one call per chunk arrival or completion request
"""
import logging
import uuid
from typing import Optional

from ..core.config import Settings, StorageConfig, dedup_database_url, settings
from ..core.exceptions import ChunkCountMismatch, InvalidChunk, InvalidFileId, MissingChunkDirectory
from ..schemas import (
    CheckFileExistsResponse,
    ChunkInfoResponse,
    ChunkUploadResponse,
    SessionListResponse,
)
from .chunk_store import ChunkStore, validate_file_id
from .dedup_index import DedupIndex, SqlDedupIndex
from .locks import KeyedLock
from .merge_engine import MergeEngine

logger = logging.getLogger(__name__)

INSTANT_UPLOAD_MESSAGE = "File already exists, instant upload"


class UploadCoordinator:
    """
    Entry point for the HTTP layer.

    Chunk writes for one fileId run in parallel; only the
    completion-check-and-merge step is serialized per fileId, so two
    requests that both deliver "the last chunk" produce a single merge.
    A session ends at its merge; chunks sent later under the same fileId
    start a new session.

    Instant upload is best-effort: two sessions with the same hash merging
    at the same moment can both miss each other's sidecar and store two
    copies. Later lookups return whichever the index finds first.
    """

    def __init__(
        self,
        config: StorageConfig,
        chunk_store: ChunkStore,
        dedup_index: DedupIndex,
        merge_engine: MergeEngine,
        locks: Optional[KeyedLock] = None,
    ):
        self.config = config
        self.chunk_store = chunk_store
        self.dedup_index = dedup_index
        self.merge_engine = merge_engine
        self.locks = locks or KeyedLock()

    def upload_chunk(
        self,
        file_id: str,
        chunk_number: int,
        total_chunks: int,
        data: bytes,
        file_name: str,
        total_size: int,
        mime_type: str,
        file_hash: Optional[str] = None,
    ) -> ChunkUploadResponse:
        """Store one chunk and merge the session if it is now complete"""
        validate_file_id(file_id)
        if total_chunks < 1 or not 0 <= chunk_number < total_chunks:
            raise InvalidChunk(chunk_number, total_chunks)

        logger.info(f"📦 Chunk {chunk_number + 1}/{total_chunks} for {file_id} ({len(data)} bytes)")

        if file_hash:
            existing = self.dedup_index.lookup(file_hash)
            if existing:
                logger.info(f"♻️ Instant upload for {file_id}: {existing.url}")
                self.chunk_store.remove(file_id)
                return ChunkUploadResponse(
                    chunk_number=chunk_number,
                    file_id=file_id,
                    completed=True,
                    file_url=existing.url,
                    message=INSTANT_UPLOAD_MESSAGE,
                )

        self.chunk_store.put(file_id, chunk_number, data)

        with self.locks.hold(file_id):
            uploaded = self.chunk_store.list(file_id)
            logger.info(f"📊 {file_id}: {len(uploaded)}/{total_chunks} chunks uploaded")

            if len(uploaded) == total_chunks:
                result = self.merge_engine.merge(
                    file_id,
                    file_name,
                    total_chunks,
                    mime_type,
                    file_hash=file_hash,
                    total_size=total_size,
                )
                return ChunkUploadResponse(
                    chunk_number=chunk_number,
                    file_id=file_id,
                    completed=True,
                    file_url=result.url,
                    message=INSTANT_UPLOAD_MESSAGE if result.deduplicated else None,
                )

        return ChunkUploadResponse(chunk_number=chunk_number, file_id=file_id, completed=False)

    def upload_single(self, data: bytes, file_name: str, mime_type: str) -> ChunkUploadResponse:
        """Non-chunked upload: a one-chunk session under a fresh fileId"""
        file_id = str(uuid.uuid4())
        logger.info(f"📤 Single upload {file_name} as {file_id}")
        return self.upload_chunk(file_id, 0, 1, data, file_name, len(data), mime_type)

    def complete_file(
        self,
        file_id: str,
        file_name: str,
        total_chunks: int,
        total_size: int,
        mime_type: str,
        file_hash: Optional[str] = None,
    ) -> str:
        """Explicit completion: verify every chunk is present, then merge"""
        validate_file_id(file_id)
        logger.info(f"🏁 Completion requested for {file_id} ({total_chunks} chunks)")

        with self.locks.hold(file_id):
            uploaded = self.chunk_store.list(file_id)
            if not uploaded:
                raise MissingChunkDirectory(file_id, total_chunks)
            if len(uploaded) != total_chunks:
                raise ChunkCountMismatch(file_id, len(uploaded), total_chunks)

            result = self.merge_engine.merge(
                file_id,
                file_name,
                total_chunks,
                mime_type,
                file_hash=file_hash,
                total_size=total_size,
            )
            return result.url

    def check_file_exists(self, file_hash: Optional[str]) -> CheckFileExistsResponse:
        return self.dedup_index.check_file_exists(file_hash)

    def get_uploaded_chunk_info(self, file_id: str) -> ChunkInfoResponse:
        """Chunks already received, so a client can resume; unknown ids yield []"""
        try:
            uploaded = self.chunk_store.list(file_id)
        except (InvalidFileId, OSError) as e:
            logger.warning(f"⚠️ Failed to list chunks for {file_id!r}: {e}")
            uploaded = []
        logger.info(f"📋 {file_id}: uploaded chunks {uploaded}")
        return ChunkInfoResponse(uploaded_chunks=uploaded)

    def cancel_upload(self, file_id: str) -> bool:
        """Drop an in-flight session's chunks (cleanup primitive for an external reaper)"""
        validate_file_id(file_id)
        with self.locks.hold(file_id):
            removed = self.chunk_store.remove(file_id)
        logger.info(f"🗑️  Cancelled upload {file_id} (chunks removed: {removed})")
        return removed

    def list_sessions(self) -> SessionListResponse:
        sessions = self.chunk_store.sessions()
        return SessionListResponse(total=len(sessions), sessions=sessions)


def build_dedup_index(config: StorageConfig, app_settings: Settings = settings) -> DedupIndex:
    backend = app_settings.DEDUP_INDEX_BACKEND.lower()
    if backend == "scan":
        return DedupIndex(config)
    if backend == "sqlite":
        return SqlDedupIndex(config, dedup_database_url(config, app_settings))
    raise ValueError(f"Unknown DEDUP_INDEX_BACKEND: {app_settings.DEDUP_INDEX_BACKEND}")


def build_coordinator(
    config: StorageConfig,
    dedup_index: Optional[DedupIndex] = None,
) -> UploadCoordinator:
    """Wire the services for one storage root"""
    chunk_store = ChunkStore(config)
    dedup_index = dedup_index or DedupIndex(config)
    merge_engine = MergeEngine(config, chunk_store, dedup_index)
    return UploadCoordinator(config, chunk_store, dedup_index, merge_engine)
