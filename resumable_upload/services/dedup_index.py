"""
Instant-upload lookup: content hash -> already stored file

Every merged file that came with a hash gets a sidecar
``<file>.meta.json``. The sidecars are the source of truth; the index
either scans them on every lookup (``DedupIndex``) or keeps a persisted
hash -> path table that is rebuilt from them (``SqlDedupIndex``).
"""
import logging
import os
import uuid
from pathlib import Path
from typing import Iterator, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select

from ..core.config import StorageConfig
from ..core.database import create_index_engine, create_session_maker, session_scope
from ..core.exceptions import MetadataParseError
from ..models import Base, DedupRecord
from ..schemas import CheckFileExistsResponse, SidecarMetadata, StoredFileInfo

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"


def sidecar_path(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + METADATA_SUFFIX)


def read_sidecar(path: Path) -> SidecarMetadata:
    """
    Parse a sidecar file.

    Raises FileNotFoundError if it does not exist and MetadataParseError
    if it exists but cannot be read or validated.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataParseError(path, str(e)) from e

    try:
        return SidecarMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise MetadataParseError(path, f"{e.error_count()} validation error(s)") from e


def write_sidecar(final_path: Path, metadata: SidecarMetadata) -> Path:
    """Write sidecar atomically so a concurrent scan never reads half a record"""
    path = sidecar_path(final_path)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp_path.write_text(metadata.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return path


class DedupIndex:
    """
    Scan-based index: every lookup walks files/ for sidecars.

    No cache and no extra durable state, so a lookup is never stale, at the
    cost of O(stored files) per lookup. Sidecars added or removed by
    concurrent merges during a walk may or may not be observed.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.root = config.files_dir

    def relative_path(self, final_path: Path) -> str:
        return final_path.relative_to(self.config.root).as_posix()

    def iter_sidecars(self) -> Iterator[Path]:
        """All sidecar paths, oldest date partition first"""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            for name in sorted(filenames):
                if name.endswith(METADATA_SUFFIX) and not name.startswith("."):
                    yield Path(dirpath) / name

    def scan(self) -> Iterator[Tuple[Path, SidecarMetadata]]:
        """(final file path, metadata) for every readable sidecar"""
        for meta_path in self.iter_sidecars():
            try:
                metadata = read_sidecar(meta_path)
            except FileNotFoundError:
                continue
            except MetadataParseError as e:
                logger.warning(f"⚠️ Skipping sidecar: {e}")
                continue
            final_path = meta_path.with_name(meta_path.name[: -len(METADATA_SUFFIX)])
            yield final_path, metadata

    def to_file_info(self, final_path: Path, metadata: SidecarMetadata) -> StoredFileInfo:
        relative = self.relative_path(final_path)
        return StoredFileInfo(
            file_id=metadata.file_id,
            file_name=metadata.file_name,
            mime_type=metadata.mime_type,
            size=metadata.size,
            url=self.config.public_url(relative),
            uploaded_at=metadata.uploaded_at,
            relative_path=relative,
        )

    def scan_lookup(self, file_hash: str) -> Optional[StoredFileInfo]:
        logger.debug(f"🔍 Scanning sidecars for hash {file_hash}")
        for final_path, metadata in self.scan():
            if metadata.file_hash != file_hash:
                continue
            if not final_path.is_file():
                logger.warning(f"⚠️ Sidecar points to a missing file: {final_path}")
                continue
            return self.to_file_info(final_path, metadata)
        return None

    def lookup(self, file_hash: Optional[str]) -> Optional[StoredFileInfo]:
        """First stored file with this hash whose bytes still exist, else None"""
        if not file_hash:
            return None
        info = self.scan_lookup(file_hash)
        if info:
            logger.info(f"♻️ Hash {file_hash} already stored at {info.relative_path}")
        return info

    def check_file_exists(self, file_hash: Optional[str]) -> CheckFileExistsResponse:
        info = self.lookup(file_hash)
        if info is None:
            return CheckFileExistsResponse(exists=False)
        return CheckFileExistsResponse(exists=True, file_info=info)

    def record(self, final_path: Path, metadata: SidecarMetadata) -> Path:
        """Persist the sidecar for a freshly merged file, making it discoverable by hash"""
        path = write_sidecar(final_path, metadata)
        logger.info(f"📝 Wrote metadata {path}")
        return path


class SqlDedupIndex(DedupIndex):
    """
    Persisted hash -> relative path table (SQLAlchemy, SQLite by default).

    Lookups are a primary-key read instead of a walk. The sidecar scan is
    kept as the bootstrap/repair path: rebuild() on startup, and a fallback
    scan when a row points at a file that no longer exists.
    """

    def __init__(self, config: StorageConfig, database_url: str):
        super().__init__(config)
        self.engine = create_index_engine(database_url)
        self.session_maker = create_session_maker(self.engine)
        Base.metadata.create_all(self.engine)
        logger.info(f"🗄️  Dedup index database ready: {self.engine.url}")

    def _upsert(self, db, file_hash: str, relative_path: str) -> bool:
        """Insert unless a live row already owns the hash (first merge wins)"""
        row = db.get(DedupRecord, file_hash)
        if row is None:
            db.add(DedupRecord(file_hash=file_hash, relative_path=relative_path))
            return True
        if row.relative_path != relative_path and not (self.config.root / row.relative_path).is_file():
            row.relative_path = relative_path
            return True
        return False

    def record(self, final_path: Path, metadata: SidecarMetadata) -> Path:
        path = super().record(final_path, metadata)
        if metadata.file_hash:
            with session_scope(self.session_maker) as db:
                self._upsert(db, metadata.file_hash, self.relative_path(final_path))
        return path

    def lookup(self, file_hash: Optional[str]) -> Optional[StoredFileInfo]:
        if not file_hash:
            return None

        dangling = False
        with session_scope(self.session_maker) as db:
            row = db.get(DedupRecord, file_hash)
            relative_path = row.relative_path if row else None
            if row is not None and not (self.config.root / relative_path).is_file():
                logger.warning(f"⚠️ Dropping dangling index entry {file_hash} -> {relative_path}")
                db.delete(row)
                relative_path = None
                dangling = True

        if relative_path is None:
            if not dangling:
                return None
            # another copy may have been stored by a racing merge
            info = self.scan_lookup(file_hash)
            if info:
                with session_scope(self.session_maker) as db:
                    self._upsert(db, file_hash, info.relative_path)
            return info

        final_path = self.config.root / relative_path
        try:
            metadata = read_sidecar(sidecar_path(final_path))
        except (FileNotFoundError, MetadataParseError) as e:
            logger.warning(f"⚠️ Index entry {file_hash} has no readable sidecar: {e}")
            metadata = SidecarMetadata(file_hash=file_hash)
        logger.info(f"♻️ Hash {file_hash} already stored at {relative_path}")
        return self.to_file_info(final_path, metadata)

    def rebuild(self) -> int:
        """Re-index every sidecar on disk; returns the number of rows added or repaired"""
        changed = 0
        with session_scope(self.session_maker) as db:
            for final_path, metadata in self.scan():
                if not metadata.file_hash or not final_path.is_file():
                    continue
                if self._upsert(db, metadata.file_hash, self.relative_path(final_path)):
                    changed += 1
                db.flush()

            stale = [
                row for row in db.scalars(select(DedupRecord))
                if not (self.config.root / row.relative_path).is_file()
            ]
            for row in stale:
                db.delete(row)

        logger.info(f"✅ Dedup index rebuilt: {changed} entries added/repaired, {len(stale)} stale removed")
        return changed
