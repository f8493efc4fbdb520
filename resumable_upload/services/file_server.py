"""
Serves stored files back by their path relative to the storage root
"""
import logging
from dataclasses import dataclass
from pathlib import Path

from ..core.config import StorageConfig
from ..core.exceptions import MetadataParseError, PathOutsideStorage, StoredFileNotFound
from ..schemas import DEFAULT_MIME_TYPE
from .dedup_index import read_sidecar, sidecar_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServedFile:
    content: bytes
    mime_type: str
    path: Path


class FileServer:
    """
    Read-only access to finalized files.

    Paths are relative to the storage root, but only the files/ tree is
    served; chunks/ and the index database are not.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.root = config.root.resolve()
        self.files_root = config.files_dir.resolve()

    def resolve(self, relative_path: str) -> Path:
        """Canonical path, refusing anything outside the files/ tree"""
        candidate = (self.root / relative_path.lstrip("/\\")).resolve()
        if not candidate.is_relative_to(self.files_root):
            logger.warning(f"🚫 Refusing path outside stored files: {relative_path!r}")
            raise PathOutsideStorage(relative_path)
        return candidate

    def mime_type(self, path: Path) -> str:
        try:
            return read_sidecar(sidecar_path(path)).mime_type
        except FileNotFoundError:
            return DEFAULT_MIME_TYPE
        except MetadataParseError as e:
            logger.warning(f"⚠️ {e}; serving as {DEFAULT_MIME_TYPE}")
            return DEFAULT_MIME_TYPE

    def get_file(self, relative_path: str) -> ServedFile:
        path = self.resolve(relative_path)
        try:
            content = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise StoredFileNotFound(relative_path)
        except PermissionError:
            # directories on some platforms
            if path.is_dir():
                raise StoredFileNotFound(relative_path)
            raise

        mime_type = self.mime_type(path)
        logger.info(f"📥 Serving {relative_path} ({len(content)} bytes, {mime_type})")
        return ServedFile(content=content, mime_type=mime_type, path=path)
