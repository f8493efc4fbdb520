"""
Configuration settings for the upload server
"""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings"""

    # Storage
    UPLOAD_ROOT: str = os.getenv("UPLOAD_ROOT", "./uploads")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080/upload/file")

    # Instant upload (dedup) index: "scan" walks sidecars, "sqlite" keeps a hash -> path table
    DEDUP_INDEX_BACKEND: str = os.getenv("DEDUP_INDEX_BACKEND", "scan")
    DEDUP_DATABASE_URL: str = os.getenv("DEDUP_DATABASE_URL", "")

    # Integrity
    VERIFY_FILE_HASH: bool = os.getenv("VERIFY_FILE_HASH", "false").lower() == "true"
    HASH_ALGORITHM: str = os.getenv("HASH_ALGORITHM", "md5")

    # Limits
    MAX_CHUNK_BYTES: int = int(os.getenv("MAX_CHUNK_BYTES", str(50 * 1024 * 1024)))

    # Server
    SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8080"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Application
    APP_TITLE: str = "Resumable Upload Service"
    APP_DESCRIPTION: str = "Chunked, resumable file uploads with instant upload by content hash"
    APP_VERSION: str = "1.0.0"


settings = Settings()


@dataclass(frozen=True)
class StorageConfig:
    """
    Immutable storage layout handed to every service constructor.

    Layout under ``root``:
        chunks/<fileId>/<chunkNumber>
        files/<YYYY-MM-DD>/<basename>_<timestamp>.<ext>
        files/<YYYY-MM-DD>/<basename>_<timestamp>.<ext>.meta.json
    """
    root: Path
    public_base_url: str = "http://localhost:8080/upload/file"
    verify_file_hash: bool = False
    hash_algorithm: str = "md5"

    @property
    def chunks_dir(self) -> Path:
        return self.root / "chunks"

    @property
    def files_dir(self) -> Path:
        return self.root / "files"

    def public_url(self, relative_path: str) -> str:
        """Public URL for a path relative to the storage root"""
        return f"{self.public_base_url.rstrip('/')}/{relative_path.lstrip('/')}"

    def ensure_directories(self) -> None:
        self.chunks_dir.mkdir(parents=True, exist_ok=True)
        self.files_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "StorageConfig":
        return cls(
            root=Path(app_settings.UPLOAD_ROOT).resolve(),
            public_base_url=app_settings.PUBLIC_BASE_URL,
            verify_file_hash=app_settings.VERIFY_FILE_HASH,
            hash_algorithm=app_settings.HASH_ALGORITHM,
        )


def dedup_database_url(config: StorageConfig, app_settings: Settings = settings) -> str:
    """SQLite URL for the hash index, defaulting to a file inside the storage root"""
    return app_settings.DEDUP_DATABASE_URL or f"sqlite:///{config.root / 'dedup.db'}"
