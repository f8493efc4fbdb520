import hashlib
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from resumable_upload.core.config import Settings, StorageConfig
from resumable_upload.main import create_app
from resumable_upload.services import (
    ChunkStore,
    DedupIndex,
    FileServer,
    MergeEngine,
    UploadCoordinator,
)

FIXED_NOW = datetime(2024, 5, 6, 12, 30, 0)


def md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


@pytest.fixture
def config(tmp_path):
    storage = StorageConfig(
        root=(tmp_path / "uploads").resolve(),
        public_base_url="http://testserver/upload/file",
    )
    storage.ensure_directories()
    return storage


@pytest.fixture
def chunk_store(config):
    return ChunkStore(config)


@pytest.fixture
def dedup_index(config):
    return DedupIndex(config)


@pytest.fixture
def merge_engine(config, chunk_store, dedup_index):
    return MergeEngine(config, chunk_store, dedup_index, clock=lambda: FIXED_NOW)


@pytest.fixture
def coordinator(config, chunk_store, dedup_index, merge_engine):
    return UploadCoordinator(config, chunk_store, dedup_index, merge_engine)


@pytest.fixture
def file_server(config):
    return FileServer(config)


@pytest.fixture
def stored_files(config):
    """Final files (sidecars excluded) currently under files/"""
    def _list():
        return sorted(
            p for p in config.files_dir.rglob("*")
            if p.is_file() and not p.name.endswith(".meta.json")
        )
    return _list


@pytest.fixture
def app_settings():
    test_settings = Settings()
    test_settings.DEDUP_INDEX_BACKEND = "scan"
    return test_settings


@pytest.fixture
def client(config, app_settings):
    app = create_app(config, app_settings)
    with TestClient(app) as test_client:
        yield test_client
