"""Schemas module exports"""
from .upload import (
    DEFAULT_MIME_TYPE,
    SidecarMetadata,
    StoredFileInfo,
    CheckFileExistsResponse,
    ChunkUploadResponse,
    CompleteFileRequest,
    CompleteFileResponse,
    ChunkInfoResponse,
    SessionInfo,
    SessionListResponse,
    CancelUploadResponse,
)

__all__ = [
    "DEFAULT_MIME_TYPE",
    "SidecarMetadata",
    "StoredFileInfo",
    "CheckFileExistsResponse",
    "ChunkUploadResponse",
    "CompleteFileRequest",
    "CompleteFileResponse",
    "ChunkInfoResponse",
    "SessionInfo",
    "SessionListResponse",
    "CancelUploadResponse",
]
