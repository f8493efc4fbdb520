"""
Pydantic schemas for API request/response validation and sidecar metadata

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_MIME_TYPE = "application/octet-stream"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SidecarMetadata(CamelModel):
    """Descriptor stored next to a final file as <file>.meta.json"""
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    file_hash: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    size: Optional[int] = None
    uploaded_at: Optional[datetime] = None


class StoredFileInfo(CamelModel):
    """A finalized file found by content hash"""
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    size: Optional[int] = None
    url: str
    uploaded_at: Optional[datetime] = None
    # internal only, never serialized
    relative_path: str = Field("", exclude=True)


class CheckFileExistsResponse(CamelModel):
    exists: bool
    file_info: Optional[StoredFileInfo] = None


class ChunkUploadResponse(CamelModel):
    """Result of a single chunk arrival"""
    success: bool = True
    chunk_number: int
    file_id: str
    completed: bool
    file_url: Optional[str] = None
    message: Optional[str] = None


class CompleteFileRequest(CamelModel):
    """Explicit completion request for a fully uploaded session"""
    file_id: str = Field(..., min_length=1, description="Upload session identifier")
    file_name: str = Field(..., min_length=1, description="Original file name")
    total_chunks: int = Field(..., ge=1, description="Total number of chunks")
    total_size: int = Field(..., ge=0, description="Total file size in bytes")
    mime_type: str = Field(..., min_length=1, description="File MIME type")
    file_hash: Optional[str] = Field(None, description="Content hash used for instant upload")


class CompleteFileResponse(CamelModel):
    success: bool = True
    file_url: str
    message: Optional[str] = None


class ChunkInfoResponse(CamelModel):
    uploaded_chunks: list[int]


class SessionInfo(CamelModel):
    """An in-flight upload session (chunk directory not yet merged)"""
    file_id: str
    chunk_count: int
    bytes_stored: int
    last_modified: datetime


class SessionListResponse(CamelModel):
    total: int
    sessions: list[SessionInfo]


class CancelUploadResponse(CamelModel):
    file_id: str
    status: str
