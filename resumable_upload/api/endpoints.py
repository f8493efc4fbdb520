"""
FastAPI endpoints for chunked upload, instant upload and file serving
"""
import asyncio
import functools
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import Response

from ..core.config import settings
from ..core.exceptions import (
    ChunkCountMismatch,
    FileHashMismatch,
    InvalidChunk,
    InvalidFileId,
    StoredFileNotFound,
    UploadError,
)
from ..schemas import (
    CancelUploadResponse,
    CheckFileExistsResponse,
    ChunkInfoResponse,
    ChunkUploadResponse,
    CompleteFileRequest,
    CompleteFileResponse,
    DEFAULT_MIME_TYPE,
    SessionListResponse,
)
from ..services import FileServer, UploadCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])


def get_coordinator(request: Request) -> UploadCoordinator:
    return request.app.state.coordinator


def get_file_server(request: Request) -> FileServer:
    return request.app.state.file_server


async def run_blocking(func, *args, **kwargs):
    """
    Run a blocking filesystem call in the default thread pool.

    Keeps the event loop free for other requests while a chunk is written
    or a merge streams chunks to disk.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def to_http_exception(error: UploadError) -> HTTPException:
    if isinstance(error, StoredFileNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if isinstance(error, (InvalidFileId, InvalidChunk, ChunkCountMismatch, FileHashMismatch)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


async def read_upload(file: UploadFile) -> bytes:
    data = await file.read(settings.MAX_CHUNK_BYTES + 1)
    if len(data) > settings.MAX_CHUNK_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Chunk exceeds {settings.MAX_CHUNK_BYTES} bytes",
        )
    return data


@router.post("/chunk", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_chunk(
    file: Annotated[UploadFile, File(description="Chunk bytes")],
    file_id: Annotated[str, Form(alias="fileId", min_length=1)],
    chunk_number: Annotated[int, Form(alias="chunkNumber", ge=0, description="Chunk index, from 0")],
    total_chunks: Annotated[int, Form(alias="totalChunks", ge=1)],
    total_size: Annotated[int, Form(alias="totalSize", ge=0)],
    file_name: Annotated[str, Form(alias="fileName", min_length=1)],
    mime_type: Annotated[str, Form(alias="mimeType", min_length=1)],
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
    # sent by clients, unused: the stored chunk is whatever bytes arrived
    chunk_size: Annotated[Optional[int], Form(alias="chunkSize", ge=0)] = None,
    file_hash: Annotated[Optional[str], Form(alias="fileHash")] = None,
):
    """
    Upload one chunk of a file.

    Chunks may arrive in any order and may be re-sent. The response has
    completed=true once the file has been assembled (or already existed).
    """
    data = await read_upload(file)
    try:
        return await run_blocking(
            coordinator.upload_chunk,
            file_id,
            chunk_number,
            total_chunks,
            data,
            file_name,
            total_size,
            mime_type,
            file_hash=file_hash or None,
        )
    except UploadError as e:
        logger.error(f"❌ Chunk upload failed for {file_id}: {e}")
        raise to_http_exception(e)


@router.post("/image", response_model=ChunkUploadResponse, response_model_exclude_none=True)
async def upload_image(
    file: Annotated[UploadFile, File(description="File to upload in one request")],
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
):
    """Single-request upload, stored as a one-chunk session"""
    data = await read_upload(file)
    file_name = file.filename or "unnamed-file"
    mime_type = file.content_type or DEFAULT_MIME_TYPE
    try:
        return await run_blocking(coordinator.upload_single, data, file_name, mime_type)
    except UploadError as e:
        logger.error(f"❌ Single upload failed for {file_name}: {e}")
        raise to_http_exception(e)


@router.post("/complete-file", response_model=CompleteFileResponse, response_model_exclude_none=True)
async def complete_file(
    request: CompleteFileRequest,
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
):
    """Merge all chunks of a session once the client has delivered every one"""
    try:
        file_url = await run_blocking(
            coordinator.complete_file,
            request.file_id,
            request.file_name,
            request.total_chunks,
            request.total_size,
            request.mime_type,
            file_hash=request.file_hash or None,
        )
    except UploadError as e:
        logger.error(f"❌ Completion failed for {request.file_id}: {e}")
        raise to_http_exception(e)
    return CompleteFileResponse(file_url=file_url)


@router.get("/chunk-info/{file_id}", response_model=ChunkInfoResponse)
async def get_chunk_info(
    file_id: str,
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
):
    """Chunks already received for a session (used to resume)"""
    return await run_blocking(coordinator.get_uploaded_chunk_info, file_id)


@router.get("/check-file", response_model=CheckFileExistsResponse, response_model_exclude_none=True)
async def check_file(
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
    file_hash: Annotated[Optional[str], Query(alias="fileHash")] = None,
):
    """Instant upload check: is a file with this hash already stored?"""
    return await run_blocking(coordinator.check_file_exists, file_hash)


@router.get("/file/{file_path:path}")
async def get_file(
    file_path: str,
    file_server: Annotated[FileServer, Depends(get_file_server)],
):
    """Serve a stored file by its path relative to the storage root"""
    try:
        served = await run_blocking(file_server.get_file, file_path)
    except StoredFileNotFound as e:
        raise to_http_exception(e)
    return Response(content=served.content, media_type=served.mime_type)


@router.delete("/chunks/{file_id}", response_model=CancelUploadResponse)
async def cancel_upload(
    file_id: str,
    coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)],
):
    """Discard an in-flight session's chunks"""
    try:
        removed = await run_blocking(coordinator.cancel_upload, file_id)
    except UploadError as e:
        raise to_http_exception(e)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload session not found")
    return CancelUploadResponse(file_id=file_id, status="cancelled")


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(coordinator: Annotated[UploadCoordinator, Depends(get_coordinator)]):
    """In-flight sessions, oldest activity first"""
    return await run_blocking(coordinator.list_sessions)
