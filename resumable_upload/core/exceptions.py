"""
Typed failures raised by the upload core.

Mapping to HTTP status codes happens in the API layer.
"""


class UploadError(Exception):
    """Base class for upload core errors"""


class InvalidFileId(UploadError):
    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"Invalid fileId: {file_id!r}")


class InvalidChunk(UploadError):
    def __init__(self, chunk_number: int, total_chunks: int):
        self.chunk_number = chunk_number
        self.total_chunks = total_chunks
        super().__init__(
            f"Invalid chunk number {chunk_number} for totalChunks={total_chunks}"
        )


class ChunkCountMismatch(UploadError):
    """Completion requested before every chunk is present"""

    def __init__(self, file_id: str, uploaded: int, expected: int):
        self.file_id = file_id
        self.uploaded = uploaded
        self.expected = expected
        super().__init__(
            f"Chunk count mismatch for {file_id}: uploaded {uploaded}, expected {expected}"
        )


class MissingChunkDirectory(ChunkCountMismatch):
    """No chunks were ever stored (or they were already cleaned up) for this fileId"""

    def __init__(self, file_id: str, expected: int):
        super().__init__(file_id, 0, expected)
        self.args = (f"No uploaded chunks found for fileId {file_id}",)


class MissingChunk(UploadError):
    def __init__(self, file_id: str, index: int):
        self.file_id = file_id
        self.index = index
        super().__init__(f"Chunk {index} of {file_id} is missing")


class FileHashMismatch(UploadError):
    def __init__(self, file_id: str, expected: str, actual: str):
        self.file_id = file_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"File hash mismatch for {file_id}: expected {expected}, got {actual}"
        )


class StoredFileNotFound(UploadError):
    def __init__(self, relative_path: str):
        self.relative_path = relative_path
        super().__init__(f"File not found: {relative_path}")


class PathOutsideStorage(StoredFileNotFound):
    """Requested path resolves outside the storage root"""


class MetadataParseError(UploadError):
    def __init__(self, path, reason: str):
        self.path = path
        super().__init__(f"Unreadable metadata {path}: {reason}")
