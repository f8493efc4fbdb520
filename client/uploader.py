"""Chunked upload client with parallel workers, resume and instant upload."""
import hashlib
import mimetypes
import os
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

import requests

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8080")
CHUNK_SIZE = 5 * 1024 * 1024  # 5MB
MAX_WORKERS = 4  # Parallel upload threads


class ChunkedUploader:
    """Client for uploading large files as independently sent chunks."""

    def __init__(self, api_url: str = API_BASE_URL, chunk_size: int = CHUNK_SIZE,
                 max_workers: int = MAX_WORKERS, session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip("/")
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.http = session or requests.Session()

    @staticmethod
    def calculate_file_hash(file_path: str, algorithm: str = "MD5") -> str:
        """Calculate hash of entire file."""
        hash_obj = hashlib.new(algorithm.lower())
        with open(file_path, "rb") as f:
            while chunk := f.read(65536):  # 64KB chunks
                hash_obj.update(chunk)
        return hash_obj.hexdigest()

    def total_chunks(self, file_size: int) -> int:
        return max(1, (file_size + self.chunk_size - 1) // self.chunk_size)

    def check_file(self, file_hash: str) -> dict:
        """Ask the server whether this content is already stored."""
        response = self.http.get(f"{self.api_url}/upload/check-file", params={"fileHash": file_hash})
        response.raise_for_status()
        return response.json()

    def get_uploaded_chunks(self, file_id: str) -> set:
        response = self.http.get(f"{self.api_url}/upload/chunk-info/{file_id}")
        response.raise_for_status()
        return set(response.json()["uploadedChunks"])

    def upload_chunk(self, file_id: str, chunk_number: int, chunk_data: bytes, meta: dict) -> dict:
        """Upload a single chunk; returns the server response."""
        response = self.http.post(
            f"{self.api_url}/upload/chunk",
            files={"file": (str(chunk_number), chunk_data, "application/octet-stream")},
            data={
                "fileId": file_id,
                "chunkNumber": chunk_number,
                "chunkSize": self.chunk_size,
                **meta,
            },
        )
        response.raise_for_status()
        return response.json()

    def complete_upload(self, file_id: str, meta: dict) -> dict:
        """Ask the server to merge all chunks."""
        print("\nCompleting upload...")
        response = self.http.post(
            f"{self.api_url}/upload/complete-file",
            json={"fileId": file_id, **meta},
        )
        response.raise_for_status()
        return response.json()

    def upload_file(self, file_path: str, file_id: Optional[str] = None) -> Optional[str]:
        """
        Upload a file, returning its public URL.

        Pass the file_id of an interrupted upload to resume it: chunks the
        server already has are skipped. Returns None if some chunks failed.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        total_chunks = self.total_chunks(file_size)
        file_id = file_id or str(uuid.uuid4())

        print("Calculating file hash...")
        file_hash = self.calculate_file_hash(str(file_path))
        print(f"✓ File MD5: {file_hash}")

        existing = self.check_file(file_hash)
        if existing.get("exists"):
            url = existing["fileInfo"]["url"]
            print(f"✓ Instant upload, file already stored: {url}")
            return url

        meta = {
            "fileName": file_path.name,
            "totalChunks": total_chunks,
            "totalSize": file_size,
            "mimeType": mimetypes.guess_type(file_path.name)[0] or "application/octet-stream",
            "fileHash": file_hash,
        }

        uploaded = self.get_uploaded_chunks(file_id)
        if uploaded:
            print(f"Resuming {file_id}: {len(uploaded)}/{total_chunks} chunks already on server")

        print(f"\nUploading {total_chunks - len(uploaded)} chunks using {self.max_workers} parallel workers...")
        start_time = time.time()

        file_url = None
        failed = 0
        with open(file_path, "rb") as f, ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {}
            for chunk_number in range(total_chunks):
                if chunk_number in uploaded:
                    continue  # Skip already uploaded chunks
                f.seek(chunk_number * self.chunk_size)
                chunk_data = f.read(self.chunk_size)
                futures[executor.submit(self.upload_chunk, file_id, chunk_number, chunk_data, meta)] = chunk_number

            for future in as_completed(futures):
                chunk_number = futures[future]
                try:
                    result = future.result()
                except requests.RequestException as e:
                    print(f"  ✗ Chunk {chunk_number} failed: {e}")
                    failed += 1
                    continue
                print(f"  ✓ Chunk {chunk_number + 1}/{total_chunks} uploaded")
                if result.get("completed"):
                    file_url = result.get("fileUrl")

        upload_time = time.time() - start_time

        if failed:
            print(f"\n⚠ Upload incomplete: {failed} chunks failed")
            print(f"  Resume with: python -m client.uploader {file_path} --file-id {file_id}")
            return None

        if not file_url:
            file_url = self.complete_upload(file_id, meta)["fileUrl"]

        print("\n✓ Upload completed successfully!")
        print(f"  URL: {file_url}")
        print(f"  Time: {upload_time:.2f} seconds")
        if upload_time > 0:
            print(f"  Speed: {file_size / upload_time / (1024*1024):.2f} MB/s")

        return file_url


def main():
    """CLI for chunked uploader."""
    if len(sys.argv) < 2:
        print("Usage:")
        print("  New upload:    python -m client.uploader <file_path>")
        print("  Resume upload: python -m client.uploader <file_path> --file-id <file_id>")
        sys.exit(1)

    file_path = sys.argv[1]
    file_id = None

    if "--file-id" in sys.argv:
        idx = sys.argv.index("--file-id")
        if len(sys.argv) > idx + 1:
            file_id = sys.argv[idx + 1]

    uploader = ChunkedUploader()

    try:
        if uploader.upload_file(file_path, file_id=file_id) is None:
            sys.exit(2)
    except (requests.RequestException, OSError) as e:
        print(f"\n✗ Upload failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
