"""Blob storage using fsspec for filesystem abstraction.

Processed documents are copied from the local temp upload into a storage
root that may be a local directory or a cloud bucket (S3, GCS) through
fsspec's protocol detection.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import fsspec

from doculens.core.logging import get_logger

logger = get_logger(__name__)

SIGNED_URL_EXPIRES_SECONDS = 3600


@dataclass(frozen=True)
class StoredBlob:
    """Location of a stored document."""

    key: str
    path: str
    size: int


def get_filesystem(url: str) -> fsspec.AbstractFileSystem:
    """Get filesystem for URL, auto-detecting protocol.

    Examples:
        get_filesystem("s3://bucket/path") -> S3FileSystem
        get_filesystem("/local/path") -> LocalFileSystem
    """
    parsed = urlparse(url)
    if not parsed.scheme or parsed.scheme == "file":
        return fsspec.filesystem("file")
    return fsspec.filesystem(parsed.scheme)


def is_local(url: str) -> bool:
    parsed = urlparse(url)
    return not parsed.scheme or parsed.scheme == "file"


def build_full_path(url: str, path: str) -> str:
    """Build full path from base URL and relative key."""
    parsed = urlparse(url)

    if is_local(url):
        base = parsed.path if parsed.path else url
        if path:
            return os.path.join(base, path)
        return base

    # Cloud storage: bucket plus prefix
    base = f"{parsed.netloc}{parsed.path}" if parsed.netloc else parsed.path
    if path:
        return f"{base.rstrip('/')}/{path.lstrip('/')}"
    return base


def document_key(document_id: str, file_name: str) -> str:
    """Storage key for a document's original file."""
    return f"documents/{document_id}/{os.path.basename(file_name)}"


class BlobStore:
    """Put, read and delete document blobs under a storage root."""

    def __init__(self, root_url: str) -> None:
        self.root_url = root_url
        self.fs = get_filesystem(root_url)

    async def put(self, source: bytes | str | Path, key: str) -> StoredBlob:
        """Store bytes or the contents of a local file under `key`."""
        if isinstance(source, (str, Path)):
            content = await asyncio.to_thread(Path(source).read_bytes)
        else:
            content = source

        full_path = build_full_path(self.root_url, key)
        if is_local(self.root_url):
            directory = os.path.dirname(full_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        await asyncio.to_thread(self._write_sync, full_path, content)

        logger.info("blob_stored", key=key, size=len(content))
        return StoredBlob(key=key, path=full_path, size=len(content))

    async def read(self, key: str) -> bytes:
        full_path = build_full_path(self.root_url, key)
        return await asyncio.to_thread(self._read_sync, full_path)

    async def exists(self, key: str) -> bool:
        full_path = build_full_path(self.root_url, key)
        return await asyncio.to_thread(self.fs.exists, full_path)

    async def delete(self, key: str) -> bool:
        """Remove a blob. Returns False when there was nothing to remove."""
        full_path = build_full_path(self.root_url, key)
        if not await asyncio.to_thread(self.fs.exists, full_path):
            return False
        await asyncio.to_thread(self.fs.rm, full_path)
        logger.info("blob_deleted", key=key)
        return True

    def url(self, key: str, expires: int = SIGNED_URL_EXPIRES_SECONDS) -> str:
        """Download URL for a blob.

        Cloud filesystems return a signed URL; local storage has no signing
        and returns a file:// URL.
        """
        full_path = build_full_path(self.root_url, key)
        if is_local(self.root_url):
            return Path(full_path).resolve().as_uri()
        try:
            return self.fs.sign(full_path, expiration=expires)
        except NotImplementedError:
            return f"{urlparse(self.root_url).scheme}://{full_path}"

    def _read_sync(self, path: str) -> bytes:
        with self.fs.open(path, "rb") as f:
            return f.read()

    def _write_sync(self, path: str, content: bytes) -> None:
        with self.fs.open(path, "wb") as f:
            f.write(content)
