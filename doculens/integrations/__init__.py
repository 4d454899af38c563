"""Integrations module for external services and storage.

Provides unified access to blob storage through fsspec abstraction.
"""

from doculens.integrations.storage import BlobStore, StoredBlob, get_filesystem

__all__ = [
    "BlobStore",
    "StoredBlob",
    "get_filesystem",
]
