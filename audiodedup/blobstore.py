"""Audio Dedup Pipeline - Blob storage for audio bytes.

Keys are ``<bucket>/<name>`` strings. LocalBlobStore maps them onto a directory
tree under BLOB_DIR and publishes every object with the atomic write rule, so a
key either resolves to complete bytes or does not exist. The content type given
to put() is kept in a ``<name>.content-type`` sidecar.
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from audiodedup.config import AUDIO_BUCKET, BLOB_DIR, TEMP_BUCKET
from audiodedup.utils.atomic_io import (
    atomic_move_file,
    atomic_stream_to_file,
    atomic_write_text,
    cleanup_orphan_temp_files,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE_SUFFIX = ".content-type"


class BlobStoreError(Exception):
    """Raised when a blob operation fails."""

    def __init__(self, operation: str, key: str, reason: str):
        self.operation = operation
        self.key = key
        super().__init__(f"Blob {operation} failed for '{key}': {reason}")


class BlobNotFoundError(BlobStoreError):
    """The requested key does not exist."""

    def __init__(self, operation: str, key: str):
        super().__init__(operation, key, "not found")


def blob_key(bucket: str, name: str) -> str:
    return f"{bucket}/{name}"


class LocalBlobStore:
    """Filesystem-backed blob store."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def ensure_buckets(self, *buckets: str) -> None:
        """Create bucket directories (idempotent)."""
        for bucket in buckets or (TEMP_BUCKET, AUDIO_BUCKET):
            (self.root / bucket).mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Resolve a key to a path inside the store root.

        Raises:
            ValueError: If the key is empty or escapes the store root.
        """
        parts = PurePosixPath(key).parts
        if not parts or any(part in ("..", "/", "") for part in parts):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes | BinaryIO, content_type: str | None = None) -> int:
        """Store bytes (or a binary stream) under key.

        Returns:
            Number of bytes written.

        Raises:
            BlobStoreError: If the write fails.
        """
        path = self.path_for(key)
        stream = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
        try:
            size = atomic_stream_to_file(stream, path)
            if content_type:
                atomic_write_text(_sidecar(path), content_type)
        except OSError as e:
            raise BlobStoreError("put", key, str(e)) from e
        logger.debug("Stored blob key=%s size=%d", key, size)
        return size

    def move(self, src_key: str, dst_key: str) -> None:
        """Move an object (and its content type) to a new key.

        Raises:
            BlobNotFoundError: If src_key does not exist.
            BlobStoreError: If the move fails.
        """
        src = self.path_for(src_key)
        dst = self.path_for(dst_key)
        if not src.exists():
            raise BlobNotFoundError("move", src_key)
        try:
            atomic_move_file(src, dst)
            if _sidecar(src).exists():
                atomic_move_file(_sidecar(src), _sidecar(dst))
        except OSError as e:
            raise BlobStoreError("move", src_key, str(e)) from e
        logger.debug("Moved blob %s -> %s", src_key, dst_key)

    def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is a no-op.

        Raises:
            BlobStoreError: If the object exists but cannot be removed.
        """
        path = self.path_for(key)
        for target in (path, _sidecar(path)):
            try:
                os.remove(target)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise BlobStoreError("delete", key, str(e)) from e

    def get(self, key: str) -> bytes:
        """Read an object's bytes.

        Raises:
            BlobNotFoundError: If the key does not exist.
            BlobStoreError: If the read fails.
        """
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError("get", key) from e
        except OSError as e:
            raise BlobStoreError("get", key, str(e)) from e

    def content_type(self, key: str) -> str | None:
        """Content type recorded at put(), or None."""
        try:
            return _sidecar(self.path_for(key)).read_text(encoding="utf-8")
        except OSError:
            return None

    def cleanup_orphans(self) -> int:
        """Remove temp files left by interrupted writes."""
        return cleanup_orphan_temp_files(self.root)


def _sidecar(path: Path) -> Path:
    return path.with_name(path.name + CONTENT_TYPE_SUFFIX)


# Process-wide store, replaceable for tests
_blob_store: LocalBlobStore | None = None


def get_blob_store() -> LocalBlobStore:
    """Get the process-wide blob store (created on first use at BLOB_DIR)."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(BLOB_DIR)
    return _blob_store


def set_blob_store(store: LocalBlobStore | None) -> None:
    """Replace the process-wide blob store. None restores the default."""
    global _blob_store
    _blob_store = store
