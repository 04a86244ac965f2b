"""Audio Dedup Pipeline - Hashing utilities.

Content digests for exact-duplicate detection. All hash functions return
HEX DIGEST ONLY (no prefix) and read input in fixed-size chunks so memory use
does not grow with file size.
"""

import hashlib
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 65536  # 64KB


def sha256_file(path: str | Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        path: Path to the file to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    with open(path, "rb") as f:
        return sha256_stream(f)


def sha256_stream(stream: BinaryIO, sink: BinaryIO | None = None) -> str:
    """Compute SHA256 hash of a binary stream, optionally copying it.

    Every chunk read is also written to ``sink`` when given, so an upload can be
    spooled to disk and digested in a single pass.

    Args:
        stream: File-like object with read().
        sink: Optional file-like object with write().

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).

    Raises:
        OSError: If reading the stream or writing the sink fails.
    """
    hasher = hashlib.sha256()

    while chunk := stream.read(CHUNK_SIZE):
        hasher.update(chunk)
        if sink is not None:
            sink.write(chunk)

    return hasher.hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes.

    Args:
        data: Bytes to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).
    """
    return hashlib.sha256(data).hexdigest()
