"""Audio Dedup Pipeline - Atomic I/O utilities.

Atomic publish rule used by the blob store:
1. Write to a temp path in the destination directory
2. Flush + fsync
3. Rename temp -> final (the publish boundary)

A final path therefore either holds complete data or does not exist.
Interrupted writes only ever leave ``*.~tmp`` files, which
cleanup_orphan_temp_files() removes at startup.
"""

import errno
import os
from pathlib import Path
from typing import BinaryIO

TEMP_SUFFIX = ".~tmp"


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling short writes and EINTR.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except InterruptedError:
            continue
        if written == 0:
            raise OSError("os.write() returned 0 bytes unexpectedly")
        view = view[written:]


def _temp_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + TEMP_SUFFIX)


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory so a rename survives power loss."""
    try:
        fd = os.open(dir_path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except (OSError, AttributeError):
        # O_DIRECTORY is not available everywhere
        pass


def _publish(temp_path: Path, final_path: Path) -> None:
    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)


def atomic_stream_to_file(
    stream: BinaryIO,
    final_path: str | Path,
    chunk_size: int = 65536,
) -> int:
    """Atomically write a binary stream to a file.

    Args:
        stream: File-like object with read() method.
        final_path: Target path for the output file.
        chunk_size: Buffer size for reading (default: 64KB).

    Returns:
        Total bytes written.

    Raises:
        OSError: If directory creation, write, or rename fails. The temp file is
            removed before the error propagates.
    """
    final_path = Path(final_path)
    temp_path = _temp_path_for(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    total_bytes = 0
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        while chunk := stream.read(chunk_size):
            _write_all(fd, chunk)
            total_bytes += len(chunk)
        os.fsync(fd)
    except OSError:
        os.close(fd)
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise
    else:
        os.close(fd)

    _publish(temp_path, final_path)
    return total_bytes


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    """Atomically write bytes to a file.

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    temp_path = _temp_path_for(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)
        os.fsync(fd)
    except OSError:
        os.close(fd)
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise
    else:
        os.close(fd)

    _publish(temp_path, final_path)


def atomic_write_text(final_path: str | Path, text: str, encoding: str = "utf-8") -> None:
    """Atomically write text to a file."""
    atomic_write_bytes(final_path, text.encode(encoding))


def atomic_move_file(source_path: str | Path, final_path: str | Path) -> None:
    """Atomically move a file, creating the destination directory.

    Uses rename when source and destination share a filesystem. Across devices
    the file is copied to a temp file beside the destination, published with a
    rename, and only then is the source removed.

    Raises:
        FileNotFoundError: If the source file does not exist.
        OSError: If the move fails.
    """
    source_path = Path(source_path)
    final_path = Path(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        _publish(source_path, final_path)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    with open(source_path, "rb") as src:
        atomic_stream_to_file(src, final_path)
    os.remove(source_path)


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Remove orphan temp files left by interrupted writes, recursively.

    Args:
        directory: Directory tree to scan.

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    removed = 0

    if not directory.exists():
        return 0

    for temp_file in directory.rglob(f"*{TEMP_SUFFIX}"):
        try:
            temp_file.unlink()
            removed += 1
        except OSError:
            pass  # Best-effort cleanup

    return removed
