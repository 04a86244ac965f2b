"""Audio Dedup Pipeline - Utility modules."""

from audiodedup.utils.atomic_io import (
    atomic_move_file,
    atomic_stream_to_file,
    atomic_write_bytes,
    atomic_write_text,
    cleanup_orphan_temp_files,
)
from audiodedup.utils.hashing import sha256_bytes, sha256_file, sha256_stream
from audiodedup.utils.media_types import (
    SUPPORTED_AUDIO_MIME_TYPES,
    is_supported_audio,
    normalize_mime_type,
    safe_filename,
)

__all__ = [
    # atomic_io
    "atomic_move_file",
    "atomic_stream_to_file",
    "atomic_write_bytes",
    "atomic_write_text",
    "cleanup_orphan_temp_files",
    # hashing
    "sha256_file",
    "sha256_stream",
    "sha256_bytes",
    # media_types
    "SUPPORTED_AUDIO_MIME_TYPES",
    "is_supported_audio",
    "normalize_mime_type",
    "safe_filename",
]
