"""Audio Dedup Pipeline - Upload media type and filename helpers."""

import re
from pathlib import Path

# Standard audio MIME types and their non-standard x- variants
SUPPORTED_AUDIO_MIME_TYPES = frozenset(
    {
        "audio/mpeg",
        "audio/wav",
        "audio/ogg",
        "audio/m4a",
        "audio/aac",
        "audio/flac",
        "audio/x-wav",
        "audio/x-ogg",
        "audio/x-m4a",
        "audio/x-aac",
        "audio/x-flac",
        "audio/x-mpeg",
    }
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_mime_type(mime_type: str | None) -> str:
    """Lowercase a MIME type and strip parameters such as ``; charset=``."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def is_supported_audio(mime_type: str | None) -> bool:
    """Check a declared MIME type against the allow-list."""
    return normalize_mime_type(mime_type) in SUPPORTED_AUDIO_MIME_TYPES


def safe_filename(filename: str | None, default: str = "upload") -> str:
    """Reduce an uploaded filename to a safe storage key component.

    Directory parts are dropped and anything outside ``[A-Za-z0-9._-]`` is
    replaced with ``_``. The original name is kept separately in the database.
    """
    name = Path(filename or "").name
    name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return name[:128] or default
