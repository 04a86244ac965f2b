"""Audio Dedup Pipeline - Ingest service logic.

Synchronous half of the ingestion coordinator:
- Spool the upload and compute its SHA256 in one pass
- Stage the bytes in the blob store's temporary bucket
- Admit through the ledger's unique digest constraint
- Duplicate: discard the staged bytes, record the attempt
- Admitted: move the bytes to permanent storage, record the attempt,
  enqueue fingerprint analysis

Analysis never runs on this path; see services/worker_fingerprint/run.py.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from audiodedup.blobstore import BlobStoreError, blob_key, get_blob_store
from audiodedup.config import AUDIO_BUCKET, MAX_UPLOAD_BYTES, TEMP_BUCKET
from audiodedup.huey_app import enqueue_analysis
from audiodedup.ledger import AdmissionMetadata, Duplicate, record_upload_attempt, try_admit
from audiodedup.utils.hashing import sha256_stream
from audiodedup.utils.media_types import is_supported_audio, normalize_mime_type, safe_filename

if TYPE_CHECKING:
    from typing import BinaryIO

    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Exact duplicate detected"


# --- Error Codes ---


class IngestErrorCode(StrEnum):
    """Error codes for the ingest stage."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    HASH_FAILED = "HASH_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"
    INGEST_FAILED = "INGEST_FAILED"


class IngestError(Exception):
    """Base exception for ingest errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ValidationFailedError(IngestError):
    """The upload is missing, too large, or not a supported audio type."""

    def __init__(self, reason: str):
        super().__init__(IngestErrorCode.VALIDATION_FAILED, reason)


class HashFailedError(IngestError):
    """Unable to read the upload or compute its content hash."""

    def __init__(self, filename: str, reason: str):
        super().__init__(IngestErrorCode.HASH_FAILED, f"Hash failed for {filename}: {reason}")


class StorageFailedError(IngestError):
    """Blob store or queue failure."""

    def __init__(self, reason: str):
        super().__init__(IngestErrorCode.STORAGE_FAILED, f"Storage failed: {reason}")


class IngestFailedError(IngestError):
    """Generic ingest failure."""

    def __init__(self, reason: str):
        super().__init__(IngestErrorCode.INGEST_FAILED, f"Ingest failed: {reason}")


# --- Result Types ---


@dataclass
class IngestResult:
    """Result of an ingest operation.

    A duplicate is a normal outcome, not an error.
    """

    duplicate: bool
    audio_id: str | None = None
    content_digest: str | None = None
    message: str | None = None


# --- Ingest Service ---


def validate_upload(filename: str | None, mime_type: str | None) -> None:
    """Check that an upload is present and declares a supported audio type.

    Raises:
        ValidationFailedError: If no file was sent or the type is not allowed.
    """
    if not filename:
        raise ValidationFailedError("No audio file provided")
    if not is_supported_audio(mime_type):
        raise ValidationFailedError(
            f"Unsupported media type: {normalize_mime_type(mime_type) or 'unknown'}"
        )


def ingest_upload_stream(
    session: Session,
    stream: BinaryIO,
    filename: str,
    mime_type: str | None,
) -> IngestResult:
    """Ingest an uploaded audio file from a stream.

    Args:
        session: Active database session.
        stream: File-like object with read() method.
        filename: Original filename from the upload.
        mime_type: Declared content type of the upload.

    Returns:
        IngestResult(duplicate=False, audio_id) for a new file,
        IngestResult(duplicate=True) for an exact duplicate.

    Raises:
        ValidationFailedError: Missing file, unsupported type, or too large.
        HashFailedError: If the upload cannot be read or hashed.
        StorageFailedError: If the blob store or the queue fails. After
            admission the ledger row is kept.
        IngestFailedError: If a database operation fails.

    Note:
        This function commits the session. Callers should not wrap it in a
        transaction expecting rollback.
    """
    validate_upload(filename, mime_type)
    mime_type = normalize_mime_type(mime_type)
    name = safe_filename(filename)

    try:
        tmp = tempfile.NamedTemporaryFile(delete=False, prefix="audiodedup-upload-")
    except OSError as e:
        raise HashFailedError(filename, str(e)) from e
    tmp_path = Path(tmp.name)

    try:
        # 1. Spool the upload to the temp file, hashing as we go
        try:
            with tmp:
                content_digest = sha256_stream(stream, sink=tmp)
                file_size = tmp.tell()
        except OSError as e:
            raise HashFailedError(filename, str(e)) from e

        if MAX_UPLOAD_BYTES and file_size > MAX_UPLOAD_BYTES:
            raise ValidationFailedError(
                f"File too large: {file_size} bytes (limit {MAX_UPLOAD_BYTES})"
            )

        logger.info(
            "File received: %s (%s, %d bytes, sha256=%s)",
            filename,
            mime_type,
            file_size,
            content_digest,
        )
        return _admit_spooled_upload(
            session, tmp_path, content_digest, filename, name, file_size, mime_type
        )

    finally:
        # Always cleanup temp file
        try:
            os.remove(tmp_path)
        except OSError:
            pass


def _admit_spooled_upload(
    session: Session,
    tmp_path: Path,
    content_digest: str,
    original_filename: str,
    name: str,
    file_size: int,
    mime_type: str,
) -> IngestResult:
    store = get_blob_store()
    staged_key = blob_key(TEMP_BUCKET, f"{uuid.uuid4().hex}_{name}")
    final_key = blob_key(AUDIO_BUCKET, f"{content_digest}_{name}")

    # 2. Stage the bytes
    try:
        with open(tmp_path, "rb") as f:
            store.put(staged_key, f, content_type=mime_type)
    except (BlobStoreError, OSError) as e:
        raise StorageFailedError(str(e)) from e

    # 3. Admit (the unique digest constraint decides)
    metadata = AdmissionMetadata(
        original_filename=original_filename,
        file_size=file_size,
        mime_type=mime_type,
        storage_key=final_key,
    )
    try:
        admission = try_admit(session, content_digest, metadata)
    except SQLAlchemyError as e:
        _discard_staged_safe(staged_key)
        raise IngestFailedError(f"Admission failed: {e}") from e

    # 4a. Duplicate: drop the staged bytes
    if isinstance(admission, Duplicate):
        _discard_staged_safe(staged_key)
        _record_attempt(session, content_digest, was_duplicate=True)
        logger.warning(
            "Exact duplicate rejected: %s (sha256=%s)", original_filename, content_digest
        )
        return IngestResult(
            duplicate=True, content_digest=content_digest, message=DUPLICATE_MESSAGE
        )

    # 4b. Admitted: publish to permanent storage and queue analysis
    audio_id = admission.audio_id
    try:
        store.move(staged_key, final_key)
    except BlobStoreError as e:
        logger.error(
            "Failed to move upload to permanent storage for audio_id=%s: %s", audio_id, e
        )
        raise StorageFailedError(str(e)) from e

    _record_attempt(session, content_digest, was_duplicate=False)

    try:
        enqueue_analysis(audio_id)
    except Exception as e:
        logger.error("Failed to enqueue analysis for audio_id=%s", audio_id, exc_info=True)
        raise StorageFailedError(f"Could not queue analysis: {e}") from e

    logger.info("File stored: audio_id=%s key=%s", audio_id, final_key)
    return IngestResult(duplicate=False, audio_id=audio_id, content_digest=content_digest)


# --- Internal Helpers ---


def _record_attempt(session: Session, content_digest: str, was_duplicate: bool) -> None:
    try:
        record_upload_attempt(session, content_digest, was_duplicate)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise IngestFailedError(f"Failed to record upload attempt: {e}") from e


def _discard_staged_safe(staged_key: str) -> None:
    """Delete a staged upload, logging instead of raising."""
    try:
        get_blob_store().delete(staged_key)
    except BlobStoreError:
        logger.warning("Failed to delete staged upload %s (non-fatal)", staged_key, exc_info=True)
