"""Audio Dedup Pipeline - Admission ledger.

The durable record of accepted audio files, keyed by content digest.

Admission is a plain INSERT guarded by the UNIQUE(content_digest) constraint.
The database decides the winner, so the rule holds across threads and across
processes sharing one database file: exactly one concurrent try_admit() per
digest returns Admitted, every other caller gets Duplicate and leaves no rows.

Note:
    try_admit() commits (or rolls back) the session itself. The other helpers
    flush only and leave commit responsibility to the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from audiodedup.models import AudioFile, UploadAttempt

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionMetadata:
    """Descriptive metadata stored with an admitted file."""

    original_filename: str
    file_size: int
    mime_type: str
    storage_key: str


@dataclass(frozen=True)
class Admitted:
    """The digest was new; a ledger row now exists."""

    audio_id: str


@dataclass(frozen=True)
class Duplicate:
    """The digest was already in the ledger."""

    content_digest: str


AdmissionResult = Admitted | Duplicate


def generate_audio_id() -> str:
    """Generate a unique audio ID (uuid4 hex, 32 chars)."""
    return uuid.uuid4().hex


def try_admit(
    session: Session, content_digest: str, metadata: AdmissionMetadata
) -> AdmissionResult:
    """Atomically admit a digest unless it already exists.

    Args:
        session: Active database session with no pending changes.
        content_digest: SHA256 hex digest of the file bytes.
        metadata: Descriptive metadata for the new row.

    Returns:
        Admitted(audio_id) for the first caller with this digest,
        Duplicate(content_digest) for everyone else.

    Raises:
        SQLAlchemyError: For database failures other than the digest conflict.
    """
    audio_id = generate_audio_id()
    session.add(
        AudioFile(
            id=audio_id,
            content_digest=content_digest,
            original_filename=metadata.original_filename,
            file_size=metadata.file_size,
            mime_type=metadata.mime_type,
            storage_key=metadata.storage_key,
        )
    )

    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        if not _is_digest_conflict(e):
            raise
        logger.info("Admission refused, digest already present: %s", content_digest)
        return Duplicate(content_digest=content_digest)

    logger.debug("Admitted audio_id=%s digest=%s", audio_id, content_digest)
    return Admitted(audio_id=audio_id)


def _is_digest_conflict(error: IntegrityError) -> bool:
    """True if the IntegrityError came from the content digest unique constraint."""
    message = str(error.orig).lower()
    # SQLite reports columns, PostgreSQL reports the constraint name
    return "content_digest" in message or "uq_audio_content_digest" in message


def find_by_id(session: Session, audio_id: str) -> AudioFile | None:
    """Find an audio file by ID."""
    return session.get(AudioFile, audio_id)


def find_by_digest(session: Session, content_digest: str) -> AudioFile | None:
    """Find the audio file holding a digest."""
    stmt = select(AudioFile).where(AudioFile.content_digest == content_digest)
    return session.execute(stmt).scalar_one_or_none()


def list_analyzable(session: Session, exclude_id: str | None = None) -> Sequence[AudioFile]:
    """List fingerprinted audio files, oldest admission first.

    The order is deterministic (accepted_at, then id) so the similarity scan
    records the same first match for the same stored data.

    Args:
        session: Active database session.
        exclude_id: Audio ID to leave out (the file being analyzed).

    Returns:
        Audio files with a non-null perceptual fingerprint.
    """
    stmt = select(AudioFile).where(AudioFile.perceptual_fingerprint.is_not(None))
    if exclude_id is not None:
        stmt = stmt.where(AudioFile.id != exclude_id)
    stmt = stmt.order_by(AudioFile.accepted_at, AudioFile.id)
    return session.execute(stmt).scalars().all()


def record_upload_attempt(session: Session, content_digest: str, was_duplicate: bool) -> None:
    """Append an UploadAttempt audit record (flushed, not committed)."""
    session.add(UploadAttempt(content_digest=content_digest, was_duplicate=was_duplicate))
    session.flush()
