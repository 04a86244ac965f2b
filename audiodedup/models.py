"""Audio Dedup Pipeline - SQLAlchemy ORM models.

Database tables:
1. audio_files
2. similarity_warnings
3. upload_attempts
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class AnalysisState(StrEnum):
    """Perceptual analysis lifecycle of an audio file.

    pending -> analyzed | matched. Both targets are terminal.
    """

    PENDING = "pending"
    ANALYZED = "analyzed"
    MATCHED = "matched"


class AudioFile(Base):
    """An accepted audio artifact, unique by content digest."""

    __tablename__ = "audio_files"

    # Stable identifier (uuid4 hex), assigned at admission
    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    # SHA256 hex digest of the raw bytes. The UNIQUE constraint is the
    # single source of truth for exact-duplicate admission.
    content_digest: Mapped[str] = mapped_column(String(64), nullable=False)

    # Chromaprint fingerprint (base64 transport form); null until analyzed
    perceptual_fingerprint: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Descriptive metadata, immutable after admission
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(64), nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)

    analysis_state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AnalysisState.PENDING, index=True
    )

    # Timestamps
    accepted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("content_digest", name="uq_audio_content_digest"),
        Index("ix_audio_accepted_at", "accepted_at"),
    )


class SimilarityWarning(Base):
    """A perceptually similar pair of audio files.

    audio_id_a is the file whose analysis found the pair, audio_id_b the stored
    candidate. pair_low/pair_high hold the same ids in sorted order so the
    unique constraint covers the unordered pair.
    """

    __tablename__ = "similarity_warnings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    audio_id_a: Mapped[str] = mapped_column(
        String(32), ForeignKey("audio_files.id"), nullable=False, index=True
    )
    audio_id_b: Mapped[str] = mapped_column(
        String(32), ForeignKey("audio_files.id"), nullable=False, index=True
    )
    pair_low: Mapped[str] = mapped_column(String(32), nullable=False)
    pair_high: Mapped[str] = mapped_column(String(32), nullable=False)

    # Denormalized for listing without joins
    filename_a: Mapped[str | None] = mapped_column(String(255), nullable=True)
    filename_b: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # 0-100, rounded to 2 decimals
    similarity_percent: Mapped[float] = mapped_column(Float, nullable=False)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_warning_pair"),
        Index("ix_warnings_detected_at", "detected_at"),
    )


class UploadAttempt(Base):
    """Append-only audit record, one per submission."""

    __tablename__ = "upload_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_digest: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    was_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
