"""Audio Dedup Pipeline - Similarity warning store.

At most one warning exists per unordered pair of audio files. The pair is
stored in sorted order (pair_low, pair_high) under a unique constraint, and
record_warning() uses INSERT ... ON CONFLICT DO NOTHING so a second insert of
the same pair is a no-op rather than an error, even when two analyses race.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.dialects.sqlite import insert

from audiodedup.config import WARNINGS_LIST_LIMIT
from audiodedup.models import SimilarityWarning, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def ordered_pair(audio_id_a: str, audio_id_b: str) -> tuple[str, str]:
    """Return the two ids in sorted order (the unordered-pair key)."""
    return (audio_id_a, audio_id_b) if audio_id_a <= audio_id_b else (audio_id_b, audio_id_a)


def find_warning_for_pair(
    session: Session, audio_id_a: str, audio_id_b: str
) -> SimilarityWarning | None:
    """Find the warning for a pair, in either order."""
    low, high = ordered_pair(audio_id_a, audio_id_b)
    stmt = select(SimilarityWarning).where(
        SimilarityWarning.pair_low == low,
        SimilarityWarning.pair_high == high,
    )
    return session.execute(stmt).scalar_one_or_none()


def record_warning(
    session: Session,
    audio_id_a: str,
    audio_id_b: str,
    similarity_percent: float,
    filename_a: str | None = None,
    filename_b: str | None = None,
) -> tuple[SimilarityWarning, bool]:
    """Insert a warning for a pair unless one already exists.

    Note:
        Executes within the caller's transaction; does NOT commit.

    Args:
        session: Active database session.
        audio_id_a: The file whose analysis found the pair.
        audio_id_b: The stored candidate.
        similarity_percent: Similarity, rounded to 2 decimals.
        filename_a: Original filename of audio_id_a.
        filename_b: Original filename of audio_id_b.

    Returns:
        Tuple of (warning, created). created is False when the pair was
        already recorded; the existing row is returned unchanged.

    Raises:
        ValueError: If both ids are the same file.
    """
    if audio_id_a == audio_id_b:
        raise ValueError("A similarity warning needs two distinct audio files")

    low, high = ordered_pair(audio_id_a, audio_id_b)
    stmt = (
        insert(SimilarityWarning)
        .values(
            id=uuid.uuid4().hex,
            audio_id_a=audio_id_a,
            audio_id_b=audio_id_b,
            pair_low=low,
            pair_high=high,
            filename_a=filename_a,
            filename_b=filename_b,
            similarity_percent=similarity_percent,
            detected_at=utc_now(),
        )
        .on_conflict_do_nothing(index_elements=["pair_low", "pair_high"])
    )
    created = session.execute(stmt).rowcount == 1
    if not created:
        logger.info("Warning for pair %s/%s already recorded", low, high)

    warning = find_warning_for_pair(session, audio_id_a, audio_id_b)
    return warning, created


def list_warnings_for(session: Session, audio_id: str) -> Sequence[SimilarityWarning]:
    """All warnings involving audio_id, newest first."""
    stmt = (
        select(SimilarityWarning)
        .where(
            or_(
                SimilarityWarning.audio_id_a == audio_id,
                SimilarityWarning.audio_id_b == audio_id,
            )
        )
        .order_by(SimilarityWarning.detected_at.desc(), SimilarityWarning.id)
    )
    return session.execute(stmt).scalars().all()


def list_recent_warnings(
    session: Session, limit: int = WARNINGS_LIST_LIMIT
) -> Sequence[SimilarityWarning]:
    """Most recent warnings across all files, newest first."""
    stmt = (
        select(SimilarityWarning)
        .order_by(SimilarityWarning.detected_at.desc(), SimilarityWarning.id)
        .limit(limit)
    )
    return session.execute(stmt).scalars().all()
