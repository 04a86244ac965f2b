"""Audio Dedup Pipeline - Perceptual similarity.

Fingerprints are compared in their base64 transport form:

    distance = |len_a - len_b| * 8 + popcount(a XOR b over the shared prefix)
    max_bits = max(len(encoded_a), len(encoded_b)) * 6
    percent  = (max_bits - distance) / max_bits * 100

Two files are similar when percent >= SIMILARITY_THRESHOLD_PERCENT. The scan
over stored fingerprints stops at the first match (oldest admission first).
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from audiodedup.ledger import list_analyzable
from audiodedup.models import utc_now
from audiodedup.notifications import NotificationHub, get_notification_hub
from audiodedup.warning_store import record_warning

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD_PERCENT = 70.0

# Bits carried by one base64 character
ENCODED_CHAR_BITS = 6

_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


def decode_fingerprint(fingerprint: str | None) -> bytes:
    """Decode a fingerprint from standard or URL-safe base64.

    Padding is optional and whitespace is ignored. Undecodable input yields
    empty bytes.
    """
    text = "".join((fingerprint or "").split()).translate(_URLSAFE_TO_STANDARD).rstrip("=")
    if len(text) % 4 == 1:
        # A lone trailing character carries no complete byte
        text = text[:-1]
    if not text:
        return b""
    try:
        return base64.b64decode(text + "=" * (-len(text) % 4), validate=False)
    except (binascii.Error, ValueError):
        logger.error("Fingerprint decoding failed", exc_info=True)
        return b""


def fingerprint_distance(fingerprint_a: str | None, fingerprint_b: str | None) -> float:
    """Bit distance between two encoded fingerprints.

    Returns:
        Number of differing bits, or math.inf when either side decodes to
        nothing.
    """
    a = decode_fingerprint(fingerprint_a)
    b = decode_fingerprint(fingerprint_b)
    if not a or not b:
        return math.inf

    shared = min(len(a), len(b))
    xor = int.from_bytes(a[:shared], "big") ^ int.from_bytes(b[:shared], "big")
    return abs(len(a) - len(b)) * 8 + xor.bit_count()


def similarity_percent(fingerprint_a: str | None, fingerprint_b: str | None) -> float:
    """Similarity in percent (unrounded; negative or -inf when far apart)."""
    max_bits = max(len(fingerprint_a or ""), len(fingerprint_b or "")) * ENCODED_CHAR_BITS
    if max_bits == 0:
        return -math.inf
    distance = fingerprint_distance(fingerprint_a, fingerprint_b)
    return (max_bits - distance) * 100 / max_bits


def is_match(percent: float) -> bool:
    return percent >= SIMILARITY_THRESHOLD_PERCENT


def round_percent(percent: float) -> float:
    """Round to 2 decimals with ties away from zero (70.125 -> 70.13)."""
    return float(Decimal(percent).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SimilarityMatch:
    """First stored file found similar to the file under analysis."""

    audio_id: str
    filename: str | None
    matched_audio_id: str
    matched_filename: str | None
    similarity_percent: float
    warning_created: bool = True


class SimilarityEngine:
    """Compares a freshly fingerprinted file against the stored fingerprints."""

    def __init__(self, hub_getter: Callable[[], NotificationHub] = get_notification_hub):
        self._hub_getter = hub_getter

    def evaluate(
        self,
        session: Session,
        audio_id: str,
        fingerprint: str,
        filename: str | None = None,
    ) -> SimilarityMatch | None:
        """Scan stored fingerprints and record a warning for the first match.

        Note:
            The warning is written in the caller's transaction; does NOT
            commit. Call publish() after the commit.

        Returns:
            The match, or None when no stored file reaches the threshold.
        """
        candidates = list_analyzable(session, exclude_id=audio_id)
        logger.debug("Comparing audio_id=%s against %d fingerprints", audio_id, len(candidates))

        for candidate in candidates:
            percent = similarity_percent(fingerprint, candidate.perceptual_fingerprint)
            if not is_match(percent):
                continue

            rounded = round_percent(percent)
            logger.warning(
                "Similar audio file detected: audio_id=%s (%s) ~ audio_id=%s (%s) at %.2f%%",
                audio_id,
                filename,
                candidate.id,
                candidate.original_filename,
                rounded,
            )
            _, created = record_warning(
                session,
                audio_id,
                candidate.id,
                rounded,
                filename_a=filename,
                filename_b=candidate.original_filename,
            )
            return SimilarityMatch(
                audio_id=audio_id,
                filename=filename,
                matched_audio_id=candidate.id,
                matched_filename=candidate.original_filename,
                similarity_percent=rounded,
                warning_created=created,
            )

        logger.debug("No similar files found for audio_id=%s", audio_id)
        return None

    def publish(self, match: SimilarityMatch) -> int:
        """Broadcast a committed match to subscribers of both files.

        A pair that was already recorded is not announced again.

        Returns:
            Number of deliveries scheduled.
        """
        if not match.warning_created:
            return 0
        return self._hub_getter().broadcast(
            match.audio_id, match.matched_audio_id, similarity_event(match)
        )


def similarity_event(match: SimilarityMatch) -> dict[str, Any]:
    """Build the ``similarity_detected`` notification payload."""
    return {
        "type": "similarity_detected",
        "file1": {"id": match.audio_id, "filename": match.filename},
        "file2": {"id": match.matched_audio_id, "filename": match.matched_filename},
        "similarityPercent": match.similarity_percent,
        "timestamp": utc_now().isoformat(),
    }
