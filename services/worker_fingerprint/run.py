"""Audio Dedup Pipeline - Fingerprint Worker.

Analyzes an admitted audio file and looks for perceptually similar files.

Input: AudioFile.storage_key (blob store)
Output: AudioFile.perceptual_fingerprint, duration_seconds, analysis_state;
        at most one SimilarityWarning; a similarity_detected notification.

State machine:
- pending -> analyzed (no stored file reaches the threshold)
- pending -> matched (a warning was recorded)
- Any other state: no-op, so redelivered tasks are harmless.
- On failure the file stays pending. Nothing retries it.

Dependencies:
- The configured FingerprintExtractor (fpcalc by default)

Error codes:
- ARTIFACT_NOT_FOUND: no AudioFile row for the audio ID
- BLOB_FETCH_FAILED: stored bytes missing or unreadable
- EXTRACTOR_FAILED: the extractor could not run or exited with an error
- EXTRACTOR_OUTPUT_INVALID: the extractor produced no usable fingerprint
- WORKER_ERROR: unexpected failure (database, filesystem)
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from audiodedup.blobstore import BlobNotFoundError, BlobStoreError, LocalBlobStore, get_blob_store
from audiodedup.db import get_session_factory
from audiodedup.fingerprint import (
    FingerprintError,
    FingerprintExtractor,
    FingerprintOutputError,
    get_fingerprint_extractor,
)
from audiodedup.ledger import find_by_id
from audiodedup.models import AnalysisState, utc_now
from audiodedup.similarity import SimilarityEngine, SimilarityMatch

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# --- Error Codes ---


class AnalysisErrorCode:
    """Error codes for the fingerprint analysis stage."""

    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    BLOB_FETCH_FAILED = "BLOB_FETCH_FAILED"
    EXTRACTOR_FAILED = "EXTRACTOR_FAILED"
    EXTRACTOR_OUTPUT_INVALID = "EXTRACTOR_OUTPUT_INVALID"
    WORKER_ERROR = "WORKER_ERROR"


# --- Result Types ---


@dataclass
class AnalysisMetrics:
    """Metrics collected during analysis."""

    extract_time_ms: int = 0


@dataclass
class AnalysisResult:
    """Result of fingerprint worker execution."""

    ok: bool
    error_code: str | None = None
    message: str | None = None
    analysis_state: str | None = None
    match: SimilarityMatch | None = None
    notified: int = 0
    metrics: AnalysisMetrics = field(default_factory=AnalysisMetrics)


# --- Helpers ---


def _fetch_to_temp(store: LocalBlobStore, storage_key: str) -> Path:
    """Copy a stored blob into a local temp file for the extractor.

    The suffix is kept so extension-sniffing tools see the original type.
    """
    data = store.get(storage_key)
    suffix = Path(storage_key).suffix
    fd, tmp_name = tempfile.mkstemp(prefix="audiodedup-", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


# --- Main Entry Point ---


def analyze_audio(
    session: Session,
    audio_id: str,
    extractor: FingerprintExtractor | None = None,
    engine: SimilarityEngine | None = None,
    store: LocalBlobStore | None = None,
) -> AnalysisResult:
    """Fingerprint an audio file and record the first similar stored file.

    Fingerprint, state change and warning are committed together; the
    notification is broadcast only after that commit.

    Args:
        session: Database session.
        audio_id: The audio file to analyze.
        extractor: Fingerprint extractor (defaults to the process-wide one).
        engine: Similarity engine (defaults to one using the process hub).
        store: Blob store (defaults to the process-wide one).

    Returns:
        AnalysisResult with success/failure status.
    """
    extractor = extractor or get_fingerprint_extractor()
    engine = engine or SimilarityEngine()
    store = store or get_blob_store()
    metrics = AnalysisMetrics()

    audio = find_by_id(session, audio_id)
    if audio is None:
        logger.error("AudioFile not found for audio_id=%s", audio_id)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.ARTIFACT_NOT_FOUND,
            message=f"AudioFile not found: {audio_id}",
        )

    if audio.analysis_state != AnalysisState.PENDING:
        logger.info(
            "Analysis already complete for audio_id=%s (state=%s)", audio_id, audio.analysis_state
        )
        return AnalysisResult(
            ok=True,
            message="Analysis already complete",
            analysis_state=audio.analysis_state,
        )

    # 1. Fetch the stored bytes
    try:
        local_path = _fetch_to_temp(store, audio.storage_key)
    except BlobNotFoundError:
        logger.error("Stored audio missing for audio_id=%s key=%s", audio_id, audio.storage_key)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.BLOB_FETCH_FAILED,
            message=f"Stored audio not found: {audio.storage_key}",
        )
    except (BlobStoreError, OSError) as e:
        logger.error("Blob fetch failed for audio_id=%s: %s", audio_id, e)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.BLOB_FETCH_FAILED,
            message=str(e),
        )

    # 2. Extract the fingerprint
    try:
        start = time.monotonic()
        try:
            fingerprint = extractor.extract(local_path)
        finally:
            metrics.extract_time_ms = int((time.monotonic() - start) * 1000)
    except FingerprintOutputError as e:
        logger.error("Invalid fingerprint output for audio_id=%s: %s", audio_id, e)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.EXTRACTOR_OUTPUT_INVALID,
            message=str(e),
            analysis_state=AnalysisState.PENDING,
            metrics=metrics,
        )
    except FingerprintError as e:
        logger.error("Fingerprint extraction failed for audio_id=%s: %s", audio_id, e)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.EXTRACTOR_FAILED,
            message=str(e),
            analysis_state=AnalysisState.PENDING,
            metrics=metrics,
        )
    finally:
        local_path.unlink(missing_ok=True)

    logger.info(
        "Fingerprint generated for audio_id=%s (%s): duration=%s",
        audio_id,
        audio.original_filename,
        fingerprint.duration_seconds,
    )

    # 3. Persist the fingerprint and compare, in one transaction
    try:
        audio.perceptual_fingerprint = fingerprint.fingerprint
        audio.duration_seconds = fingerprint.duration_seconds
        match = engine.evaluate(
            session, audio_id, fingerprint.fingerprint, audio.original_filename
        )
        audio.analysis_state = AnalysisState.MATCHED if match else AnalysisState.ANALYZED
        audio.analyzed_at = utc_now()
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to store analysis for audio_id=%s", audio_id)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.WORKER_ERROR,
            message=f"Database update failed: {e}",
            analysis_state=AnalysisState.PENDING,
            metrics=metrics,
        )

    # 4. Notify subscribers (best-effort, after commit)
    notified = 0
    if match is not None:
        try:
            notified = engine.publish(match)
        except Exception:
            logger.error("Similarity notification failed for audio_id=%s", audio_id, exc_info=True)

    logger.info("Analysis complete for audio_id=%s: state=%s", audio_id, audio.analysis_state)

    return AnalysisResult(
        ok=True,
        message="Analysis completed successfully",
        analysis_state=audio.analysis_state,
        match=match,
        notified=notified,
        metrics=metrics,
    )


# --- Standalone Execution ---


def run_fingerprint_worker(audio_id: str) -> AnalysisResult:
    """Run the fingerprint worker for an audio file.

    Opens a session from the process-wide factory and calls analyze_audio.
    Unexpected exceptions are reported as WORKER_ERROR.

    Args:
        audio_id: The audio ID to analyze.

    Returns:
        AnalysisResult with success/failure status.
    """
    SessionFactory = get_session_factory()
    session = SessionFactory()

    try:
        return analyze_audio(session, audio_id)
    except Exception as e:
        logger.exception("Analysis failed unexpectedly for audio_id=%s", audio_id)
        return AnalysisResult(
            ok=False,
            error_code=AnalysisErrorCode.WORKER_ERROR,
            message=str(e),
        )
    finally:
        session.close()


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} <audio_id>")
        sys.exit(1)

    result = run_fingerprint_worker(sys.argv[1])
    if result.ok:
        print(f"Success: {result.analysis_state}")
        if result.match is not None:
            print(
                f"Similar to: {result.match.matched_audio_id} "
                f"({result.match.similarity_percent:.2f}%)"
            )
        sys.exit(0)
    else:
        print(f"Error: {result.error_code} - {result.message}")
        sys.exit(1)
