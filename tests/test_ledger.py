"""Tests for audiodedup.ledger (digest admission)."""

import threading

from sqlalchemy import func, select

from audiodedup.ledger import (
    AdmissionMetadata,
    Admitted,
    Duplicate,
    find_by_digest,
    find_by_id,
    list_analyzable,
    record_upload_attempt,
    try_admit,
)
from audiodedup.models import AnalysisState, AudioFile, UploadAttempt
from audiodedup.utils.hashing import sha256_bytes


def _metadata(name="song.mp3"):
    return AdmissionMetadata(
        original_filename=name,
        file_size=1234,
        mime_type="audio/mpeg",
        storage_key=f"audio-files/digest_{name}",
    )


class TestTryAdmit:
    """Tests for try_admit."""

    def test_first_admission(self, session):
        """A new digest is admitted and stored as pending."""
        digest = sha256_bytes(b"first")

        result = try_admit(session, digest, _metadata())

        assert isinstance(result, Admitted)
        audio = find_by_id(session, result.audio_id)
        assert audio.content_digest == digest
        assert audio.analysis_state == AnalysisState.PENDING
        assert audio.perceptual_fingerprint is None
        assert audio.original_filename == "song.mp3"

    def test_second_admission_is_duplicate(self, session):
        """The same digest is refused and no second row appears."""
        digest = sha256_bytes(b"same bytes")

        first = try_admit(session, digest, _metadata("a.mp3"))
        second = try_admit(session, digest, _metadata("b.mp3"))

        assert isinstance(first, Admitted)
        assert second == Duplicate(content_digest=digest)
        count = session.execute(select(func.count()).select_from(AudioFile)).scalar_one()
        assert count == 1

    def test_session_usable_after_duplicate(self, session):
        """The rollback after a conflict leaves the session usable."""
        digest = sha256_bytes(b"x")
        try_admit(session, digest, _metadata())
        try_admit(session, digest, _metadata())

        result = try_admit(session, sha256_bytes(b"y"), _metadata())

        assert isinstance(result, Admitted)

    def test_concurrent_admission_single_winner(self, temp_db):
        """Exactly one of many concurrent callers is admitted."""
        _, _, SessionFactory = temp_db
        digest = sha256_bytes(b"raced upload")
        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        errors = []
        lock = threading.Lock()

        def admit():
            session = SessionFactory()
            try:
                barrier.wait()
                result = try_admit(session, digest, _metadata())
                with lock:
                    results.append(result)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=admit) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sum(isinstance(r, Admitted) for r in results) == 1
        assert sum(isinstance(r, Duplicate) for r in results) == workers - 1

        session = SessionFactory()
        try:
            count = session.execute(select(func.count()).select_from(AudioFile)).scalar_one()
            assert count == 1
        finally:
            session.close()


class TestLookups:
    """Tests for find_by_digest and list_analyzable."""

    def test_find_by_digest(self, session):
        digest = sha256_bytes(b"lookup")
        result = try_admit(session, digest, _metadata())

        assert find_by_digest(session, digest).id == result.audio_id
        assert find_by_digest(session, sha256_bytes(b"other")) is None

    def test_find_by_id_unknown(self, session):
        assert find_by_id(session, "0" * 32) is None

    def test_list_analyzable_only_fingerprinted(self, session):
        """Only rows with a fingerprint are candidates; exclude_id is honored."""
        a = try_admit(session, sha256_bytes(b"a"), _metadata("a.mp3")).audio_id
        b = try_admit(session, sha256_bytes(b"b"), _metadata("b.mp3")).audio_id
        c = try_admit(session, sha256_bytes(b"c"), _metadata("c.mp3")).audio_id
        for audio_id in (a, b):
            find_by_id(session, audio_id).perceptual_fingerprint = "AQAA"
        session.commit()

        assert [f.id for f in list_analyzable(session)] == [a, b]
        assert [f.id for f in list_analyzable(session, exclude_id=a)] == [b]
        assert c not in [f.id for f in list_analyzable(session)]


class TestUploadAttempts:
    """Tests for record_upload_attempt."""

    def test_records_attempts(self, session):
        digest = sha256_bytes(b"audit")
        record_upload_attempt(session, digest, was_duplicate=False)
        record_upload_attempt(session, digest, was_duplicate=True)
        session.commit()

        attempts = session.execute(select(UploadAttempt)).scalars().all()
        assert [a.was_duplicate for a in attempts] == [False, True]
        assert all(a.content_digest == digest for a in attempts)
