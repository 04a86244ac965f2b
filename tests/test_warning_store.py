"""Tests for audiodedup.warning_store."""

import pytest
from sqlalchemy import func, select

from audiodedup.ledger import AdmissionMetadata, try_admit
from audiodedup.models import SimilarityWarning
from audiodedup.utils.hashing import sha256_bytes
from audiodedup.warning_store import (
    find_warning_for_pair,
    list_recent_warnings,
    list_warnings_for,
    ordered_pair,
    record_warning,
)


def _admit(session, content: bytes, name: str) -> str:
    metadata = AdmissionMetadata(
        original_filename=name,
        file_size=len(content),
        mime_type="audio/wav",
        storage_key=f"audio-files/{name}",
    )
    return try_admit(session, sha256_bytes(content), metadata).audio_id


@pytest.fixture
def three_files(session):
    return (
        _admit(session, b"x", "x.wav"),
        _admit(session, b"y", "y.wav"),
        _admit(session, b"z", "z.wav"),
    )


def _count(session) -> int:
    return session.execute(select(func.count()).select_from(SimilarityWarning)).scalar_one()


class TestOrderedPair:
    def test_sorted(self):
        assert ordered_pair("b", "a") == ("a", "b")
        assert ordered_pair("a", "b") == ("a", "b")


class TestRecordWarning:
    """Tests for record_warning."""

    def test_records_pair(self, session, three_files):
        x, y, _ = three_files

        warning, created = record_warning(session, y, x, 92.5, "y.wav", "x.wav")
        session.commit()

        assert created is True
        assert warning.audio_id_a == y
        assert warning.audio_id_b == x
        assert warning.similarity_percent == 92.5
        assert warning.filename_a == "y.wav"
        assert _count(session) == 1

    def test_second_insert_is_noop(self, session, three_files):
        """A repeat for the same pair, in either order, changes nothing."""
        x, y, _ = three_files
        first, _ = record_warning(session, y, x, 92.5)
        session.commit()

        again, created = record_warning(session, x, y, 80.0)
        session.commit()

        assert created is False
        assert again.id == first.id
        assert again.similarity_percent == 92.5
        assert _count(session) == 1

    def test_same_file_rejected(self, session, three_files):
        x, _, _ = three_files
        with pytest.raises(ValueError):
            record_warning(session, x, x, 100.0)

    def test_find_either_order(self, session, three_files):
        x, y, z = three_files
        record_warning(session, y, x, 75.0)
        session.commit()

        assert find_warning_for_pair(session, x, y) is not None
        assert find_warning_for_pair(session, y, x) is not None
        assert find_warning_for_pair(session, x, z) is None


class TestListing:
    """Tests for list_warnings_for and list_recent_warnings."""

    def test_list_for_file(self, session, three_files):
        """Warnings naming the file on either side, newest first."""
        x, y, z = three_files
        record_warning(session, y, x, 75.0)
        session.commit()
        record_warning(session, z, x, 85.0)
        session.commit()

        warnings_x = list_warnings_for(session, x)
        warnings_y = list_warnings_for(session, y)

        assert [w.similarity_percent for w in warnings_x] == [85.0, 75.0]
        assert [w.audio_id_a for w in warnings_y] == [y]
        assert list_warnings_for(session, "unknown") == []

    def test_recent_respects_limit(self, session, three_files):
        x, y, z = three_files
        record_warning(session, y, x, 75.0)
        session.commit()
        record_warning(session, z, y, 85.0)
        session.commit()

        recent = list_recent_warnings(session, limit=1)

        assert len(recent) == 1
        assert recent[0].similarity_percent == 85.0
