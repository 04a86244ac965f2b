"""Tests for audiodedup.blobstore (LocalBlobStore)."""

import io
import tempfile
from pathlib import Path

import pytest

from audiodedup.blobstore import BlobNotFoundError, BlobStoreError, LocalBlobStore, blob_key
from audiodedup.utils.atomic_io import TEMP_SUFFIX


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LocalBlobStore(Path(tmpdir))
        store.ensure_buckets()
        yield store


class TestPutGet:
    """Tests for put, get and content_type."""

    def test_put_bytes(self, store):
        key = blob_key("audio-files", "abc_song.mp3")

        size = store.put(key, b"bytes", content_type="audio/mpeg")

        assert size == 5
        assert store.get(key) == b"bytes"
        assert store.content_type(key) == "audio/mpeg"

    def test_put_stream(self, store):
        key = blob_key("temp-uploads", "x_song.wav")
        data = b"w" * 100_000

        assert store.put(key, io.BytesIO(data)) == len(data)
        assert store.get(key) == data
        assert store.content_type(key) is None

    def test_get_missing(self, store):
        with pytest.raises(BlobNotFoundError):
            store.get("audio-files/missing")

    def test_not_found_is_store_error(self):
        assert issubclass(BlobNotFoundError, BlobStoreError)

    @pytest.mark.parametrize("key", ["", "../escape", "audio-files/../../etc", "/abs/path"])
    def test_rejects_bad_keys(self, store, key):
        with pytest.raises(ValueError):
            store.path_for(key)


class TestMoveDelete:
    """Tests for move and delete."""

    def test_move(self, store):
        src = blob_key("temp-uploads", "u_song.mp3")
        dst = blob_key("audio-files", "digest_song.mp3")
        store.put(src, b"audio", content_type="audio/mpeg")

        store.move(src, dst)

        assert store.get(dst) == b"audio"
        assert store.content_type(dst) == "audio/mpeg"
        with pytest.raises(BlobNotFoundError):
            store.get(src)

    def test_move_missing(self, store):
        with pytest.raises(BlobNotFoundError):
            store.move("temp-uploads/none", "audio-files/none")

    def test_delete(self, store):
        key = blob_key("temp-uploads", "d_song.mp3")
        store.put(key, b"x", content_type="audio/mpeg")

        store.delete(key)

        assert not store.path_for(key).exists()
        assert store.content_type(key) is None

    def test_delete_missing_is_noop(self, store):
        store.delete("temp-uploads/never-existed")


class TestHousekeeping:
    def test_ensure_buckets(self, store):
        assert (store.root / "temp-uploads").is_dir()
        assert (store.root / "audio-files").is_dir()

    def test_cleanup_orphans(self, store):
        orphan = store.root / "audio-files" / f"abc_song.mp3{TEMP_SUFFIX}"
        orphan.write_bytes(b"partial")
        store.put("audio-files/keep.mp3", b"keep")

        assert store.cleanup_orphans() == 1
        assert not orphan.exists()
        assert store.get("audio-files/keep.mp3") == b"keep"
