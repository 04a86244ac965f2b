"""Tests for audiodedup.fingerprint (fpcalc extractor)."""

import subprocess
from pathlib import Path
from unittest import mock

import pytest

from audiodedup.fingerprint import (
    FingerprintError,
    FingerprintOutputError,
    FpcalcExtractor,
    get_fingerprint_extractor,
    parse_fpcalc_output,
    set_fingerprint_extractor,
)


def _completed(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
    return subprocess.CompletedProcess(
        args=["fpcalc"], returncode=returncode, stdout=stdout, stderr=stderr
    )


class TestParseFpcalcOutput:
    """Tests for parse_fpcalc_output."""

    def test_parses_fingerprint_and_duration(self):
        result = parse_fpcalc_output("DURATION=187\nFINGERPRINT=AQADtEmUaEkS\n")
        assert result.fingerprint == "AQADtEmUaEkS"
        assert result.duration_seconds == 187.0

    def test_duration_optional(self):
        result = parse_fpcalc_output("FINGERPRINT=AQAD\n")
        assert result.duration_seconds is None

    def test_missing_fingerprint(self):
        with pytest.raises(FingerprintOutputError):
            parse_fpcalc_output("DURATION=12\n")

    def test_empty_fingerprint(self):
        with pytest.raises(FingerprintOutputError):
            parse_fpcalc_output("DURATION=12\nFINGERPRINT=\n")

    def test_bad_duration(self):
        with pytest.raises(FingerprintOutputError):
            parse_fpcalc_output("DURATION=abc\nFINGERPRINT=AQAD\n")


class TestFpcalcExtractor:
    """Tests for FpcalcExtractor with subprocess mocked."""

    def test_success(self):
        extractor = FpcalcExtractor(executable="/usr/bin/fpcalc", timeout_seconds=5)
        with mock.patch(
            "audiodedup.fingerprint.subprocess.run",
            return_value=_completed(b"DURATION=3\nFINGERPRINT=AQAB\n"),
        ) as run:
            result = extractor.extract(Path("/tmp/song.mp3"))

        assert result.fingerprint == "AQAB"
        assert run.call_args.args[0] == ["/usr/bin/fpcalc", "/tmp/song.mp3"]
        assert run.call_args.kwargs["timeout"] == 5

    def test_nonzero_exit(self):
        with mock.patch(
            "audiodedup.fingerprint.subprocess.run",
            return_value=_completed(stderr=b"ERROR: unable to open", returncode=2),
        ):
            with pytest.raises(FingerprintError, match="exited with 2"):
                FpcalcExtractor().extract(Path("/tmp/bad.mp3"))

    def test_timeout(self):
        with mock.patch(
            "audiodedup.fingerprint.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="fpcalc", timeout=1),
        ):
            with pytest.raises(FingerprintError, match="timed out"):
                FpcalcExtractor(timeout_seconds=1).extract(Path("/tmp/long.mp3"))

    def test_missing_binary(self):
        with mock.patch(
            "audiodedup.fingerprint.subprocess.run", side_effect=FileNotFoundError()
        ):
            with pytest.raises(FingerprintError, match="not found"):
                FpcalcExtractor(executable="nope").extract(Path("/tmp/x.mp3"))

    def test_output_error_is_fingerprint_error(self):
        assert issubclass(FingerprintOutputError, FingerprintError)


class TestExtractorRegistry:
    def test_set_and_reset(self):
        custom = FpcalcExtractor(executable="custom")
        set_fingerprint_extractor(custom)
        try:
            assert get_fingerprint_extractor() is custom
        finally:
            set_fingerprint_extractor(None)
        assert isinstance(get_fingerprint_extractor(), FpcalcExtractor)
        set_fingerprint_extractor(None)
