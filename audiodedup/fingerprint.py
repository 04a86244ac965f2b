"""Audio Dedup Pipeline - Acoustic fingerprint extraction.

The extractor is an injected capability: anything with
``extract(path) -> FingerprintResult`` can replace the default FpcalcExtractor
(an in-process library, a remote service, a fake in tests) without touching the
rest of the pipeline.

Dependencies:
- FpcalcExtractor requires Chromaprint's fpcalc installed and in PATH
  (or AUDIODEDUP_FPCALC_PATH).
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from audiodedup.config import FPCALC_PATH, FPCALC_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FingerprintResult:
    """Output of an extractor: opaque fingerprint string plus duration."""

    fingerprint: str
    duration_seconds: float | None


class FingerprintError(Exception):
    """The extractor could not produce a fingerprint."""


class FingerprintOutputError(FingerprintError):
    """The extractor ran but its output was malformed."""


class FingerprintExtractor(Protocol):
    def extract(self, path: Path) -> FingerprintResult: ...


class FpcalcExtractor:
    """Runs ``fpcalc <file>`` and parses its KEY=VALUE output."""

    def __init__(
        self, executable: str = FPCALC_PATH, timeout_seconds: int = FPCALC_TIMEOUT_SECONDS
    ):
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    def extract(self, path: Path) -> FingerprintResult:
        """Fingerprint a local audio file.

        Raises:
            FingerprintError: If fpcalc is missing, fails, or times out.
            FingerprintOutputError: If no FINGERPRINT line is produced.
        """
        cmd = [self.executable, str(path)]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                check=False,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise FingerprintError(f"fpcalc timed out after {self.timeout_seconds}s") from e
        except FileNotFoundError as e:
            raise FingerprintError(f"fpcalc not found: {self.executable}") from e
        except OSError as e:
            raise FingerprintError(f"fpcalc execution failed: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            logger.error("Fingerprint computation failed for %s: %s", path, stderr)
            raise FingerprintError(f"fpcalc exited with {result.returncode}: {stderr[:200]}")

        return parse_fpcalc_output(result.stdout.decode("utf-8", errors="replace"))


def parse_fpcalc_output(stdout: str) -> FingerprintResult:
    """Parse fpcalc's default output.

    Example::

        DURATION=187
        FINGERPRINT=AQADtEmUaEkS...

    Raises:
        FingerprintOutputError: If the FINGERPRINT line is missing or empty,
            or DURATION is not a number.
    """
    values: dict[str, str] = {}
    for line in stdout.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values.setdefault(key.strip().upper(), value.strip())

    fingerprint = values.get("FINGERPRINT")
    if not fingerprint:
        raise FingerprintOutputError("Fingerprint not generated")

    duration = None
    if values.get("DURATION"):
        try:
            duration = float(values["DURATION"])
        except ValueError as e:
            raise FingerprintOutputError(f"Invalid DURATION value: {values['DURATION']!r}") from e

    return FingerprintResult(fingerprint=fingerprint, duration_seconds=duration)


# Process-wide extractor, replaceable for tests or alternate backends
_extractor: FingerprintExtractor | None = None


def get_fingerprint_extractor() -> FingerprintExtractor:
    global _extractor
    if _extractor is None:
        _extractor = FpcalcExtractor()
    return _extractor


def set_fingerprint_extractor(extractor: FingerprintExtractor | None) -> None:
    """Install an extractor. None restores the fpcalc default."""
    global _extractor
    _extractor = extractor
