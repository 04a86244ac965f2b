"""Audio Dedup Pipeline - Pydantic models for API responses.

Upload and warning payloads use camelCase field names on the wire
(``audioId``, ``similarityPercent``); Python code uses snake_case and dumps
with ``by_alias=True``.
"""

from datetime import UTC, datetime  # noqa: I001
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for camelCase response payloads."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# --- Response Models ---


class UploadAcceptedResponse(_WireModel):
    """Response for a newly admitted upload (201)."""

    duplicate: bool = Field(default=False, description="Always false for admitted uploads")
    audio_id: str = Field(..., description="Identifier of the admitted audio file")


class UploadDuplicateResponse(_WireModel):
    """Response for an exact binary duplicate (409)."""

    duplicate: bool = Field(default=True, description="Always true for duplicates")
    message: str = Field(default="Exact duplicate detected", description="Human-readable reason")


class FileRef(_WireModel):
    """One side of a similar pair."""

    id: str = Field(..., description="Audio ID")
    filename: str | None = Field(default=None, description="Original filename")


class WarningItem(_WireModel):
    """A recorded similarity warning.

    file1 is the file whose analysis found the pair, file2 the stored file it
    matched.
    """

    id: str = Field(..., description="Warning ID")
    file1: FileRef
    file2: FileRef
    similarity_percent: float = Field(..., ge=0, le=100, description="Similarity, 2 decimals")
    detected_at: datetime = Field(..., description="When the pair was detected")

    @classmethod
    def from_warning(cls, warning: Any) -> "WarningItem":
        """Build from a SimilarityWarning row.

        SQLite hands back naive datetimes; they are stored as UTC.
        """
        detected_at = warning.detected_at
        if detected_at.tzinfo is None:
            detected_at = detected_at.replace(tzinfo=UTC)
        return cls(
            id=warning.id,
            file1=FileRef(id=warning.audio_id_a, filename=warning.filename_a),
            file2=FileRef(id=warning.audio_id_b, filename=warning.filename_b),
            similarity_percent=warning.similarity_percent,
            detected_at=detected_at,
        )


class AudioWarningsResponse(_WireModel):
    """Warnings involving one audio file, newest first."""

    audio_id: str
    warnings: list[WarningItem]


class AllWarningsResponse(_WireModel):
    """Most recent warnings across all files, newest first."""

    total: int = Field(..., ge=0, description="Number of warnings returned")
    warnings: list[WarningItem]


class IngestErrorResponse(BaseModel):
    """Response for failed ingest operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "UploadAcceptedResponse",
    "UploadDuplicateResponse",
    "FileRef",
    "WarningItem",
    "AudioWarningsResponse",
    "AllWarningsResponse",
    "IngestErrorResponse",
]
