"""Audio Dedup Pipeline - Ingest API service.

FastAPI service for audio upload, similarity warnings, and live notifications.
"""

__all__: list[str] = []
