"""Audio Dedup Pipeline - Ingest API FastAPI application.

FastAPI service for audio upload with two-tier deduplication:
- exact duplicates are rejected synchronously (409)
- perceptual similarity is detected asynchronously; warnings are stored and
  pushed to live subscribers over Server-Sent Events

Run with:
    uvicorn services.ingest_api.main:app
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from audiodedup import __version__
from audiodedup.blobstore import get_blob_store
from audiodedup.config import CORS_ALLOW_ORIGINS, SSE_PING_SECONDS
from audiodedup.db import configure_session_factory, get_session_factory, init_db
from audiodedup.huey_app import AnalysisWorkerPool, huey
from audiodedup.notifications import NotificationHub, get_notification_hub
from audiodedup.schemas import (
    AllWarningsResponse,
    AudioWarningsResponse,
    IngestErrorResponse,
    UploadAcceptedResponse,
    UploadDuplicateResponse,
    WarningItem,
)
from audiodedup.warning_store import list_recent_warnings, list_warnings_for
from services.ingest_api.service import (
    IngestError,
    IngestErrorCode,
    ingest_upload_stream,
)

logger = logging.getLogger(__name__)

CONNECTED_EVENT = {"type": "connected", "message": "Listening for similarity warnings"}

# Seconds between disconnect checks while a subscriber is idle
SUBSCRIBER_POLL_SECONDS = 1.0


# --- Database Setup ---


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


# --- Lifespan ---


def _prepare_blob_store_safe() -> None:
    """Create bucket directories and remove orphan temp files (best-effort)."""
    try:
        store = get_blob_store()
        store.ensure_buckets()
        removed = store.cleanup_orphans()
        if removed > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", removed)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Blob store startup housekeeping failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup: database, blob store housekeeping, analysis workers.
    Shutdown: stop the workers, close all live subscriptions.
    """
    _, SessionFactory = init_db()
    configure_session_factory(SessionFactory)

    _prepare_blob_store_safe()

    pool = AnalysisWorkerPool()
    if not huey.immediate:
        pool.start()
    app.state.worker_pool = pool

    yield

    pool.stop()
    closed = get_notification_hub().close_all()
    if closed:
        logger.info("Closed %d live subscription(s) on shutdown", closed)


# --- FastAPI App ---


app = FastAPI(
    title="Audio Dedup Pipeline - Ingest API",
    description="Audio upload with exact-duplicate rejection and similarity warnings.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - VALIDATION_FAILED -> 400
    - HASH_FAILED, STORAGE_FAILED, INGEST_FAILED -> 500
    """
    if error_code == IngestErrorCode.VALIDATION_FAILED:
        return 400
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=IngestErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


# --- Endpoints ---


@app.post(
    "/upload",
    status_code=201,
    response_model=UploadAcceptedResponse,
    responses={
        400: {"model": IngestErrorResponse, "description": "Missing or unsupported file"},
        409: {"model": UploadDuplicateResponse, "description": "Exact duplicate"},
        500: {"model": IngestErrorResponse, "description": "Ingest failed"},
    },
    summary="Upload an audio file",
)
def upload_audio(
    session: Annotated[Session, Depends(get_db_session)],
    audio: Annotated[UploadFile | None, File(description="Audio file to ingest")] = None,
):
    """Upload an audio file.

    Runs in the threadpool: hashing, staging and admission complete before
    the response; fingerprint analysis is queued.
    """
    if audio is None:
        return make_error_response(IngestErrorCode.VALIDATION_FAILED, "No audio file provided")

    try:
        result = ingest_upload_stream(
            session=session,
            stream=audio.file,
            filename=audio.filename or "",
            mime_type=audio.content_type,
        )
    except IngestError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        # Log full exception server-side, return generic message to client
        logger.exception("Unexpected error during upload ingest")
        return make_error_response(
            IngestErrorCode.INGEST_FAILED,
            "An unexpected error occurred during ingest",
        )

    if result.duplicate:
        return JSONResponse(
            status_code=409,
            content=UploadDuplicateResponse(message=result.message).model_dump(by_alias=True),
        )
    return JSONResponse(
        status_code=201,
        content=UploadAcceptedResponse(audio_id=result.audio_id).model_dump(by_alias=True),
    )


@app.get(
    "/upload/warnings",
    response_model=AllWarningsResponse,
    summary="List recent similarity warnings",
)
def get_all_warnings(session: Annotated[Session, Depends(get_db_session)]):
    """Most recent similarity warnings across all files (newest first)."""
    warnings = [WarningItem.from_warning(w) for w in list_recent_warnings(session)]
    logger.info("All warnings requested: %d returned", len(warnings))
    return AllWarningsResponse(total=len(warnings), warnings=warnings)


@app.get(
    "/upload/{audio_id}/warnings",
    response_model=AudioWarningsResponse,
    summary="List similarity warnings for one file",
)
def get_warnings(audio_id: str, session: Annotated[Session, Depends(get_db_session)]):
    """Similarity warnings involving audio_id (newest first).

    Unknown ids return an empty list.
    """
    warnings = [WarningItem.from_warning(w) for w in list_warnings_for(session, audio_id)]
    logger.info("Warnings requested for audio_id=%s: %d found", audio_id, len(warnings))
    return AudioWarningsResponse(audio_id=audio_id, warnings=warnings)


async def warning_event_stream(
    request: Request,
    audio_id: str,
    hub: NotificationHub,
    poll_seconds: float = SUBSCRIBER_POLL_SECONDS,
) -> AsyncIterator[dict[str, Any]]:
    """Yield SSE messages for one subscriber until it disconnects.

    The subscription is registered before the ``connected`` message is sent
    and removed when the stream ends for any reason.
    """
    subscription = hub.subscribe(audio_id)
    try:
        yield {"data": json.dumps(CONNECTED_EVENT)}
        while not subscription.closed:
            if await request.is_disconnected():
                break
            event = await subscription.get(timeout=poll_seconds)
            if event is not None:
                yield {"data": json.dumps(event)}
    finally:
        hub.unsubscribe(subscription)


@app.get("/upload/{audio_id}/subscribe", summary="Stream similarity warnings (SSE)")
async def subscribe_warnings(audio_id: str, request: Request):
    """Server-Sent Events stream of similarity warnings for audio_id.

    Subscribing to an unknown id is allowed; it simply never fires.
    """
    return EventSourceResponse(
        warning_event_stream(request, audio_id, get_notification_hub()),
        ping=SSE_PING_SECONDS,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}
