"""Import job tracking endpoints: listing, detail and a live progress stream."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dataport.api.dependencies.context import get_client_id, get_session
from dataport.api.routers.job_helpers import ensure_job_access, serialize_job
from dataport.api.schemas.job import JobStatus
from dataport.db.models.import_job import TERMINAL_STATUSES, ImportJob
from dataport.db.session import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_POLL_SECONDS = 5
# Give up after this many polls without movement (5 minutes at 5s)
STREAM_MAX_IDLE_POLLS = 60


@router.get(
    "/",
    summary="List import jobs",
    response_model=list[JobStatus],
)
async def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status: str | None = Query(
        None, description="Filter by status (pending, processing, completed, failed)"
    ),
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> list[JobStatus]:
    """Return the caller's import jobs, newest first."""
    try:
        query = select(ImportJob).where(ImportJob.client_id == client_id)
        if status:
            query = query.where(ImportJob.status == status)
        query = query.order_by(ImportJob.created_at.desc(), ImportJob.id.desc()).limit(limit)
        return [serialize_job(job) for job in db.scalars(query).all()]
    except SQLAlchemyError as e:
        logger.error(f"Database error listing jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retrieve jobs") from e


@router.get(
    "/{job_id}",
    summary="Fetch job metadata and latest progress",
    response_model=JobStatus,
)
async def get_job(
    job_id: str,
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> JobStatus:
    return serialize_job(ensure_job_access(db.get(ImportJob, job_id), client_id))


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream for real-time progress",
)
async def stream_job_progress(
    job_id: str,
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> StreamingResponse:
    """Stream job progress updates via Server-Sent Events (SSE).

    Each ``data:`` event carries the JobStatus JSON. The stream closes with an
    ``event: close`` once the job is completed or failed, or with
    ``event: timeout`` when the job stops moving.
    """
    ensure_job_access(db.get(ImportJob, job_id), client_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_row = -1
        idle_polls = 0
        # The dependency session closes when the handler returns, so the
        # generator polls through its own
        session = SessionLocal()
        try:
            while True:
                session.expire_all()
                job = session.get(ImportJob, job_id)
                if not job:
                    yield "event: error\ndata: {\"error\": \"Job not found\"}\n\n"
                    break

                job_status = serialize_job(job)
                if job_status.last_processed_row != last_row:
                    last_row = job_status.last_processed_row
                    idle_polls = 0
                else:
                    idle_polls += 1

                yield f"data: {job_status.model_dump_json()}\n\n"

                if job_status.status in TERMINAL_STATUSES:
                    yield "event: close\ndata: {}\n\n"
                    break
                if idle_polls > STREAM_MAX_IDLE_POLLS:
                    yield "event: timeout\ndata: {}\n\n"
                    break

                await asyncio.sleep(STREAM_POLL_SECONDS)
        finally:
            session.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
