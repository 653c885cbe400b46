"""Shared helpers for shaping job responses."""
from __future__ import annotations

from fastapi import HTTPException, status

from dataport.api.schemas.job import JobStatus, RowErrorRead
from dataport.db.models.import_job import ImportJob
from dataport.services.import_jobs import get_progress


def serialize_job(job: ImportJob) -> JobStatus:
    """Shape the job row's progress view into a response schema."""
    progress = get_progress(job)
    total_display = progress.total_rows if progress.total_rows is not None else "?"
    return JobStatus(
        id=progress.job_id,
        status=progress.status,
        file_name=progress.file_name,
        progress=progress.progress,
        message=f"Processed {progress.last_processed_row}/{total_display} rows",
        total_rows=progress.total_rows,
        last_processed_row=progress.last_processed_row,
        inserted_rows=progress.inserted_rows,
        updated_rows=progress.updated_rows,
        error_rows=progress.error_rows,
        error_message=progress.error_message,
        error_details=[RowErrorRead(**detail) for detail in progress.error_details],
        created_at=progress.created_at,
        started_at=progress.processing_started_at,
        finished_at=progress.completed_at,
    )


def ensure_job_access(job: ImportJob | None, client_id: int) -> ImportJob:
    """404 for unknown jobs, 403 for another tenant's job."""
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if job.client_id != client_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Job belongs to another client",
        )
    return job
