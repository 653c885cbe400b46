"""Persistence helpers for ImportJob rows and the progress read model."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dataport.db.models.import_job import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ImportJob,
)
from dataport.services.errors import InvalidTransitionError, JobNotFoundError, RowError

logger = logging.getLogger(__name__)

_FORWARD_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PROCESSING, STATUS_FAILED},
    STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_job(
    db: Session,
    *,
    client_id: int,
    file_name: str,
    file_size: int | None = None,
    blob_ref: str | None = None,
    imported_by: str | None = None,
    with_upload_token: bool = False,
) -> ImportJob:
    job = ImportJob(
        client_id=client_id,
        file_name=file_name,
        file_size=file_size,
        blob_ref=blob_ref,
        imported_by=imported_by,
        status=STATUS_PENDING,
        last_processed_row=0,
        inserted_rows=0,
        updated_rows=0,
        error_rows=0,
        upload_token=secrets.token_urlsafe(32) if with_upload_token else None,
    )
    db.add(job)
    db.flush()
    logger.info(f"Created import job {job.id} for client {client_id}: {file_name}")
    return job


def get_job(db: Session, job_id: str) -> ImportJob:
    job = db.get(ImportJob, job_id)
    if job is None:
        raise JobNotFoundError(f"Import job not found: {job_id}")
    return job


def transition(job: ImportJob, new_status: str) -> None:
    """Move a job forward; backward or sideways moves are rejected."""
    if new_status == job.status:
        return
    if new_status not in _FORWARD_TRANSITIONS.get(job.status, set()):
        raise InvalidTransitionError(
            f"Import job {job.id} cannot move from {job.status} to {new_status}"
        )
    job.status = new_status


def update_job(db: Session, job: ImportJob, **fields: Any) -> ImportJob:
    """Apply a partial update; a ``status`` field goes through ``transition``."""
    new_status = fields.pop("status", None)
    if new_status is not None:
        transition(job, new_status)
    for name, value in fields.items():
        if not hasattr(ImportJob, name):
            raise AttributeError(f"ImportJob has no field {name}")
        setattr(job, name, value)
    db.flush()
    return job


def merge_error_details(
    existing: list[dict] | None, new: Iterable[RowError], limit: int
) -> list[dict]:
    """Keep the earliest ``limit`` errors; later ones only bump the counter."""
    details = list(existing or [])
    for error in new:
        if len(details) >= limit:
            break
        details.append(error.to_dict())
    return details


def mark_failed(db: Session, job: ImportJob, message: str, limit: int = 100) -> ImportJob:
    """Terminally fail a job with a job-level message. Terminal jobs are left alone."""
    if job.is_terminal:
        return job
    transition(job, STATUS_FAILED)
    job.error_message = message
    job.error_details = merge_error_details(job.error_details, [RowError(0, message)], limit)
    job.completed_at = utcnow()
    db.flush()
    logger.warning(f"Import job {job.id} failed: {message}", extra={"job_id": job.id})
    return job


def next_resumable_job(db: Session, idle_before: datetime | None = None) -> ImportJob | None:
    """Oldest pending or processing job that has its file uploaded.

    With ``idle_before``, only jobs whose row has not changed since then are
    returned; a job that is being worked on checkpoints every chunk.
    """
    stmt = select(ImportJob).where(
        ImportJob.status.in_((STATUS_PENDING, STATUS_PROCESSING)),
        ImportJob.blob_ref.is_not(None),
    )
    if idle_before is not None:
        last_touched = func.coalesce(ImportJob.updated_at, ImportJob.created_at)
        stmt = stmt.where(last_touched < idle_before)
    stmt = stmt.order_by(ImportJob.created_at.asc(), ImportJob.id.asc()).limit(1)
    return db.scalars(stmt).first()


@dataclass(frozen=True)
class ImportProgress:
    job_id: str
    status: str
    file_name: str
    total_rows: int | None
    last_processed_row: int
    progress: int
    inserted_rows: int
    updated_rows: int
    error_rows: int
    error_message: str | None
    error_details: list[dict]
    created_at: datetime | None
    processing_started_at: datetime | None
    completed_at: datetime | None


def get_progress(job: ImportJob) -> ImportProgress:
    """Read-only view of a job for pollers; percent of rows consumed."""
    total = job.total_rows or 0
    progress = round(job.last_processed_row / total * 100) if total > 0 else 0
    return ImportProgress(
        job_id=job.id,
        status=job.status,
        file_name=job.file_name,
        total_rows=job.total_rows,
        last_processed_row=job.last_processed_row,
        progress=progress,
        inserted_rows=job.inserted_rows,
        updated_rows=job.updated_rows,
        error_rows=job.error_rows,
        error_message=job.error_message,
        error_details=list(job.error_details or []),
        created_at=job.created_at,
        processing_started_at=job.processing_started_at,
        completed_at=job.completed_at,
    )
