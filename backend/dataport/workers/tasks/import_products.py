"""Celery tasks that advance product imports one bounded invocation at a time."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from dataport.core.config import get_settings
from dataport.db.session import get_fresh_session
from dataport.services import import_jobs
from dataport.services.errors import JobNotFoundError
from dataport.services.import_controller import ImportJobController
from dataport.storage.blob_store import BlobStoreError, get_blob_store
from dataport.utils.memory_monitor import force_gc, log_memory_status
from dataport.workers.celery_app import IMPORT_QUEUE, celery_app

logger = logging.getLogger(__name__)

settings = get_settings()

# Failures that may clear up on their own; anything else is a bug
TRANSIENT_ERRORS = (BlobStoreError, OperationalError)


def build_controller(session: Session) -> ImportJobController:
    return ImportJobController(
        session,
        get_blob_store(),
        chunk_size=settings.import_chunk_size,
        time_budget_seconds=settings.import_time_budget_seconds,
        error_detail_limit=settings.error_detail_limit,
    )


def fail_after_retries(session: Session, job_id: str, exc: Exception) -> None:
    """Give up on a job whose transient failure outlived its retries."""
    try:
        job = import_jobs.get_job(session, job_id)
        import_jobs.mark_failed(
            session,
            job,
            f"Import failed after {settings.import_max_retries} retries: {exc}",
            limit=settings.error_detail_limit,
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Could not mark job {job_id} failed: {e}", exc_info=True)


@celery_app.task(
    bind=True,
    name="dataport.workers.tasks.process_import_job",
    autoretry_for=TRANSIENT_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
    max_retries=settings.import_max_retries,
)
def process_import_job(self, job_id: str) -> dict | None:
    """Run one controller invocation and re-enqueue while the job needs more."""
    session = get_fresh_session()
    try:
        log_memory_status(f"job {job_id} invocation start")
        try:
            result = build_controller(session).run(job_id)
        except JobNotFoundError:
            logger.warning(f"Import job {job_id} no longer exists, dropping task")
            return None
        except TRANSIENT_ERRORS as exc:
            logger.warning(
                f"Transient failure on attempt {self.request.retries + 1}: {exc}",
                extra={"job_id": job_id},
            )
            if self.request.retries >= self.max_retries:
                fail_after_retries(session, job_id, exc)
            raise

        if result.continue_later:
            process_import_job.apply_async(args=(job_id,), queue=IMPORT_QUEUE)
        return asdict(result)
    finally:
        session.close()
        force_gc()


@celery_app.task(name="dataport.workers.tasks.process_pending_imports")
def process_pending_imports() -> dict | None:
    """Beat entry point: advance the oldest orphaned job by one invocation.

    Jobs with a live task chain checkpoint every chunk, so only jobs idle for
    ``import_idle_seconds`` are picked up. The invocation runs here and is not
    re-enqueued; an unfinished job is picked up again once it goes idle.
    """
    idle_before = import_jobs.utcnow() - timedelta(seconds=settings.import_idle_seconds)
    session = get_fresh_session()
    try:
        job = import_jobs.next_resumable_job(session, idle_before=idle_before)
        if job is None:
            logger.debug("No idle imports to resume")
            return None
        job_id = job.id
        logger.info("Resuming idle import from schedule", extra={"job_id": job_id})
        result = build_controller(session).run(job_id)
        return asdict(result)
    finally:
        session.close()
        force_gc()
