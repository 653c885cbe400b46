"""Endpoints for product CSV imports: small files inline, large files deferred."""

from __future__ import annotations

import logging
import secrets

from fastapi import (
    APIRouter,
    Depends,
    File,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dataport.api.dependencies.context import (
    get_client_id,
    get_operator_email,
    get_session,
    get_store,
)
from dataport.api.routers.job_helpers import ensure_job_access, serialize_job
from dataport.api.schemas.job import (
    ImportResult,
    InitUploadRequest,
    InitUploadResponse,
    JobStatus,
    RowErrorRead,
)
from dataport.core.config import Settings, get_settings
from dataport.db.models.import_job import STATUS_PENDING, ImportJob
from dataport.services import import_jobs
from dataport.services.import_controller import ImportJobController
from dataport.storage.blob_store import BlobStore, BlobStoreError, blob_key
from dataport.workers.tasks.import_products import process_import_job

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_csv_name(file_name: str | None) -> str:
    if not file_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file_name.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )
    return file_name


def _too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"File exceeds the {limit} byte limit for this upload",
    )


@router.post(
    "/products",
    summary="Import a small product CSV synchronously",
    response_model=ImportResult,
)
def import_products_now(
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
    operator: str | None = Depends(get_operator_email),
    store: BlobStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> ImportResult:
    """Run the whole import inside the request and report counts plus the first errors.

    A plain ``def`` so FastAPI runs the parse and upserts in its threadpool.
    """
    file_name = _check_csv_name(file.filename)
    content = file.file.read()
    if len(content) > settings.sync_import_max_bytes:
        raise _too_large(settings.sync_import_max_bytes)
    if not content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="CSV file is empty",
        )

    try:
        job = import_jobs.create_job(
            db,
            client_id=client_id,
            file_name=file_name,
            file_size=len(content),
            imported_by=operator,
        )
        job.blob_ref = store.put(blob_key(job.id, file_name), content)
        db.commit()

        controller = ImportJobController(
            db,
            store,
            chunk_size=settings.import_chunk_size,
            time_budget_seconds=None,
            error_detail_limit=settings.error_detail_limit,
        )
        result = controller.run_to_completion(job.id)
        job = import_jobs.get_job(db, job.id)
    except BlobStoreError as exc:
        db.rollback()
        logger.error(f"Storage error during sync import: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store uploaded file",
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error during sync import: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to import products",
        ) from exc

    preview = (job.error_details or [])[: settings.sync_error_preview_limit]
    return ImportResult(
        job_id=job.id,
        status=result.status,
        total_rows=result.total_rows or 0,
        inserted_rows=result.inserted_rows,
        updated_rows=result.updated_rows,
        error_rows=result.error_rows,
        errors=[RowErrorRead(**detail) for detail in preview],
    )


@router.post(
    "/products/init",
    summary="Open a deferred upload for a large product CSV",
    status_code=status.HTTP_201_CREATED,
    response_model=InitUploadResponse,
)
async def init_upload(
    payload: InitUploadRequest,
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
    operator: str | None = Depends(get_operator_email),
    settings: Settings = Depends(get_settings),
) -> InitUploadResponse:
    """Create a pending job and a one-time token for uploading its file."""
    file_name = _check_csv_name(payload.file_name)
    if payload.file_size > settings.max_upload_bytes:
        raise _too_large(settings.max_upload_bytes)

    try:
        job = import_jobs.create_job(
            db,
            client_id=client_id,
            file_name=file_name,
            file_size=payload.file_size,
            imported_by=operator,
            with_upload_token=True,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error creating import job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create import job",
        ) from exc

    return InitUploadResponse(
        job_id=job.id,
        upload_token=job.upload_token,
        upload_url=f"/api/imports/products/{job.id}/file",
        max_bytes=settings.max_upload_bytes,
    )


@router.put(
    "/products/{job_id}/file",
    summary="Upload the file of a deferred import",
    response_model=JobStatus,
)
async def upload_file(
    job_id: str,
    request: Request,
    x_upload_token: str | None = Header(default=None),
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
    store: BlobStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> JobStatus:
    """Store the raw request body as the job's blob; the token works once."""
    job = ensure_job_access(db.get(ImportJob, job_id), client_id)
    if not job.upload_token or not x_upload_token or not secrets.compare_digest(
        job.upload_token, x_upload_token
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or already used upload token",
        )
    if job.status != STATUS_PENDING or job.blob_ref:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {job.status} and no longer accepts a file",
        )

    content = await request.body()
    if len(content) > settings.max_upload_bytes:
        raise _too_large(settings.max_upload_bytes)
    if not content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="CSV file is empty",
        )

    try:
        job.blob_ref = store.put(blob_key(job.id, job.file_name), content)
        job.file_size = len(content)
        job.upload_token = None
        db.commit()
    except BlobStoreError as exc:
        db.rollback()
        logger.error(f"Storage error saving upload for job {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save uploaded file",
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error saving upload for job {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record uploaded file",
        ) from exc

    logger.info(f"Stored {len(content)} bytes for import job {job_id}")
    return serialize_job(job)


@router.post(
    "/products/{job_id}/enqueue",
    summary="Start background processing of a deferred import",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobStatus,
)
async def enqueue_import(
    job_id: str,
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> JobStatus:
    job = ensure_job_access(db.get(ImportJob, job_id), client_id)
    if job.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job already {job.status}",
        )
    if not job.blob_ref:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Upload the file before enqueueing the job",
        )

    try:
        # Explicitly send to imports queue to ensure routing works
        process_import_job.apply_async(args=(job.id,), queue="imports")
    except Exception as exc:
        # The beat schedule still picks the job up; report the failure anyway
        logger.error(f"Error enqueueing import job {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start import process",
        ) from exc

    logger.info(f"Enqueued import job {job_id}")
    return serialize_job(job)


@router.get(
    "/products/{job_id}/status",
    summary="Check import progress",
    response_model=JobStatus,
)
async def get_import_status(
    job_id: str,
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> JobStatus:
    """Expose latest processing stats to power UI progress bars (SSE/polling)."""
    try:
        job = ensure_job_access(db.get(ImportJob, job_id), client_id)
        return serialize_job(job)
    except HTTPException:
        raise
    except SQLAlchemyError as exc:
        logger.error(
            f"Database error fetching job status {job_id}: {exc}", exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve job status",
        ) from exc
