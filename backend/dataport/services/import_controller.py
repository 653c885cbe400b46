"""Checkpointed orchestration of a product CSV import.

A job is processed in invocations. Each invocation fetches and tokenizes the
file once, then works through chunks of rows. After every chunk the upserted
products and the job's checkpoint (``last_processed_row`` plus counters) are
committed in one transaction, so a crash loses at most the chunk in flight
and a fresh invocation picks up from the job row alone.

An invocation stops when the rows run out, when its wall-clock budget runs
out or the worker crosses its memory limit between chunks (the caller
schedules another invocation), or when the job fails.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from dataport.db.models.import_job import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ImportJob,
)
from dataport.services import import_jobs
from dataport.services.column_mapping import get_column_mapping, resolve_column_indices
from dataport.services.csv_tokenizer import tokenize
from dataport.services.encoding import decode_bytes, detect_encoding
from dataport.services.errors import (
    BlobMissingError,
    EmptyFileError,
    FatalImportError,
    RowError,
    RowValidationError,
)
from dataport.services.product_upsert import upsert_products
from dataport.services.row_normalizer import ProductDraft, normalize_row
from dataport.storage.blob_store import BlobNotFoundError, BlobStore
from dataport.utils.memory_monitor import check_memory_exceeded, force_gc, log_memory_status

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


@dataclass
class PreparedFile:
    """A tokenized source file; lives for one invocation only."""

    encoding: str
    file_size: int
    rows: list[list[str]]
    indices: dict[str, int]

    @property
    def total_rows(self) -> int:
        return len(self.rows) - 1


@dataclass
class ChunkResult:
    start_row: int
    end_row: int
    inserted: int
    updated: int
    errors: int
    stopped_early: bool


@dataclass
class RunResult:
    job_id: str
    status: str
    total_rows: int | None
    last_processed_row: int
    inserted_rows: int
    updated_rows: int
    error_rows: int
    continue_later: bool

    @classmethod
    def from_job(cls, job: ImportJob, continue_later: bool = False) -> "RunResult":
        return cls(
            job_id=job.id,
            status=job.status,
            total_rows=job.total_rows,
            last_processed_row=job.last_processed_row,
            inserted_rows=job.inserted_rows,
            updated_rows=job.updated_rows,
            error_rows=job.error_rows,
            continue_later=continue_later,
        )


class ImportJobController:
    """Drive one import job from its last checkpoint."""

    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        time_budget_seconds: float | None = None,
        error_detail_limit: int = 100,
        clock: Callable[[], float] = time.monotonic,
        memory_exceeded: Callable[[], bool] = check_memory_exceeded,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.db = db
        self.blob_store = blob_store
        self.chunk_size = chunk_size
        self.time_budget_seconds = time_budget_seconds
        self.error_detail_limit = error_detail_limit
        self.clock = clock
        self.memory_exceeded = memory_exceeded
        self._deadline: float | None = None
        self._rows_this_run = 0
        self._memory_high_at_start = False

    # -- budget -----------------------------------------------------------

    def _start_budget(self) -> None:
        self._rows_this_run = 0
        self._deadline = (
            self.clock() + self.time_budget_seconds
            if self.time_budget_seconds is not None
            else None
        )

    def _budget_exhausted(self) -> bool:
        # Every invocation gets at least one row so a slow parse cannot stall a job
        if self._rows_this_run == 0:
            return False
        return self._deadline is not None and self.clock() >= self._deadline

    def _memory_stop(self) -> bool:
        """Memory pressure ends an invocation only between chunks.

        A worker already over its limit once the file is loaded gains nothing
        from a fresh invocation (RSS stays put and the file is parsed again),
        so in that case only the time budget applies.
        """
        return not self._memory_high_at_start and self.memory_exceeded()

    # -- preparation ------------------------------------------------------

    def _log(self, job: ImportJob, level: int, message: str) -> None:
        logger.log(level, message, extra={"job_id": job.id})

    def prepare(self, job: ImportJob) -> PreparedFile:
        """Fetch, decode and tokenize the job's file and resolve its columns.

        Raises:
            FatalImportError: the file is missing, unparseable, empty, or has
                no product code column.
            BlobStoreError: transient storage failure (safe to retry).
        """
        if not job.blob_ref:
            raise BlobMissingError("No uploaded file is attached to this import")
        try:
            data = self.blob_store.fetch_bytes(job.blob_ref)
        except BlobNotFoundError as e:
            raise BlobMissingError(f"Uploaded file is no longer available: {e}") from e

        encoding = job.encoding or detect_encoding(data)
        rows = tokenize(decode_bytes(data, encoding))
        if len(rows) < 2:
            raise EmptyFileError("CSV file is empty or has no data rows")

        indices = resolve_column_indices(rows[0], get_column_mapping(self.db, job.client_id))
        self._log(
            job,
            logging.INFO,
            f"Prepared {job.file_name}: {len(rows) - 1} rows, encoding {encoding}, "
            f"{len(indices)} mapped fields",
        )
        return PreparedFile(encoding=encoding, file_size=len(data), rows=rows, indices=indices)

    def _fail(self, job: ImportJob, message: str) -> RunResult:
        import_jobs.mark_failed(self.db, job, message, limit=self.error_detail_limit)
        self.db.commit()
        return RunResult.from_job(job)

    # -- chunks -----------------------------------------------------------

    def process_chunk(self, job: ImportJob, prepared: PreparedFile) -> ChunkResult:
        """Process rows ``last_processed_row + 1`` .. ``+ chunk_size`` and checkpoint.

        Re-running a chunk whose checkpoint never committed produces the same
        rows and counters: nothing of it was persisted and upserts are keyed.
        """
        total = prepared.total_rows
        start_row = job.last_processed_row + 1
        end_row = min(start_row + self.chunk_size - 1, total)

        drafts: list[ProductDraft] = []
        row_errors: list[RowError] = []
        last_consumed = start_row - 1
        stopped_early = False

        for row_number in range(start_row, end_row + 1):
            if self._budget_exhausted():
                stopped_early = True
                break
            # rows[0] is the header, so data row N sits at index N; N + 1 is its line
            try:
                drafts.append(
                    normalize_row(
                        prepared.rows[row_number],
                        prepared.indices,
                        job.client_id,
                        job.id,
                        row_number + 1,
                    )
                )
            except RowValidationError as e:
                row_errors.append(RowError(row_number + 1, str(e)))
            last_consumed = row_number
            self._rows_this_run += 1

        if last_consumed < start_row:
            return ChunkResult(start_row, last_consumed, 0, 0, 0, stopped_early)

        outcome = upsert_products(drafts, self.db)
        chunk_errors = row_errors + outcome.errors
        chunk_errors.sort(key=lambda err: err.row)
        error_count = len(row_errors) + outcome.failed

        job.inserted_rows += outcome.inserted
        job.updated_rows += outcome.updated
        job.error_rows += error_count
        job.error_details = import_jobs.merge_error_details(
            job.error_details, chunk_errors, self.error_detail_limit
        )
        job.last_processed_row = last_consumed
        if last_consumed >= total:
            self._finalize(job)
        self.db.commit()

        self._log(
            job,
            logging.INFO,
            f"Checkpoint {last_consumed}/{total}: +{outcome.inserted} inserted, "
            f"+{outcome.updated} updated, +{error_count} errors",
        )
        return ChunkResult(
            start_row, last_consumed, outcome.inserted, outcome.updated, error_count, stopped_early
        )

    def _finalize(self, job: ImportJob) -> None:
        """Pick the terminal status; committed together with the last checkpoint."""
        succeeded = job.inserted_rows + job.updated_rows
        if succeeded == 0 and job.error_rows > 0:
            import_jobs.transition(job, STATUS_FAILED)
            job.error_message = "Every row failed to import"
        else:
            import_jobs.transition(job, STATUS_COMPLETED)
        job.completed_at = import_jobs.utcnow()

    # -- entry points -----------------------------------------------------

    def run(self, job_id: str) -> RunResult:
        """Run one invocation: resume from the checkpoint until done or out of budget.

        Raises:
            JobNotFoundError: unknown job id.
            BlobStoreError, SQLAlchemyError: transient failure; the open
                transaction is rolled back and the last checkpoint stands.
        """
        self._start_budget()
        job = import_jobs.get_job(self.db, job_id)
        if job.is_terminal:
            self._log(job, logging.INFO, f"Import job already {job.status}, nothing to do")
            return RunResult.from_job(job)

        try:
            if job.status == STATUS_PENDING:
                import_jobs.transition(job, STATUS_PROCESSING)
                job.processing_started_at = import_jobs.utcnow()
                self.db.commit()

            try:
                prepared = self.prepare(job)
            except FatalImportError as e:
                return self._fail(job, str(e))

            if job.total_rows is None:
                job.total_rows = prepared.total_rows
                job.encoding = prepared.encoding
                job.file_size = prepared.file_size
                self.db.commit()
            elif job.total_rows != prepared.total_rows:
                return self._fail(
                    job,
                    f"Source file changed: expected {job.total_rows} rows, "
                    f"found {prepared.total_rows}",
                )

            self._memory_high_at_start = self.memory_exceeded()
            if self._memory_high_at_start:
                self._log(
                    job,
                    logging.WARNING,
                    "Worker over its memory limit after loading the file; "
                    "only the time budget will end this invocation",
                )
            return self._run_chunks(job, prepared)
        except Exception:
            self.db.rollback()
            raise

    def _run_chunks(self, job: ImportJob, prepared: PreparedFile) -> RunResult:
        chunks = 0
        while True:
            # An operator may have failed the job between chunks
            self.db.refresh(job)
            if job.status != STATUS_PROCESSING:
                self._log(job, logging.INFO, f"Stopping: job is {job.status}")
                return RunResult.from_job(job)

            if job.last_processed_row >= prepared.total_rows:
                self._finalize(job)
                self.db.commit()
                break

            result = self.process_chunk(job, prepared)
            chunks += 1
            if chunks % 10 == 0:
                force_gc()
                log_memory_status(f"job {job.id} after {chunks} chunks")

            if job.is_terminal:
                break
            if result.stopped_early:
                self._log(
                    job,
                    logging.INFO,
                    f"Budget spent at row {job.last_processed_row}/{prepared.total_rows}, "
                    "continuing in a new invocation",
                )
                return RunResult.from_job(job, continue_later=True)
            if self._memory_stop():
                self._log(
                    job,
                    logging.WARNING,
                    f"Memory limit reached at row {job.last_processed_row}/{prepared.total_rows}, "
                    "continuing in a new invocation",
                )
                return RunResult.from_job(job, continue_later=True)

        if job.status == STATUS_COMPLETED and job.blob_ref:
            self.blob_store.delete(job.blob_ref)
        self._log(
            job,
            logging.INFO,
            f"Import {job.status}: {job.inserted_rows} inserted, {job.updated_rows} updated, "
            f"{job.error_rows} errors of {job.total_rows} rows",
        )
        return RunResult.from_job(job)

    def run_to_completion(self, job_id: str, max_invocations: int = 10_000) -> RunResult:
        """Repeat invocations in-process until the job is terminal (small files)."""
        result = self.run(job_id)
        invocations = 1
        while result.continue_later and invocations < max_invocations:
            result = self.run(job_id)
            invocations += 1
        return result
