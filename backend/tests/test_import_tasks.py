"""Celery tasks: single invocations, re-enqueueing, retries and the beat sweep."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeTask, StepClock, build_csv
from dataport.db.models.import_job import ImportJob
from dataport.services import import_jobs
from dataport.storage.blob_store import BlobStoreError
from dataport.workers.tasks import import_products
from dataport.workers.tasks.import_products import process_import_job, process_pending_imports

IDLE_SINCE = datetime(2026, 1, 1, tzinfo=timezone.utc)


class UnreachableStore:
    """Blob store whose backend is down."""

    def fetch_bytes(self, ref):
        raise BlobStoreError("redis timeout")

    def put(self, key, data):
        raise BlobStoreError("redis timeout")

    def delete(self, ref):
        pass


@pytest.fixture
def worker_env(monkeypatch, db_session, blob_store):
    monkeypatch.setattr(import_products, "get_fresh_session", lambda: db_session)
    monkeypatch.setattr(import_products, "get_blob_store", lambda: blob_store)
    return monkeypatch


def test_task_runs_job_to_completion(worker_env, db_session, make_job):
    job_id = make_job(build_csv(12)).id

    result = process_import_job(job_id)

    assert result["status"] == "completed"
    assert result["inserted_rows"] == 12
    assert result["continue_later"] is False
    assert db_session.get(ImportJob, job_id).status == "completed"


def test_task_reenqueues_when_budget_runs_out(worker_env, db_session, make_job, make_controller):
    job_id = make_job(build_csv(12)).id
    fake = FakeTask()
    worker_env.setattr(
        import_products,
        "build_controller",
        lambda session: make_controller(chunk_size=2, time_budget_seconds=4, clock=StepClock()),
    )
    worker_env.setattr(import_products, "process_import_job", fake)

    result = process_import_job(job_id)

    assert result["continue_later"] is True
    assert result["last_processed_row"] == 4
    assert fake.calls == [{"args": (job_id,), "kwargs": None, "queue": "imports"}]


def test_task_ignores_unknown_job(worker_env):
    assert process_import_job("00000000-0000-0000-0000-000000000000") is None


def test_transient_failure_propagates_for_retry(worker_env, db_session, make_job):
    job_id = make_job(build_csv(3)).id
    worker_env.setattr(import_products, "get_blob_store", lambda: UnreachableStore())

    with pytest.raises(BlobStoreError):
        process_import_job(job_id)

    job = db_session.get(ImportJob, job_id)
    assert job.status == "processing"
    assert job.last_processed_row == 0


def test_exhausted_retries_fail_the_job(worker_env, db_session, blob_store, make_job):
    job = make_job(build_csv(3))
    job_id, blob_ref = job.id, job.blob_ref
    worker_env.setattr(import_products, "get_blob_store", lambda: UnreachableStore())

    process_import_job.push_request(retries=process_import_job.max_retries)
    try:
        with pytest.raises(BlobStoreError):
            process_import_job.run(job_id)
    finally:
        process_import_job.pop_request()

    job = db_session.get(ImportJob, job_id)
    assert job.status == "failed"
    assert "redis timeout" in job.error_message
    assert blob_store.fetch_bytes(blob_ref)


def test_beat_sweep_resumes_oldest_idle_job_with_a_file(worker_env, db_session, make_job):
    older = make_job(build_csv(4))
    newer = make_job(build_csv(4))
    awaiting_upload = import_jobs.create_job(db_session, client_id=1, file_name="later.csv")
    awaiting_upload.created_at = awaiting_upload.updated_at = IDLE_SINCE
    older.created_at = older.updated_at = IDLE_SINCE + timedelta(days=1)
    newer.created_at = newer.updated_at = IDLE_SINCE + timedelta(days=2)
    db_session.commit()
    older_id, newer_id = older.id, newer.id

    result = process_pending_imports()

    assert result["job_id"] == older_id
    assert db_session.get(ImportJob, older_id).status == "completed"
    assert db_session.get(ImportJob, newer_id).status == "pending"


def test_beat_sweep_with_nothing_to_do(worker_env, client_record):
    assert process_pending_imports() is None


def test_beat_sweep_leaves_jobs_with_a_live_chain_alone(worker_env, db_session, make_job, make_controller):
    job_id = make_job(build_csv(12)).id
    fake = FakeTask()
    worker_env.setattr(
        import_products,
        "build_controller",
        lambda session: make_controller(chunk_size=2, time_budget_seconds=4, clock=StepClock()),
    )
    worker_env.setattr(import_products, "process_import_job", fake)

    # The chain just checkpointed and queued its next hop
    process_import_job(job_id)
    assert len(fake.calls) == 1

    assert process_pending_imports() is None
    assert process_pending_imports() is None
    assert len(fake.calls) == 1
    assert db_session.get(ImportJob, job_id).last_processed_row == 4


def test_beat_sweep_advances_orphaned_job_without_reenqueueing(
    worker_env, db_session, make_job, make_controller
):
    job = make_job(build_csv(12))
    job_id = job.id
    fake = FakeTask()
    worker_env.setattr(
        import_products,
        "build_controller",
        lambda session: make_controller(chunk_size=2, time_budget_seconds=4, clock=StepClock()),
    )
    worker_env.setattr(import_products, "process_import_job", fake)
    make_controller(chunk_size=2, time_budget_seconds=4, clock=StepClock()).run(job_id)
    # Its task was lost: nothing has touched the row since
    job = db_session.get(ImportJob, job_id)
    job.updated_at = IDLE_SINCE
    db_session.commit()

    result = process_pending_imports()

    assert result["job_id"] == job_id
    assert result["continue_later"] is True
    assert result["last_processed_row"] == 8
    assert fake.calls == []
