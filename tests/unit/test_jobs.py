from datetime import datetime, timezone

import pytest

from backend.app.services.jobs import enqueue_job, fetch_next_job, get_job, mark_job_failure, mark_job_success


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def test_fetch_next_job_claims_oldest_pending(db) -> None:
    first = enqueue_job(db, "table_archive", {"db": {"schema_name": "s", "table_name": "a"}})
    enqueue_job(db, "table_restore", {"db": {"schema_name": "s", "table_name": "b"}})

    job = fetch_next_job(db)

    assert job is not None
    assert job.job_id == first.job_id
    assert job.status == "running"


def test_enqueue_rejects_unknown_job_type(db) -> None:
    with pytest.raises(ValueError):
        enqueue_job(db, "replay_execute", {})


def test_retryable_failure_backs_off(db) -> None:
    job = enqueue_job(db, "table_archive", {}, max_retries=3)
    job = fetch_next_job(db)

    final = mark_job_failure(db, job, "connection reset", retryable=True)

    assert final is False
    assert job.status == "pending"
    assert job.retries == 1
    assert _aware(job.available_at_utc) > datetime.now(timezone.utc)
    assert fetch_next_job(db) is None


def test_non_retryable_failure_is_final(db) -> None:
    enqueue_job(db, "table_restore", {})
    job = fetch_next_job(db)

    assert mark_job_failure(db, job, "S3 manifest_file b/p/manifest does not exist!", retryable=False) is True
    assert get_job(db, job.job_id).status == "failed"


def test_retries_exhausted(db) -> None:
    enqueue_job(db, "table_archive", {}, max_retries=1)
    job = fetch_next_job(db)

    assert mark_job_failure(db, job, "boom") is True
    assert job.status == "failed"


def test_success_stores_result(db) -> None:
    enqueue_job(db, "table_restore", {})
    job = fetch_next_job(db)

    mark_job_success(db, job, {"schema": "s", "table": "t", "warnings": []})

    stored = get_job(db, job.job_id)
    assert stored.status == "completed"
    assert stored.result_json == {"schema": "s", "table": "t", "warnings": []}
