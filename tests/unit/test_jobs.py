from __future__ import annotations

from utils.jobs import JobStore
from utils.schemas import JobStatus, Visit

MAX_ATTEMPTS = 3


def test_enqueue_returns_new_ids_in_input_order(store: JobStore, visits: list[Visit]) -> None:
    new_ids = store.enqueue(visits)

    assert len(new_ids) == 3
    assert new_ids == sorted(new_ids)
    assert [job.visit_number for job in store.get_pending(new_ids)] == [v.visit_number for v in visits]


def test_enqueue_same_visit_twice_on_same_day_yields_one_job(store: JobStore, visits: list[Visit], clock) -> None:
    first = store.enqueue(visits)
    clock.advance(minutes=10)
    second = store.enqueue(visits)

    assert len(first) == 3
    assert second == []
    assert store.status_counts()["pending"] == 3


def test_enqueue_skips_duplicates_within_one_batch(store: JobStore, visits: list[Visit]) -> None:
    new_ids = store.enqueue([visits[0], visits[1], visits[0]])

    assert len(new_ids) == 2


def test_same_visit_on_next_day_is_a_new_job(store: JobStore, visits: list[Visit], clock) -> None:
    store.enqueue(visits[:1])
    clock.advance(days=1)

    assert len(store.enqueue(visits[:1])) == 1


def test_new_job_starts_pending_with_zero_attempts(store: JobStore, visits: list[Visit]) -> None:
    (job_id,) = store.enqueue(visits[:1])
    job = store.get(job_id)

    assert job is not None
    assert job.status is JobStatus.PENDING
    assert job.attempt == 0
    assert job.response_data is None
    assert job.created_at == "2025-03-10 16:05:00"
    assert job.member_id == "0001111111111"


def test_get_pending_subset_keeps_ascending_order(store: JobStore, visits: list[Visit]) -> None:
    ids = store.enqueue(visits)

    selected = store.get_pending([ids[2], ids[0]])

    assert [job.id for job in selected] == [ids[0], ids[2]]


def test_get_pending_with_empty_subset_selects_nothing(store: JobStore, visits: list[Visit]) -> None:
    store.enqueue(visits)

    assert store.get_pending([]) == []
    assert len(store.get_pending()) == 3


def test_retry_rule_fails_job_on_third_attempt(store: JobStore, visits: list[Visit]) -> None:
    (job_id,) = store.enqueue(visits[:1])

    statuses = []
    for _ in range(MAX_ATTEMPTS):
        job = store.get(job_id)
        statuses.append((store.record_failure(job, "Verification URL not found", MAX_ATTEMPTS), store.get(job_id).attempt))

    assert statuses == [
        (JobStatus.PENDING, 1),
        (JobStatus.PENDING, 2),
        (JobStatus.FAILED, 3),
    ]
    failed = store.get(job_id)
    assert failed.status is JobStatus.FAILED
    assert failed.response_data == "Verification URL not found"
    assert store.get_pending() == []
    assert store.get_pending([job_id]) == []


def test_mark_done_stores_url_and_touches_updated_at(store: JobStore, visits: list[Visit], clock) -> None:
    (job_id,) = store.enqueue(visits[:1])
    clock.advance(minutes=1)

    store.mark_done(job_id, "https://icare.example/v/1")

    job = store.get(job_id)
    assert job.status is JobStatus.DONE
    assert job.attempt == 1
    assert job.response_data == "https://icare.example/v/1"
    assert job.updated_at == "2025-03-10 16:06:00"
    assert job.created_at == "2025-03-10 16:05:00"


def test_status_counts_and_recent(store: JobStore, visits: list[Visit]) -> None:
    ids = store.enqueue(visits)
    store.mark_done(ids[0], "https://icare.example/v/1")

    assert store.status_counts() == {"pending": 2, "done": 1, "failed": 0}
    assert [job.id for job in store.recent(limit=2)] == [ids[2], ids[1]]
