"""
Job Store - Durable Verification Work Queue

Owns the ``jobs`` table. Each visit gets at most one job per calendar day; a job
starts ``pending`` and ends ``done`` or ``failed``. Rows are never deleted, so the
table doubles as the audit trail of every verification attempt.

Usage:
    from utils.jobs import JobStore

    store = JobStore()
    new_ids = store.enqueue(visits)
    for job in store.get_pending(new_ids):
        ...
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path

from utils.config import local_now
from utils.db import connect
from utils.schemas import Job, JobStatus, Visit

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class JobStore:
    """SQLite-backed store for verification jobs."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.db_path = db_path
        self.clock = clock

    def _timestamp(self) -> str:
        return self.clock().strftime(TIMESTAMP_FORMAT)

    def enqueue(self, visits: Iterable[Visit]) -> list[int]:
        """
        Insert a pending job for every visit that has no job yet today.

        The whole batch runs inside one write transaction so the existence check
        and the insert cannot interleave with another writer.

        Args:
            visits: Visit records extracted from SIMRS

        Returns:
            Ids of the inserted jobs, in input order. Duplicates are skipped.

        Raises:
            sqlite3.Error: If the store is unavailable
        """
        now = self.clock()
        created_at = now.strftime(TIMESTAMP_FORMAT)
        today = now.date().isoformat()
        new_ids: list[int] = []
        skipped = 0

        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            for visit in visits:
                existing = conn.execute(
                    "SELECT id FROM jobs WHERE visit_number = ? AND date(created_at) = ?",
                    (visit.visit_number, today),
                ).fetchone()
                if existing:
                    skipped += 1
                    continue

                cursor = conn.execute(
                    """
                    INSERT INTO jobs (visit_number, member_id, doctor_code, clinic_name,
                                      status, attempt, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        visit.visit_number,
                        visit.member_id,
                        visit.doctor_code,
                        visit.clinic_name,
                        JobStatus.PENDING.value,
                        created_at,
                        created_at,
                    ),
                )
                new_ids.append(cursor.lastrowid)

        logger.debug("Enqueue finished: inserted=%d, skipped=%d", len(new_ids), skipped)
        return new_ids

    def get_pending(self, job_ids: Sequence[int] | None = None) -> list[Job]:
        """
        Select pending jobs in ascending id order.

        Args:
            job_ids: Restrict the selection to these ids; None selects every pending job

        Returns:
            Pending jobs, oldest first
        """
        if job_ids is not None and len(job_ids) == 0:
            return []

        with connect(self.db_path) as conn:
            if job_ids is not None:
                placeholders = ",".join("?" for _ in job_ids)
                rows = conn.execute(
                    f"SELECT * FROM jobs WHERE id IN ({placeholders}) AND status = ? ORDER BY id ASC",
                    (*job_ids, JobStatus.PENDING.value),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE status = ? ORDER BY id ASC",
                    (JobStatus.PENDING.value,),
                ).fetchall()

        return [Job(**dict(row)) for row in rows]

    def get(self, job_id: int) -> Job | None:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job(**dict(row)) if row else None

    def mark_done(self, job_id: int, url: str) -> None:
        """Mark a job as verified and keep the follow-up URL; the successful attempt is counted."""
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE jobs SET status = ?, attempt = attempt + 1, response_data = ?, updated_at = ? WHERE id = ?",
                (JobStatus.DONE.value, url, self._timestamp(), job_id),
            )

    def record_failure(self, job: Job, error: str, max_attempts: int) -> JobStatus:
        """
        Apply the retry rule to a failed attempt.

        The attempt counter is bumped; once it reaches ``max_attempts`` the job is
        terminally failed, otherwise it stays pending for the next run.

        Args:
            job: Job as it was selected before the attempt
            error: Failure description stored in response_data
            max_attempts: Attempts allowed before the job fails for good

        Returns:
            The job's new status
        """
        attempt = job.attempt + 1
        status = JobStatus.FAILED if attempt >= max_attempts else JobStatus.PENDING

        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE jobs SET status = ?, attempt = ?, response_data = ?, updated_at = ? WHERE id = ?",
                (status.value, attempt, error, self._timestamp(), job.id),
            )

        return status

    def recent(self, limit: int = 100) -> list[Job]:
        """Latest jobs, newest first."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [Job(**dict(row)) for row in rows]

    def status_counts(self) -> dict[str, int]:
        """Number of jobs per status; every status is present even when zero."""
        counts = {status.value: 0 for status in JobStatus}
        with connect(self.db_path) as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS count FROM jobs GROUP BY status").fetchall()
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts
