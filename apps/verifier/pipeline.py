"""
Job Pipeline - Sequential Verification Runner

Processes pending verification jobs one at a time, oldest first:

    pending --(url + consent ok)--> done     (attempt++)
    pending --(failure, attempt < max)--> pending   (attempt++)
    pending --(failure, attempt >= max)--> failed   (notification)

A fixed pause precedes every attempt because the BPJS endpoint is rate
sensitive and the consent step shares one browser. Runs are serialized with a
lock, so overlapping scheduler triggers queue up instead of sharing the browser.
"""

import asyncio
import logging
from collections.abc import Sequence

from apps.verifier.consent import ConsentAgent, ConsentBrowser
from utils.bpjs import BpjsClient, VerificationError
from utils.config import settings
from utils.jobs import JobStore
from utils.notify import TelegramNotifier
from utils.schemas import Job, JobStatus

logger = logging.getLogger(__name__)

URL_NOT_FOUND = "Verification URL not found"
CONSENT_FAILED = "Browser automation failed to agree."


class JobPipeline:
    """Runs verification attempts for pending jobs."""

    def __init__(
        self,
        store: JobStore,
        client: BpjsClient,
        browser: ConsentBrowser,
        notifier: TelegramNotifier,
        max_attempts: int | None = None,
        between_jobs_delay: float | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.browser = browser
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.MAX_ATTEMPTS
        self.between_jobs_delay = (
            settings.BETWEEN_JOBS_DELAY if between_jobs_delay is None else between_jobs_delay
        )
        self._run_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def run(self, job_ids: Sequence[int] | None = None) -> int:
        """
        Process pending jobs sequentially.

        Args:
            job_ids: Only these jobs (if still pending); None processes every pending job

        Returns:
            Number of jobs attempted

        Raises:
            sqlite3.Error: If the job store is unavailable
        """
        async with self._run_lock:
            jobs = self.store.get_pending(job_ids)

            if not jobs:
                if job_ids:
                    logger.info("No new jobs to process.")
                return 0

            logger.info("Processing %d pending jobs sequentially", len(jobs))

            processed = 0
            async with self.browser.session() as agent:
                for job in jobs:
                    logger.debug("Waiting %.1fs before processing job %d", self.between_jobs_delay, job.id)
                    await asyncio.sleep(self.between_jobs_delay)
                    if self.browser.closed:
                        # Shutting down; the rest stay pending untouched.
                        logger.warning("Browser closed, stopping run with %d jobs left", len(jobs) - processed)
                        break
                    await self.process_job(job, agent)
                    processed += 1

            if processed:
                self._dispatch(f"{processed} jobs processed")
            return processed

    async def process_job(self, job: Job, agent: ConsentAgent) -> JobStatus:
        """Run one verification attempt and record its outcome."""
        try:
            url = await self.client.verify_patient(job.member_id, job.doctor_code)
            if not url:
                raise VerificationError(URL_NOT_FOUND)

            if not await agent.agree(url):
                raise VerificationError(CONSENT_FAILED)

        except VerificationError as e:
            return await self.handle_failed_job(job, str(e))

        self.store.mark_done(job.id, url)
        logger.info("Job %d completed successfully", job.id, extra={"job_id": job.id, "url": url})
        return JobStatus.DONE

    async def handle_failed_job(self, job: Job, error: str) -> JobStatus:
        """Apply the retry rule; terminal failures notify the operators."""
        status = self.store.record_failure(job, error, self.max_attempts)
        attempt = job.attempt + 1

        if status is JobStatus.FAILED:
            logger.error(
                "Job %d failed permanently after %d attempts",
                job.id,
                self.max_attempts,
                extra={"job_id": job.id, "attempt": attempt, "error": error},
            )
            await self.notifier.send(f"Job {job.id} failed after {self.max_attempts} attempts: {error}")
        else:
            logger.warning(
                "Job %d attempt %d failed. Will retry.",
                job.id,
                attempt,
                extra={"job_id": job.id, "attempt": attempt, "error": error},
            )
        return status

    def _dispatch(self, message: str) -> None:
        """Send a notification in the background; the run does not wait for it."""
        task = asyncio.create_task(self._send_quietly(message))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_quietly(self, message: str) -> None:
        try:
            await self.notifier.send(message)
        except Exception as e:
            logger.error("Summary notification failed", extra={"error": str(e)})

    async def wait_for_notifications(self) -> None:
        """Wait for background notifications still in flight."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
