"""Fan-out of per-student scrape jobs to the task queue.

Every stored credential becomes one job. Jobs go out in batches of the
queue's size limit, with at most max_concurrency publish calls in flight.
A batch that still fails after its retries is counted, not raised, so the
result tells "fully scheduled" apart from "partially scheduled".
"""

from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.schedule_sync.config import SyncConfig
from src.schedule_sync.errors import TransientError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import FanoutJob, FanoutResult
from src.schedule_sync.stores import CredentialStore
from src.schedule_sync.task_queue import TaskQueue
from src.schedule_sync.utils import next_week_key

logger = get_logger(__name__)

BATCH_SIZE_LIMIT = 100


def chunked(items: Sequence[FanoutJob], size: int) -> Iterator[Sequence[FanoutJob]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class JobFanout:
    def __init__(
        self,
        credentials: CredentialStore,
        queue: TaskQueue,
        *,
        batch_size: int = BATCH_SIZE_LIMIT,
        max_concurrency: int = 4,
        publish_attempts: int = 2,
        retry_wait_seconds: float = 2.0,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.credentials = credentials
        self.queue = queue
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.publish_attempts = publish_attempts
        self.retry_wait_seconds = retry_wait_seconds

    @classmethod
    def from_config(cls, credentials: CredentialStore, queue: TaskQueue, config: SyncConfig) -> "JobFanout":
        return cls(
            credentials,
            queue,
            batch_size=config.fanout_batch_size,
            max_concurrency=config.fanout_max_concurrency,
            publish_attempts=config.publish_attempts,
            retry_wait_seconds=config.publish_retry_wait_seconds,
        )

    def collect_jobs(self, week: str | None = None) -> tuple[list[FanoutJob], int]:
        """One job per stored credential with both ids.

        Returns:
            (jobs, number of records skipped for a missing id)
        """
        jobs: list[FanoutJob] = []
        skipped = 0
        for ref in self.credentials.iter_student_refs():
            if not ref.student_id or not ref.school_id:
                skipped += 1
                logger.warning(
                    "fanout_record_skipped",
                    record_id=ref.record_id,
                    reason="missing studentId or schoolId",
                )
                continue
            jobs.append(FanoutJob(student_id=ref.student_id, school_id=ref.school_id, week=week))
        return jobs, skipped

    def run(self, week: str | None = None) -> FanoutResult:
        jobs, skipped = self.collect_jobs(week)
        result = FanoutResult(skipped_count=skipped)

        if not jobs:
            logger.warning("fanout_no_students", skipped=skipped)
            return result

        batches = list(chunked(jobs, self.batch_size))
        logger.info(
            "fanout_started",
            jobs=len(jobs),
            batches=len(batches),
            max_concurrency=self.max_concurrency,
        )

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix="fanout_publish",
        ) as executor:
            futures = {
                executor.submit(self._publish, number, batch): (number, batch)
                for number, batch in enumerate(batches, start=1)
            }
            for future in as_completed(futures):
                number, batch = futures[future]
                try:
                    future.result()
                except Exception as e:
                    result.failed_batch_count += 1
                    result.failed_job_count += len(batch)
                    logger.error(
                        "fanout_batch_failed",
                        batch=number,
                        jobs=len(batch),
                        error=str(e),
                        type=type(e).__name__,
                    )
                    continue
                result.batch_count += 1
                result.total_scheduled += len(batch)

        log = logger.info if result.fully_scheduled else logger.warning
        log(
            "fanout_finished",
            total_scheduled=result.total_scheduled,
            batch_count=result.batch_count,
            skipped=result.skipped_count,
            failed_batches=result.failed_batch_count,
            failed_jobs=result.failed_job_count,
        )
        return result

    def _publish(self, number: int, batch: Sequence[FanoutJob]) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.publish_attempts),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        )
        retrying(self.queue.publish_batch, list(batch))
        logger.debug("fanout_batch_sent", batch=number, jobs=len(batch))


def schedule_initial_scrape(
    queue: TaskQueue,
    student_id: str,
    school_id: str,
    today: date | None = None,
) -> list[FanoutJob]:
    """Queue this week's and next week's scrape for a newly registered student."""
    today = today or date.today()
    jobs = [
        FanoutJob(student_id=student_id, school_id=school_id),
        FanoutJob(student_id=student_id, school_id=school_id, week=next_week_key(today)),
    ]
    queue.publish_batch(jobs)
    logger.info("initial_scrape_scheduled", student_id=student_id, weeks=[j.week for j in jobs])
    return jobs
