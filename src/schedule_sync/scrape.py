"""Per-student scrape invocation.

One queue delivery runs: load credential -> fetch schedule page -> parse ->
persist changed days -> save rotated cookies. Invocations share nothing but
the stored cookie jar, and replaying one with the same portal response writes
nothing new.
"""

import time
from collections.abc import Mapping
from typing import Any

from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.errors import SessionInvalidError
from src.schedule_sync.logging import bind_job_context, clear_job_context, get_logger
from src.schedule_sync.models import Cookie, ScrapeJob, ScrapeResult
from src.schedule_sync.pages.schedule import SchedulePage
from src.schedule_sync.persistence import SchedulePersister
from src.schedule_sync.session import SessionFetcher
from src.schedule_sync.stores import CredentialStore, ScheduleStore
from src.schedule_sync.utils import Clock, utc_now

logger = get_logger(__name__)


class ScrapeRunner:
    def __init__(
        self,
        credentials: CredentialStore,
        schedules: ScheduleStore,
        fetcher: SessionFetcher,
        config: SyncConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.credentials = credentials
        self.fetcher = fetcher
        self.config = config or get_config()
        self.clock = clock
        self.persister = SchedulePersister(schedules, clock=clock)

    def run(self, payload: ScrapeJob | Mapping[str, Any] | str | bytes) -> ScrapeResult:
        """Scrape one student's schedule week.

        Raises:
            JobValidationError: Payload missing studentId or with a bad week.
            NotFoundError: No stored credential.
            SessionInvalidError: Credential inactive, or the portal served its
                robot page (the credential is then marked inactive).
            NetworkError, HttpError: Portal unreachable or erroring.
            PersistenceError: Batch commit failed; nothing was written.
        """
        job = ScrapeJob.from_payload(payload)
        started = time.monotonic()
        bind_job_context(student_id=job.student_id, week=job.week)
        try:
            result = self._run(job)
        except Exception as e:
            logger.error(
                "scrape_failed",
                error=str(e),
                type=type(e).__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise
        finally:
            clear_job_context()

        logger.info(
            "scrape_succeeded",
            student_id=result.student_id,
            events=result.events_parsed,
            days=result.days_parsed,
            days_written=result.days_written,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    def _run(self, job: ScrapeJob) -> ScrapeResult:
        credential = self.credentials.load(job.student_id)
        school_id = credential.school_id
        if job.school_id and job.school_id != school_id:
            logger.warning("scrape_school_mismatch", job_school_id=job.school_id, stored_school_id=school_id)

        if not credential.active:
            raise SessionInvalidError(f"Credential for student {job.student_id} is inactive")

        params = {"week": job.week} if job.week else None
        try:
            fetched = self.fetcher.fetch(school_id, self.config.schedule_path, credential.cookies, params)
        except SessionInvalidError:
            try:
                self.credentials.mark_inactive(job.student_id)
            except Exception as e:
                logger.error("credential_mark_inactive_failed", error=str(e), type=type(e).__name__)
            raise

        try:
            parsed = SchedulePage(
                fetched.html,
                timezone=self.config.portal_timezone,
                clock=self.clock,
            ).extract()
            persisted = self.persister.persist(school_id, job.student_id, parsed.days)
        except Exception:
            # A rotated cookie must be kept even if this attempt fails later on,
            # without masking the failure the queue retries on
            self._save_cookies(job.student_id, fetched.updated_cookies, reraise=False)
            raise
        self._save_cookies(job.student_id, fetched.updated_cookies)

        return ScrapeResult(
            student_id=job.student_id,
            school_id=school_id,
            week=job.week,
            events_parsed=parsed.event_count,
            days_parsed=sum(1 for events in parsed.days.values() if events),
            days_written=persisted.days_written,
            days_unchanged=persisted.days_unchanged,
            skipped_tiles=parsed.skipped_count,
            cookies_updated=sorted(fetched.updated_cookies),
        )

    def _save_cookies(self, student_id: str, cookies: Mapping[str, Cookie], *, reraise: bool = True) -> None:
        if not cookies:
            return
        try:
            self.credentials.save(student_id, cookies, active=True)
        except Exception as e:
            logger.error(
                "credential_save_failed",
                cookie_names=sorted(cookies),
                error=str(e),
                type=type(e).__name__,
            )
            if reraise:
                raise
