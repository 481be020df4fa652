"""Schedule sync for cookie-session school portals.

Keeps rotating portal sessions alive per student, scrapes their weekly
schedule, stores only the days that changed, and fans refresh jobs out to a
task queue.
"""

from src.schedule_sync.fanout import JobFanout, schedule_initial_scrape
from src.schedule_sync.models import (
    Cookie,
    CookieJar,
    EventStatus,
    FanoutJob,
    FanoutResult,
    ScheduleDay,
    ScheduleEvent,
    ScrapeJob,
    ScrapeResult,
    StudentCredential,
)
from src.schedule_sync.pages.schedule import SchedulePage, parse_schedule
from src.schedule_sync.persistence import SchedulePersister, compute_day_hash
from src.schedule_sync.scrape import ScrapeRunner
from src.schedule_sync.session import SessionFetcher
from src.schedule_sync.stores import FileCredentialStore, FileScheduleStore
from src.schedule_sync.task_queue import HttpTaskQueue

__all__ = [
    "Cookie",
    "CookieJar",
    "EventStatus",
    "FanoutJob",
    "FanoutResult",
    "FileCredentialStore",
    "FileScheduleStore",
    "HttpTaskQueue",
    "JobFanout",
    "ScheduleDay",
    "ScheduleEvent",
    "SchedulePage",
    "SchedulePersister",
    "ScrapeJob",
    "ScrapeResult",
    "ScrapeRunner",
    "SessionFetcher",
    "StudentCredential",
    "compute_day_hash",
    "parse_schedule",
    "schedule_initial_scrape",
]
