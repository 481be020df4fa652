"""Change-aware persistence of parsed schedule days.

Each day's events are hashed over a canonical serialization; a day is written
only when its hash differs from the stored one. All writes of one invocation go
to the store as a single batch, so a retried job either rewrites everything it
needs to or nothing at all, and a replayed job writes nothing.
"""

import hashlib
import json
from collections.abc import Mapping, Sequence
from typing import Any

from src.schedule_sync.errors import PersistenceError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import PersistResult, ScheduleDay, ScheduleEvent
from src.schedule_sync.stores import ScheduleStore
from src.schedule_sync.utils import Clock, utc_now, week_key_for_date_string

log = get_logger(__name__)

# Stamped at parse time, so it would change the hash on every run
_VOLATILE_FIELDS = frozenset({"last_changed_at"})


def canonical_events(events: Sequence[ScheduleEvent]) -> list[dict[str, Any]]:
    """Events as plain dicts with volatile fields dropped, in a fixed order."""
    rows = [
        event.model_dump(mode="json", exclude=set(_VOLATILE_FIELDS))
        for event in events
    ]
    return sorted(rows, key=lambda row: (row["start_at"], row["end_at"], row["id"]))


def compute_day_hash(events: Sequence[ScheduleEvent]) -> str:
    payload = json.dumps(
        canonical_events(events),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ChangeDetector:
    """Builds replacement records for the days whose content changed."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock

    def diff(
        self,
        school_id: str,
        student_id: str,
        days: Mapping[str, Sequence[ScheduleEvent]],
        previous_hashes: Mapping[str, str],
    ) -> tuple[list[ScheduleDay], list[str]]:
        """Split days into changed records and unchanged dates.

        Days without events are ignored.

        Returns:
            (records to write, dates left as they are)
        """
        now = self.clock()
        changed: list[ScheduleDay] = []
        unchanged: list[str] = []

        for date_str, events in days.items():
            if not events:
                continue
            day_hash = compute_day_hash(events)
            if previous_hashes.get(date_str) == day_hash:
                unchanged.append(date_str)
                continue
            try:
                week = week_key_for_date_string(date_str)
            except ValueError:
                log.warning("schedule_date_not_iso", date=date_str)
                week = ""
            changed.append(
                ScheduleDay(
                    school_id=school_id,
                    student_id=student_id,
                    date=date_str,
                    week_key=week,
                    hash=day_hash,
                    updated_at=now,
                    events=list(events),
                )
            )
        return changed, unchanged


class SchedulePersister:
    def __init__(self, store: ScheduleStore, clock: Clock = utc_now) -> None:
        self.store = store
        self.detector = ChangeDetector(clock=clock)

    def persist(
        self,
        school_id: str,
        student_id: str,
        days: Mapping[str, Sequence[ScheduleEvent]],
    ) -> PersistResult:
        """Write changed days for one student in one atomic batch.

        Raises:
            PersistenceError: If reading stored hashes or the batch commit fails.
                Nothing was written in that case.
        """
        dates = [d for d, events in days.items() if events]
        try:
            previous = self.store.get_hashes(school_id, student_id, dates)
        except Exception as e:
            raise PersistenceError(f"Failed to read stored schedule hashes: {e}") from e

        changed, unchanged = self.detector.diff(school_id, student_id, days, previous)

        if changed:
            try:
                self.store.commit(changed)
            except Exception as e:
                log.error(
                    "schedule_commit_failed",
                    school_id=school_id,
                    student_id=student_id,
                    days=len(changed),
                    error=str(e),
                )
                raise PersistenceError(f"Schedule batch commit failed: {e}") from e

        result = PersistResult(
            days_written=len(changed),
            days_unchanged=len(unchanged),
            events_written=sum(len(day.events) for day in changed),
        )
        log.info(
            "schedule_persisted",
            school_id=school_id,
            student_id=student_id,
            days_written=result.days_written,
            days_unchanged=result.days_unchanged,
        )
        return result
