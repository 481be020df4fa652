"""Pydantic models for credentials, schedule data and job payloads.

All data structures use Pydantic v2 for validation, serialization, and type
safety. Records serialize with camelCase aliases so persisted documents keep
the portal-facing shape ({date, weekKey, hash, updatedAt, events[]}).
"""

import json
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from src.schedule_sync.errors import JobValidationError
from src.schedule_sync.utils import is_valid_week_key


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict with camelCase keys and no null fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Cookie(_Record):
    """One cookie as last seen from the portal."""

    model_config = ConfigDict(frozen=True)

    value: str = Field(min_length=1)
    expires_at: datetime | None = None  # from Expires= or Max-Age=, if sent


class CookieJar(_Record):
    """Named session cookies plus a version bumped on every effective change.

    Entries are merged by name, never replaced wholesale, so cookies rotated by
    a concurrent invocation and not seen by this one survive a save.
    """

    cookies: dict[str, Cookie] = Field(default_factory=dict)
    version: int = 0

    def values(self) -> dict[str, str]:
        """Cookie name -> value, as sent in the Cookie header."""
        return {name: cookie.value for name, cookie in self.cookies.items()}

    def get(self, name: str) -> Cookie | None:
        return self.cookies.get(name)

    def merge(self, updates: Mapping[str, Cookie]) -> tuple["CookieJar", list[str]]:
        """Merge updates by name.

        An entry is replaced only when its value differs from the stored one.

        Returns:
            (new jar, names whose value changed). The jar is returned unchanged
            (same version) when nothing changed.
        """
        merged = dict(self.cookies)
        changed: list[str] = []
        for name, cookie in updates.items():
            current = merged.get(name)
            if current is not None and current.value == cookie.value:
                continue
            merged[name] = cookie
            changed.append(name)

        if not changed:
            return self, []
        return CookieJar(cookies=merged, version=self.version + 1), changed


class StudentCredential(_Record):
    """Stored session state for one student.

    Created on first successful authentication, updated whenever a cookie value
    rotates, marked inactive when the portal invalidates the session. Never
    deleted automatically.
    """

    student_id: str
    school_id: str
    cookies: CookieJar = Field(default_factory=CookieJar)
    active: bool = True
    primary_token: str | None = None  # mirror of the primary auth cookie
    primary_token_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class EventStatus(str, Enum):
    OK = "OK"
    CANCELLED = "CANCELLED"
    MOVED = "MOVED"


class ScheduleEvent(_Record):
    """A single lesson parsed from a schedule tile tooltip."""

    id: str  # data-brikid without the "ABS" prefix
    start_at: datetime
    end_at: datetime
    subject: str  # class/group, else title, else placeholder
    room: str | None = None
    teacher: str | None = None
    class_key: str  # class/group or "unknown"
    status: EventStatus = EventStatus.OK
    last_changed_at: datetime | None = None  # stamped when a status marker is seen
    time: str = ""  # verbatim time line, e.g. "20/10-2025 08:10 til 09:50"
    note: str | None = None
    homework: str | None = None
    title: str | None = None


class ScheduleDay(_Record):
    """All events for one student on one date. Replaced wholesale on change."""

    school_id: str
    student_id: str
    date: str  # YYYY-MM-DD, literal from the markup
    week_key: str  # WWYYYY
    hash: str
    updated_at: datetime
    events: list[ScheduleEvent]


class FanoutJob(_Record):
    """One per-student refresh job routed to the task queue."""

    student_id: str
    school_id: str
    week: str | None = None  # WWYYYY; None means the portal's current week


class ScrapeJob(_Record):
    """Scrape invocation input as delivered by the task queue."""

    student_id: str = Field(min_length=1)
    school_id: str | None = None
    week: str | None = None

    @field_validator("week")
    @classmethod
    def _check_week(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_week_key(value):
            raise ValueError(f"week must be WWYYYY, got {value!r}")
        return value

    @classmethod
    def from_payload(cls, payload: "ScrapeJob | Mapping[str, Any] | str | bytes") -> "ScrapeJob":
        """Validate a raw queue payload.

        Accepts a dict, a JSON string, or a JSON string that itself encodes a
        JSON string (some queues wrap message bodies twice).

        Raises:
            JobValidationError: If the payload can't be decoded or required
                fields are missing.
        """
        if isinstance(payload, ScrapeJob):
            return payload

        data: Any = payload
        # Unwrap at most twice: raw body, then a double-encoded body
        for _ in range(2):
            if not isinstance(data, (str, bytes)):
                break
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise JobValidationError(f"Job body is not valid JSON: {e}") from e

        if not isinstance(data, Mapping):
            raise JobValidationError(f"Job body must be an object, got {type(data).__name__}")

        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise JobValidationError(f"Invalid scrape job: {e}") from e


class FetchResult(BaseModel):
    """Outcome of one authenticated portal fetch."""

    html: str
    updated_cookies: dict[str, Cookie] = Field(default_factory=dict)
    status_code: int
    url: str
    redirects: int = 0


class PersistResult(BaseModel):
    days_written: int = 0
    days_unchanged: int = 0
    events_written: int = 0


class ScrapeResult(_Record):
    student_id: str
    school_id: str
    week: str | None = None
    events_parsed: int = 0
    days_parsed: int = 0
    days_written: int = 0
    days_unchanged: int = 0
    skipped_tiles: int = 0
    cookies_updated: list[str] = Field(default_factory=list)


class FanoutResult(_Record):
    total_scheduled: int = 0
    batch_count: int = 0  # batches published successfully
    skipped_count: int = 0  # records missing studentId or schoolId
    failed_batch_count: int = 0
    failed_job_count: int = 0

    @property
    def fully_scheduled(self) -> bool:
        return self.failed_batch_count == 0
