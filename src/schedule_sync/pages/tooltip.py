"""Line grammar for schedule tile tooltips.

A tooltip is loosely structured free text, one field per line, e.g.:

    Aflyst!
    20/10-2025 08:10 til 09:50
    Fysik forsøg
    Hold: 2.b FY
    Lærer: Jens Hansen (JH)
    Lokale: 12
    Note:
    Husk kittel
    og briller

Lines are classified in a fixed order: status marker (line 0 only), then the
first time line, then labelled fields, then the fallback title. Note and
homework sections swallow their continuation lines.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from src.schedule_sync.errors import ParseError
from src.schedule_sync.models import EventStatus, ScheduleEvent

STATUS_MARKERS: dict[str, EventStatus] = {
    "Ændret!": EventStatus.MOVED,
    "Aflyst!": EventStatus.CANCELLED,
}

TIME_RANGE_SEPARATOR = " til "
ALL_DAY = "Hele dagen"

SUBJECT_PLACEHOLDER = "Ukendt"
UNKNOWN_CLASS_KEY = "unknown"
DEFAULT_DURATION = timedelta(hours=2)


class Label(str, Enum):
    CLASS = "class"
    TEACHER = "teacher"
    ROOM = "room"
    NOTE = "note"
    HOMEWORK = "homework"
    STUDENTS = "students"


# Longest prefix first where one prefix would shadow another
LABEL_PREFIXES: tuple[tuple[str, Label], ...] = (
    ("Hold:", Label.CLASS),
    ("Lærere:", Label.TEACHER),
    ("Lærer:", Label.TEACHER),
    ("Lokaler:", Label.ROOM),
    ("Lokale:", Label.ROOM),
    ("Note:", Label.NOTE),
    ("Lektier:", Label.HOMEWORK),
    ("Elever:", Label.STUDENTS),
)

# Which label ends a multi-line section besides a blank line
_SECTION_TERMINATORS: dict[Label, Label] = {
    Label.NOTE: Label.HOMEWORK,
    Label.HOMEWORK: Label.NOTE,
}

_START = re.compile(r"(\d{1,2})/(\d{1,2})-(\d{4})(?:\s+(\d{1,2}):(\d{2}))?")
_END = re.compile(r"til\s+(?:(\d{1,2})/(\d{1,2})-(\d{4})\s+)?(\d{1,2}):(\d{2})")


@dataclass
class TooltipFields:
    """Raw fields pulled out of one tooltip, before time parsing."""

    status: EventStatus = EventStatus.OK
    time: str = ""
    class_name: str = ""
    teacher: str | None = None
    room: str | None = None
    note: str | None = None
    homework: str | None = None
    title: str | None = None
    unclassified: list[str] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.status is not EventStatus.OK


def classify_label(line: str) -> tuple[Label, str] | None:
    """(label, value) for a labelled line, None otherwise."""
    for prefix, label in LABEL_PREFIXES:
        if line.startswith(prefix):
            return label, line[len(prefix):].strip()
    return None


def is_time_line(line: str) -> bool:
    return TIME_RANGE_SEPARATOR in line or ALL_DAY in line


def parse_tooltip(tooltip: str) -> TooltipFields:
    """Run the line grammar over a tooltip payload. Never raises."""
    lines = [line.strip() for line in unicodedata.normalize("NFC", tooltip).split("\n")]
    fields = TooltipFields()

    if lines and lines[0] in STATUS_MARKERS:
        fields.status = STATUS_MARKERS[lines[0]]
        lines = lines[1:]

    i = 0
    while i < len(lines):
        line = lines[i]

        if not fields.time and is_time_line(line):
            fields.time = line
            i += 1
            continue

        labelled = classify_label(line)
        if labelled is None:
            if line and i > 0 and fields.title is None:
                fields.title = line
            elif line:
                fields.unclassified.append(line)
            i += 1
            continue

        label, value = labelled
        if label in _SECTION_TERMINATORS:
            collected, i = _collect_section(lines, i + 1, value, _SECTION_TERMINATORS[label])
            if label is Label.NOTE:
                fields.note = collected
            else:
                fields.homework = collected
            continue

        if label is Label.CLASS:
            fields.class_name = value
        elif label is Label.TEACHER:
            fields.teacher = value or None
        elif label is Label.ROOM:
            fields.room = value or None
        i += 1

    return fields


def _collect_section(lines: list[str], start: int, first: str, terminator: Label) -> tuple[str | None, int]:
    """Gather a note/homework section; returns (joined text, index after it)."""
    parts = [first] if first else []
    i = start
    while i < len(lines):
        line = lines[i]
        if not line:
            break
        labelled = classify_label(line)
        if labelled is not None and labelled[0] is terminator:
            break
        parts.append(line)
        i += 1
    return (" ".join(parts) or None), i


def _add_elapsed(start: datetime, duration: timedelta, tz: ZoneInfo) -> datetime:
    """start + duration as real elapsed time, which differs from wall-clock on DST days."""
    return (start.astimezone(timezone.utc) + duration).astimezone(tz)


def parse_time_range(time_str: str, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Start and end instants from a tooltip time line.

    "20/10-2025 08:10 til 09:50" gives 08:10-09:50 that day; "20/10-2025
    Hele dagen" starts at midnight. Without an end time the event lasts
    two hours.

    Raises:
        ParseError: If no usable start date/time is present.
    """
    start_match = _START.search(time_str)
    if not start_match:
        raise ParseError(f"No date in time line {time_str!r}")

    day, month, year, hour, minute = start_match.groups()
    if hour is None:
        if ALL_DAY not in time_str:
            raise ParseError(f"No start time in time line {time_str!r}")
        hour, minute = "0", "0"

    try:
        start = datetime(int(year), int(month), int(day), int(hour), int(minute), tzinfo=tz)
    except ValueError as e:
        raise ParseError(f"Invalid start in time line {time_str!r}: {e}") from e

    end_match = _END.search(time_str, start_match.end())
    if not end_match:
        return start, _add_elapsed(start, DEFAULT_DURATION, tz)

    end_day, end_month, end_year, end_hour, end_minute = end_match.groups()
    try:
        if end_day is None:
            end = start.replace(hour=int(end_hour), minute=int(end_minute))
        else:
            end = datetime(
                int(end_year), int(end_month), int(end_day),
                int(end_hour), int(end_minute), tzinfo=tz,
            )
    except ValueError as e:
        raise ParseError(f"Invalid end in time line {time_str!r}: {e}") from e
    return start, end


def build_event(
    tile_id: str,
    fields: TooltipFields,
    tz: ZoneInfo,
    changed_at: datetime | None = None,
) -> ScheduleEvent:
    """Turn tooltip fields into a ScheduleEvent.

    Raises:
        ParseError: If the time line can't be parsed.
    """
    start_at, end_at = parse_time_range(fields.time, tz)
    return ScheduleEvent(
        id=tile_id,
        start_at=start_at,
        end_at=end_at,
        subject=fields.class_name or fields.title or SUBJECT_PLACEHOLDER,
        room=fields.room,
        teacher=fields.teacher,
        class_key=fields.class_name or UNKNOWN_CLASS_KEY,
        status=fields.status,
        last_changed_at=changed_at if fields.status_changed else None,
        time=fields.time,
        note=fields.note,
        homework=fields.homework,
        title=fields.title,
    )
