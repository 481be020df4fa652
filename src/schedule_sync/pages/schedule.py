"""SchedulePage - extracts a student's weekly schedule from the portal HTML.

DOM structure of /SkemaNy.aspx (the parts that matter):
  td[data-date="2025-10-20"]            -> one column per day
    a.s2skemabrik[data-brikid="ABS123"]  -> one tile per lesson
      data-tooltip="...multi-line text..."

The visible tile text is abbreviated and ignored; every field comes from the
tooltip (see pages/tooltip.py for the line grammar). A broken tile never
fails the page, it is skipped and counted per day.
"""

from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from bs4 import BeautifulSoup, Tag

from src.schedule_sync.errors import ParseError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import ScheduleEvent
from src.schedule_sync.pages.tooltip import build_event, parse_tooltip
from src.schedule_sync.utils import Clock, utc_now

log = get_logger(__name__)

DEFAULT_TIMEZONE = "Europe/Copenhagen"


@dataclass
class ParsedSchedule:
    """Events grouped by literal date string, plus per-day skip counts."""

    days: dict[str, list[ScheduleEvent]] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)

    @property
    def event_count(self) -> int:
        return sum(len(events) for events in self.days.values())

    @property
    def skipped_count(self) -> int:
        return sum(self.skipped.values())


class SchedulePage:
    """Weekly schedule page at /SkemaNy.aspx.

    Parses an already fetched page; fetching is SessionFetcher's job.
    """

    URL_PATH = "/SkemaNy.aspx"

    DATE_CELL = "td[data-date]"
    TILE = "a.s2skemabrik[data-brikid]"
    TILE_ID_PREFIX = "ABS"

    def __init__(
        self,
        html: str,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Clock = utc_now,
    ) -> None:
        self.soup = BeautifulSoup(html, "html.parser")
        self.tz = ZoneInfo(timezone)
        self.clock = clock

    def extract(self) -> ParsedSchedule:
        """Parse every date column on the page.

        Returns:
            ParsedSchedule keyed by the literal data-date values, events in
            document order.
        """
        result = ParsedSchedule()
        # One instant per parse so every status-marked tile shares it
        parsed_at = self.clock()

        cells = self.soup.select(self.DATE_CELL)
        log.debug("schedule_date_cells", count=len(cells))

        for cell in cells:
            date_str = (cell.get("data-date") or "").strip()
            if not date_str:
                continue

            events = result.days.setdefault(date_str, [])
            result.skipped.setdefault(date_str, 0)

            for tile in cell.select(self.TILE):
                try:
                    events.append(self._parse_tile(tile, parsed_at))
                except ParseError as e:
                    result.skipped[date_str] += 1
                    log.debug("schedule_tile_skipped", date=date_str, reason=str(e))

        log.info(
            "schedule_extracted",
            days=len(result.days),
            events=result.event_count,
            skipped=result.skipped_count,
        )
        return result

    def extract_date(self, date_str: str) -> list[ScheduleEvent]:
        """Events for one YYYY-MM-DD date, empty if the page doesn't show it."""
        return self.extract().days.get(date_str, [])

    def _parse_tile(self, tile: Tag, parsed_at: datetime) -> ScheduleEvent:
        raw_id = (tile.get("data-brikid") or "").strip()
        tile_id = raw_id.removeprefix(self.TILE_ID_PREFIX)
        if not tile_id:
            raise ParseError("Tile has no id")

        tooltip = tile.get("data-tooltip")
        if not tooltip:
            raise ParseError(f"Tile {tile_id} has no tooltip")

        fields = parse_tooltip(tooltip)
        return build_event(tile_id, fields, self.tz, changed_at=parsed_at)


def parse_schedule(
    html: str,
    *,
    timezone: str = DEFAULT_TIMEZONE,
    clock: Clock = utc_now,
) -> dict[str, list[ScheduleEvent]]:
    """Date -> ordered events for a schedule page."""
    return SchedulePage(html, timezone=timezone, clock=clock).extract().days
