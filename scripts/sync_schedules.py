"""Run schedule sync operations from the command line.

Standalone CLI for the scrape pipeline, using the file-backed stores under
data/ and the HTTP task queue configured in .env.

Scrape:    python scripts/sync_schedules.py --student 72721772841
Week:      python scripts/sync_schedules.py --student 72721772841 --week 442025
Fan-out:   python scripts/sync_schedules.py --fanout
Bootstrap: python scripts/sync_schedules.py --bootstrap 72721772841
Parse:     python scripts/sync_schedules.py --parse skemany.html --table
Schools:   python scripts/sync_schedules.py --schools schools.html

Exit codes:
  0 = success (JSON or table on stdout)
  1 = error (message on stderr)
  2 = fan-out only partially scheduled
  3 = session invalid (credential marked inactive, needs a fresh login)
"""

import argparse
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.schedule_sync.config import get_config  # noqa: E402
from src.schedule_sync.errors import ScrapingError, SessionInvalidError  # noqa: E402
from src.schedule_sync.fanout import JobFanout, schedule_initial_scrape  # noqa: E402
from src.schedule_sync.logging import setup_logging  # noqa: E402
from src.schedule_sync.models import ScheduleEvent  # noqa: E402
from src.schedule_sync.pages.schedule import SchedulePage  # noqa: E402
from src.schedule_sync.pages.schools import parse_school_list  # noqa: E402
from src.schedule_sync.scrape import ScrapeRunner  # noqa: E402
from src.schedule_sync.session import SessionFetcher  # noqa: E402
from src.schedule_sync.stores import FileCredentialStore, FileScheduleStore  # noqa: E402
from src.schedule_sync.task_queue import HttpTaskQueue  # noqa: E402
from src.schedule_sync.utils import is_valid_week_key  # noqa: E402


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Scrape, fan out or parse portal schedules.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--student", type=str, help="Scrape one student's schedule now.")
    mode.add_argument(
        "--fanout",
        action="store_true",
        help="Publish a scrape job for every stored credential.",
    )
    mode.add_argument(
        "--bootstrap",
        type=str,
        metavar="STUDENT",
        help="Queue this week's and next week's scrape for one stored student.",
    )
    mode.add_argument(
        "--parse",
        type=str,
        metavar="FILE",
        help="Parse a saved schedule page offline (no network, no writes).",
    )
    mode.add_argument(
        "--schools",
        type=str,
        metavar="FILE",
        help="List school ids from a saved school index page.",
    )

    parser.add_argument(
        "--week",
        type=str,
        default=None,
        help="Week key WWYYYY for --student / --fanout (default: current week).",
    )
    parser.add_argument(
        "--table",
        action="store_true",
        help="With --parse, print a human-readable table instead of JSON.",
    )
    args = parser.parse_args()
    if args.week is not None and not is_valid_week_key(args.week):
        parser.error(f"--week must be WWYYYY, got {args.week!r}")
    return args


def _format_table(days: dict[str, list[ScheduleEvent]]) -> str:
    """Format parsed days as a human-readable table.

    Columns: Date | Time | Subject | Teacher | Room | Status
    """
    headers = ["Date", "Time", "Subject", "Teacher", "Room", "Status"]
    rows = []
    for date_str, events in sorted(days.items()):
        for e in events:
            rows.append(
                [
                    date_str,
                    f"{e.start_at:%H:%M}-{e.end_at:%H:%M}",
                    e.subject,
                    e.teacher or "-",
                    e.room or "-",
                    e.status.value,
                ]
            )

    if not rows:
        return "(no classes scheduled)"

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows]
    return "\n".join([header_line, separator, *row_lines])


def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    if args.parse:
        html = Path(args.parse).read_text(encoding="utf-8")
        parsed = SchedulePage(html, timezone=config.portal_timezone).extract()
        if args.table:
            print(_format_table(parsed.days))
        else:
            output = {
                date_str: [e.to_document() for e in events]
                for date_str, events in parsed.days.items()
            }
            print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    if args.schools:
        html = Path(args.schools).read_text(encoding="utf-8")
        print(json.dumps(parse_school_list(html), indent=2, ensure_ascii=False))
        return 0

    credentials = FileCredentialStore(config.state_dir, primary_cookie=config.primary_token_cookie)

    if args.fanout:
        fanout = JobFanout.from_config(credentials, HttpTaskQueue(config), config)
        result = fanout.run(week=args.week)
        print(json.dumps(result.to_document(), indent=2))
        return 0 if result.fully_scheduled else 2

    if args.bootstrap:
        credential = credentials.load(args.bootstrap)
        jobs = schedule_initial_scrape(HttpTaskQueue(config), credential.student_id, credential.school_id)
        print(json.dumps([job.to_document() for job in jobs], indent=2))
        return 0

    runner = ScrapeRunner(
        credentials,
        FileScheduleStore(config.schedule_dir),
        SessionFetcher(config),
        config=config,
    )
    try:
        result = runner.run({"studentId": args.student, "week": args.week})
    except SessionInvalidError as e:
        print(f"SESSION INVALID: {e}", file=sys.stderr)
        return 3
    print(json.dumps(result.to_document(), indent=2))
    return 0


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(main(args))
    except ScrapingError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
