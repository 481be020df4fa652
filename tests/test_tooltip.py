from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from src.schedule_sync.errors import ParseError
from src.schedule_sync.models import EventStatus
from src.schedule_sync.pages.tooltip import (
    Label,
    build_event,
    classify_label,
    parse_time_range,
    parse_tooltip,
)
from tests.fakes import FIXED_NOW

CPH = ZoneInfo("Europe/Copenhagen")


def _tooltip(*lines):
    return "\n".join(lines)


class TestStatusLine:
    def test_cancelled_marker(self):
        fields = parse_tooltip(_tooltip("Aflyst!", "20/10-2025 08:10 til 09:50", "Hold: 1.x MA"))

        assert fields.status is EventStatus.CANCELLED
        assert fields.time == "20/10-2025 08:10 til 09:50"

    def test_changed_marker(self):
        fields = parse_tooltip(_tooltip("Ændret!", "20/10-2025 08:10 til 09:50"))
        assert fields.status is EventStatus.MOVED

    def test_marker_not_on_first_line_is_ignored(self):
        fields = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50", "Aflyst!"))

        assert fields.status is EventStatus.OK
        assert fields.title == "Aflyst!"

    def test_cancelled_event_gets_last_changed_at(self):
        fields = parse_tooltip(_tooltip("Aflyst!", "20/10-2025 08:10 til 09:50", "Hold: 1.x MA"))

        event = build_event("1", fields, CPH, changed_at=FIXED_NOW)

        assert event.status is EventStatus.CANCELLED
        assert event.last_changed_at == FIXED_NOW

    def test_ok_event_has_no_last_changed_at(self):
        fields = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50"))
        assert build_event("1", fields, CPH, changed_at=FIXED_NOW).last_changed_at is None


class TestLineGrammar:
    def test_labelled_fields(self):
        fields = parse_tooltip(
            _tooltip(
                "20/10-2025 08:10 til 09:50",
                "Hold: 1.x MA",
                "Lærere: Anne Berg (AB), Jens Hansen (JH)",
                "Lokale: 12",
                "Elever: 1.x",
            )
        )

        assert fields.class_name == "1.x MA"
        assert fields.teacher == "Anne Berg (AB), Jens Hansen (JH)"
        assert fields.room == "12"
        assert fields.title is None

    def test_first_time_line_wins(self):
        fields = parse_tooltip(
            _tooltip("20/10-2025 08:10 til 09:50", "Ekskursion", "21/10-2025 10:00 til 12:00")
        )

        assert fields.time == "20/10-2025 08:10 til 09:50"
        assert fields.title == "Ekskursion"

    def test_title_is_first_unlabelled_line_after_line_zero(self):
        fields = parse_tooltip(
            _tooltip("20/10-2025 08:10 til 09:50", "Fysik forsøg", "Hold: 2.b FY", "Ekstra linje")
        )

        assert fields.title == "Fysik forsøg"
        assert fields.unclassified == ["Ekstra linje"]

    def test_line_zero_never_becomes_title(self):
        fields = parse_tooltip(_tooltip("Temadag", "20/10-2025 Hele dagen"))

        assert fields.title is None
        assert fields.time == "20/10-2025 Hele dagen"

    def test_note_collects_until_blank_line(self):
        fields = parse_tooltip(
            _tooltip(
                "20/10-2025 08:10 til 09:50",
                "Hold: 2.b FY",
                "Note: Husk kittel",
                "og briller",
                "",
                "Efterfølgende titel",
            )
        )

        assert fields.note == "Husk kittel og briller"
        assert fields.title == "Efterfølgende titel"

    def test_note_stops_at_homework_label(self):
        fields = parse_tooltip(
            _tooltip(
                "20/10-2025 08:10 til 09:50",
                "Note:",
                "Tag lommeregner med",
                "Lektier:",
                "Opgave 1-4",
                "side 12",
            )
        )

        assert fields.note == "Tag lommeregner med"
        assert fields.homework == "Opgave 1-4 side 12"

    def test_homework_stops_at_note_label(self):
        fields = parse_tooltip(
            _tooltip("20/10-2025 08:10 til 09:50", "Lektier: Læs s. 10", "Note: Aflevering fredag")
        )

        assert fields.homework == "Læs s. 10"
        assert fields.note == "Aflevering fredag"

    def test_empty_section_is_none(self):
        fields = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50", "Note:", ""))
        assert fields.note is None

    def test_classify_label(self):
        assert classify_label("Lokaler: 12, 14") == (Label.ROOM, "12, 14")
        assert classify_label("Lærer: AB") == (Label.TEACHER, "AB")
        assert classify_label("Matematik") is None


class TestTimeRange:
    def test_range(self):
        start, end = parse_time_range("20/10-2025 08:10 til 09:50", CPH)

        assert start == datetime(2025, 10, 20, 8, 10, tzinfo=CPH)
        assert end == datetime(2025, 10, 20, 9, 50, tzinfo=CPH)

    def test_all_day_defaults_to_two_hours(self):
        start, end = parse_time_range("20/10-2025 Hele dagen", CPH)

        assert start == datetime(2025, 10, 20, 0, 0, tzinfo=CPH)
        assert end - start == timedelta(hours=2)

    def test_missing_end_defaults_to_two_hours(self):
        start, end = parse_time_range("20/10-2025 08:10", CPH)
        assert end == start + timedelta(hours=2)

    def test_default_duration_is_elapsed_time_across_dst_change(self):
        # Clocks go back 03:00 -> 02:00 on 26/10-2025 in Copenhagen
        start, end = parse_time_range("26/10-2025 01:30", CPH)

        assert end.astimezone(timezone.utc) - start.astimezone(timezone.utc) == timedelta(hours=2)
        assert (end.hour, end.minute) == (2, 30)
        assert end.utcoffset() == timedelta(hours=1)

    def test_explicit_end_date(self):
        start, end = parse_time_range("20/10-2025 08:00 til 22/10-2025 15:00", CPH)
        assert end == datetime(2025, 10, 22, 15, 0, tzinfo=CPH)

    @pytest.mark.parametrize(
        "time_str",
        ["", "Hold: 1.x MA", "32/13-2025 08:10 til 09:50", "20/10-2025 til 09:50", "20/10-2025 25:00 til 26:00"],
    )
    def test_unparsable_start(self, time_str):
        with pytest.raises(ParseError):
            parse_time_range(time_str, CPH)


class TestBuildEvent:
    def test_subject_and_class_key_from_class(self):
        fields = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50", "Studietid", "Hold: 1.x MA"))

        event = build_event("1001", fields, CPH)

        assert event.subject == "1.x MA"
        assert event.class_key == "1.x MA"
        assert event.title == "Studietid"

    def test_subject_falls_back_to_title_then_placeholder(self):
        with_title = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50", "Studietid"))
        bare = parse_tooltip(_tooltip("20/10-2025 08:10 til 09:50"))

        assert build_event("1", with_title, CPH).subject == "Studietid"
        assert build_event("1", with_title, CPH).class_key == "unknown"
        assert build_event("2", bare, CPH).subject == "Ukendt"

    def test_missing_time_raises(self):
        fields = parse_tooltip(_tooltip("Hold: 1.x MA"))
        with pytest.raises(ParseError):
            build_event("1", fields, CPH)
