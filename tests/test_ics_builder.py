from datetime import datetime, timedelta

import pytest
import pytz

from commlink.ics.builder import build_ics, escape_text, fold_line
from commlink.models.event import IcsEvent

from conftest import FIXED_NOW, FIXED_UID


def _unfold(ics: str) -> str:
    return ics.replace("\r\n ", "")


def _lines(ics: str) -> dict[str, str]:
    lines = {}
    for line in _unfold(ics).split("\r\n"):
        if ":" in line:
            key, _, value = line.partition(":")
            lines.setdefault(key, value)
    return lines


FULL_FIELDS = {
    "uid": "meeting-42@school.example.be",
    "sequence": 2,
    "dtstamp": FIXED_NOW,
    "dtstart": pytz.utc.localize(datetime(2025, 3, 20, 18, 0)),
    "dtend": pytz.utc.localize(datetime(2025, 3, 20, 19, 0)),
    "summary": "Parent evening",
    "location": "Room 12",
    "description": "Bring the report card",
    "organizer": {"name": "School Office", "email": "office@example.com"},
    "attendee": {"name": "Jo Parent", "email": "jo@example.com"},
}


class TestEscapeText:
    def test_each_reserved_character(self):
        assert escape_text("a\\b") == "a\\\\b"
        assert escape_text("a,b") == "a\\,b"
        assert escape_text("a;b") == "a\\;b"
        assert escape_text("a:b") == "a\\:b"
        assert escape_text("a\nb") == "a\\nb"
        assert escape_text("a\rb") == "a\\rb"

    def test_backslash_is_not_double_escaped(self):
        assert escape_text("C:\\temp, now") == "C\\:\\\\temp\\, now"

    def test_crlf(self):
        assert escape_text("one\r\ntwo") == "one\\r\\ntwo"

    def test_plain_text_unchanged(self):
        assert escape_text("Nothing to see here") == "Nothing to see here"

    def test_one_pass_only(self):
        once = escape_text("x,y")
        assert once == "x\\,y"
        # A second pass would escape the inserted backslash again
        assert escape_text(once) != once


class TestBuildIcs:
    def test_full_output(self):
        ics = build_ics(FULL_FIELDS)
        assert _unfold(ics) == "\r\n".join(
            [
                "BEGIN:VCALENDAR",
                "VERSION:2.0",
                "PRODID:-//Commlink//Calendar Invite//EN",
                "CALSCALE:GREGORIAN",
                "METHOD:REQUEST",
                "BEGIN:VEVENT",
                "UID:meeting-42@school.example.be",
                "SEQUENCE:2",
                "DTSTAMP:20250314T093000Z",
                "DTSTART;TZID=Europe/Brussels:20250320T190000",
                "DTEND;TZID=Europe/Brussels:20250320T200000",
                "SUMMARY:Parent evening",
                "LOCATION:Room 12",
                "DESCRIPTION:Bring the report card",
                'ORGANIZER;CN="School Office":mailto:office@example.com',
                'ATTENDEE;CN="Jo Parent";ROLE=REQ-PARTICIPANT;PARTSTAT=NEEDS-ACTION;RSVP=TRUE:mailto:jo@example.com',
                "STATUS:CONFIRMED",
                "TRANSP:OPAQUE",
                "END:VEVENT",
                "END:VCALENDAR",
                "",
            ]
        )

    def test_deterministic(self):
        assert build_ics(FULL_FIELDS) == build_ics(dict(FULL_FIELDS))

    def test_defaults_use_injected_clock_and_uid(self):
        first = build_ics({}, now=FIXED_NOW, uid_factory=lambda: FIXED_UID)
        second = build_ics(None, now=FIXED_NOW, uid_factory=lambda: FIXED_UID)
        assert first == second

        lines = _lines(first)
        assert lines["UID"] == FIXED_UID
        assert lines["SEQUENCE"] == "0"
        assert lines["DTSTAMP"] == "20250314T093000Z"
        # One day ahead, one hour long, shown in Brussels time (UTC+1 in March)
        assert lines["DTSTART;TZID=Europe/Brussels"] == "20250315T103000"
        assert lines["DTEND;TZID=Europe/Brussels"] == "20250315T113000"
        assert lines["SUMMARY"] == ""
        assert lines["LOCATION"] == ""
        assert lines["DESCRIPTION"] == ""

    def test_generated_uids_differ(self):
        assert _lines(build_ics())["UID"] != _lines(build_ics())["UID"]

    def test_free_text_is_escaped(self):
        ics = build_ics(
            {
                "summary": "Exams; week 1, part 2",
                "location": "Campus: Room \\12",
                "description": "Line one\nLine two",
            },
            now=FIXED_NOW,
            uid_factory=lambda: FIXED_UID,
        )
        lines = _lines(ics)
        assert lines["SUMMARY"] == "Exams\\; week 1\\, part 2"
        assert lines["LOCATION"] == "Campus\\: Room \\\\12"
        assert lines["DESCRIPTION"] == "Line one\\nLine two"

    def test_escape_fields_can_be_narrowed(self):
        ics = build_ics(
            {"summary": "a,b", "location": "c,d"},
            escape_fields=("summary",),
            now=FIXED_NOW,
            uid_factory=lambda: FIXED_UID,
        )
        assert "SUMMARY:a\\,b\r\n" in ics
        assert "LOCATION:c,d\r\n" in ics

    def test_unknown_escape_field_rejected(self):
        with pytest.raises(ValueError):
            build_ics({}, escape_fields=("uid",), now=FIXED_NOW)

    def test_timezone_parameter(self):
        ics = build_ics(FULL_FIELDS, timezone="America/New_York")
        lines = _lines(ics)
        assert lines["DTSTART;TZID=America/New_York"] == "20250320T140000"

    def test_naive_times_are_wall_time(self):
        ics = build_ics(
            {"dtstart": datetime(2025, 6, 1, 14, 0), "dtstamp": FIXED_NOW, "uid": "x"}
        )
        lines = _lines(ics)
        assert lines["DTSTART;TZID=Europe/Brussels"] == "20250601T140000"
        assert lines["DTEND;TZID=Europe/Brussels"] == "20250601T150000"

    def test_string_start_is_parsed(self):
        ics = build_ics({"dtstart": "2025-06-01T14:00:00", "uid": "x"}, now=FIXED_NOW)
        assert "DTEND;TZID=Europe/Brussels:20250601T150000" in ics

    def test_accepts_model(self):
        event = IcsEvent.with_defaults(FULL_FIELDS)
        assert build_ics(event) == build_ics(FULL_FIELDS)

    def test_quotes_in_names_do_not_break_params(self):
        fields = dict(FULL_FIELDS, organizer={"name": 'The "Office"', "email": "o@example.com"})
        assert 'ORGANIZER;CN="The \'Office\'":mailto:o@example.com' in build_ics(fields)


class TestIcsEventDefaults:
    def test_explicit_end_kept(self):
        end = FIXED_NOW + timedelta(hours=5)
        event = IcsEvent.with_defaults({"dtend": end}, now=FIXED_NOW)
        assert event.dtend == end
        assert event.dtstart == FIXED_NOW + timedelta(days=1)

    def test_none_values_fall_back_to_defaults(self):
        event = IcsEvent.with_defaults({"summary": None}, now=FIXED_NOW, uid_factory=lambda: "u")
        assert event.summary == ""
        assert event.uid == "u"

    def test_naive_now_is_utc(self):
        naive = IcsEvent.with_defaults({}, now=FIXED_NOW.replace(tzinfo=None), uid_factory=lambda: "u")
        aware = IcsEvent.with_defaults({}, now=FIXED_NOW, uid_factory=lambda: "u")
        assert naive == aware
        assert naive.dtstart.tzinfo is not None

    def test_naive_now_renders_consistently(self):
        ics = build_ics({}, now=datetime(2025, 3, 14, 9, 30), uid_factory=lambda: FIXED_UID)
        assert ics == build_ics({}, now=FIXED_NOW, uid_factory=lambda: FIXED_UID)


class TestFolding:
    def test_short_line_untouched(self):
        assert fold_line("a" * 75) == "a" * 75

    def test_long_line_folded(self):
        assert fold_line("a" * 76) == "a" * 75 + "\r\n a"

    def test_continuations_stay_within_limit(self):
        folded = fold_line("b" * 200)
        parts = folded.split("\r\n")
        assert all(len(part) <= 75 for part in parts)
        assert all(part.startswith(" ") for part in parts[1:])
        assert _unfold(folded) == "b" * 200

    def test_multibyte_characters_not_split(self):
        folded = fold_line("é" * 40)
        parts = folded.split("\r\n")
        assert parts[0] == "é" * 37
        assert all(len(part.encode("utf-8")) <= 75 for part in parts)
        assert _unfold(folded) == "é" * 40

    def test_long_description_is_folded(self):
        description = "Agenda: " + ", ".join(f"item {n}" for n in range(40))
        ics = build_ics({"description": description}, now=FIXED_NOW, uid_factory=lambda: FIXED_UID)
        assert all(len(line.encode("utf-8")) <= 75 for line in ics.split("\r\n"))
        assert _lines(ics)["DESCRIPTION"] == escape_text(description)
        assert ics.endswith("END:VCALENDAR\r\n")

    def test_attendee_line_folded(self):
        attendee = 'ATTENDEE;CN="Jo Parent";ROLE=REQ-PARTICIPANT;PARTSTAT=NEEDS-ACTION;RSVP=TRUE:mailto:jo@example.com'
        ics = build_ics(FULL_FIELDS)
        assert attendee not in ics
        assert attendee in _unfold(ics)
        assert all(len(line.encode("utf-8")) <= 75 for line in ics.split("\r\n"))
