"""Tests for iCalendar / vCard building, updating and summaries."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest
import vobject

from dav_mcp.dav import ical
from tests.conftest import EVENT_ICS, TODO_ICS, VCARD

pytestmark = pytest.mark.unit


def _physical_lines(data: str) -> list[str]:
    return data.split("\r\n")[:-1]


class TestBuildCalendarObject:
    def test_event_round_trips_through_vobject(self):
        fields = ical.event_fields(
            summary="Planning, Q3",
            start=datetime(2026, 3, 1, 14, tzinfo=UTC),
            end=datetime(2026, 3, 1, 15, tzinfo=UTC),
        )
        data = ical.build_calendar_object("VEVENT", "uid-1@dav-mcp", fields)

        assert data.endswith("\r\n")
        assert "SUMMARY:Planning\\, Q3\r\n" in data
        assert "DTSTART:20260301T140000Z\r\n" in data
        assert f"PRODID:{ical.PRODID}\r\n" in data
        event = vobject.readOne(data).vevent
        assert event.uid.value == "uid-1@dav-mcp"
        assert event.summary.value == "Planning, Q3"
        assert hasattr(event, "dtstamp")

    def test_aware_times_are_written_in_utc(self):
        berlin = timezone(timedelta(hours=1))
        fields = ical.event_fields(start=datetime(2026, 3, 1, 15, tzinfo=berlin))
        data = ical.build_calendar_object("VEVENT", "u@x", fields)
        assert "DTSTART:20260301T140000Z\r\n" in data

    def test_all_day_dates_use_value_date(self):
        fields = ical.event_fields(start=date(2026, 3, 1), end=date(2026, 3, 2))
        data = ical.build_calendar_object("VEVENT", "u@x", fields)
        assert "DTSTART;VALUE=DATE:20260301\r\n" in data
        assert "DTEND;VALUE=DATE:20260302\r\n" in data

    def test_long_non_ascii_text_folds_within_75_octets(self):
        summary = "Réunion trimestrielle à Zürich " + "é" * 120
        data = ical.build_calendar_object("VEVENT", "u@x", {"summary": summary})

        lines = _physical_lines(data)
        assert max(len(line.encode("utf-8")) for line in lines) <= 75
        assert any(line.startswith(" ") for line in lines)
        assert vobject.readOne(data).vevent.summary.value == summary

    def test_long_ascii_description_folds(self):
        data = ical.build_calendar_object("VEVENT", "u@x", {"description": "x" * 300})
        assert all(len(line.encode("utf-8")) <= 75 for line in _physical_lines(data))

    def test_todo_fields_uppercase_status_and_stringify_priority(self):
        assert ical.todo_fields(status="completed", priority=3) == {
            "priority": "3",
            "status": "COMPLETED",
        }

    def test_unset_fields_are_omitted(self):
        assert ical.event_fields() == {}
        assert ical.vcard_fields(email="a@example.com") == {"email": "a@example.com"}

    def test_new_uid_is_unique(self):
        assert ical.new_uid() != ical.new_uid()


class TestBuildVcard:
    def test_vcard_gets_empty_name_when_missing(self):
        data = ical.build_vcard("c1", ical.vcard_fields(full_name="Grace Hopper"))
        assert "N:;;;;\r\n" in data
        assert "VERSION:3.0\r\n" in data
        assert ical.summarize_vcard(data)["full_name"] == "Grace Hopper"

    def test_typed_properties(self):
        fields = ical.vcard_fields(
            full_name="Grace Hopper",
            family_name="Hopper",
            given_name="Grace",
            email="grace@example.com",
            phone="+1 555 0100",
            organization="US Navy",
        )
        card = vobject.readOne(ical.build_vcard("c1", fields))
        assert card.n.value.family == "Hopper"
        assert card.n.value.given == "Grace"
        assert card.email.type_param == "INTERNET"
        assert card.tel.type_param == "CELL"
        assert card.org.value == ["US Navy"]


class TestUpdateObject:
    def test_replaces_adds_and_removes(self):
        updated = ical.update_object(
            EVENT_ICS,
            "VEVENT",
            {"summary": "Retro", "description": "notes", "location": None},
        )
        event = vobject.readOne(updated).vevent
        assert event.summary.value == "Retro"
        assert event.description.value == "notes"
        assert not hasattr(event, "location")
        # untouched data survives, including the nested alarm
        assert event.uid.value == "standup@example.com"
        assert event.valarm.summary.value == "Alarm text"

    def test_partial_name_update_keeps_other_parts(self):
        updated = ical.update_object(VCARD, "VCARD", ical.vcard_fields(given_name="Augusta"))
        card = vobject.readOne(updated)
        assert card.n.value.family == "Lovelace"
        assert card.n.value.given == "Augusta"
        assert card.fn.value == "Ada Lovelace"

    def test_hyphenated_property_names(self):
        stamp = datetime(2026, 5, 1, 8, tzinfo=UTC)
        updated = ical.update_object(TODO_ICS, "VTODO", {"LAST-MODIFIED": stamp})
        assert "LAST-MODIFIED:20260501T080000Z\r\n" in updated

    def test_raises_when_component_absent(self):
        with pytest.raises(ValueError, match="VTODO"):
            ical.update_object(EVENT_ICS, "VTODO", {"summary": "x"})

    def test_raises_on_unparseable_data(self):
        with pytest.raises(ValueError, match="Could not parse"):
            ical.update_object("", "VEVENT", {"summary": "x"})


class TestSummaries:
    def test_event_summary(self):
        summary = ical.summarize_event(EVENT_ICS)
        assert summary == {
            "uid": "standup@example.com",
            "summary": "Daily standup",
            "start": "2026-01-05T09:00:00+00:00",
            "end": "2026-01-05T09:15:00+00:00",
            "location": "Room 4",
            "description": None,
        }

    def test_todo_summary(self):
        summary = ical.summarize_todo(TODO_ICS)
        assert summary == {
            "uid": "taxes@example.com",
            "summary": "File taxes",
            "due": "2026-04-15T17:00:00+00:00",
            "status": "NEEDS-ACTION",
            "priority": 1,
            "description": None,
        }

    def test_vcard_summary(self):
        summary = ical.summarize_vcard(VCARD)
        assert summary["full_name"] == "Ada Lovelace"
        assert summary["emails"] == ["ada@example.com"]
        assert summary["phones"] == ["+44 20 0000 0000"]
        assert summary["organization"] == "Analytical Engines"

    def test_wrong_component_yields_empty_summary(self):
        assert set(ical.summarize_todo(EVENT_ICS).values()) == {None}

    def test_unparseable_data_is_logged_not_raised(self, caplog):
        assert ical.summarize_event("not a calendar")["uid"] is None
        assert "Skipping unparseable VEVENT" in caplog.text
