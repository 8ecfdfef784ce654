"""Unit tests for the event normalizer."""
from datetime import datetime, timedelta

import pytest
from icalendar import Alarm as VAlarm
from icalendar import vRecur

from core.errors import CalendarParseError
from core.events import Absolute, ComponentKind, RelativeAfterStart, RelativeBeforeStart
from core.normalizer import EventNormalizer, parse_calendar
from core.timezone_util import iso_instant
from tests.conftest import ics


def standup(*extra):
    return [
        "BEGIN:VEVENT",
        "UID:E1",
        "SUMMARY:Standup",
        "DESCRIPTION:Daily sync",
        "DTSTART:20260601T110000",
        "DTEND:20260601T113000",
        "RRULE:FREQ=DAILY",
        *extra,
        "END:VEVENT",
    ]


def single(uid, start, end, summary="Single", *extra):
    return [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        f"DTSTART:{start}",
        f"DTEND:{end}",
        *extra,
        "END:VEVENT",
    ]


@pytest.fixture
def normalizer(tz):
    return EventNormalizer(tz=tz)


class TestParseCalendar:
    """Test cases for splitting VEVENTs into tagged components."""

    def test_recurring_event_with_exdate_yields_event_and_exceptions(self, tz):
        text = ics(standup("EXDATE:20260603T110000"))

        components = parse_calendar(text, "work.ics", tz)

        kinds = [c.kind for c in components]
        assert kinds == [ComponentKind.EVENT, ComponentKind.EXCEPTIONS]
        assert components[1].uid == "E1"
        assert components[1].excluded == {iso_instant(tz.localize(datetime(2026, 6, 3, 11, 0)))}

    def test_recurrence_id_marks_override(self, tz):
        text = ics([
            "BEGIN:VEVENT",
            "UID:E1",
            "RECURRENCE-ID:20260605T110000",
            "SUMMARY:Moved",
            "DTSTART:20260605T150000",
            "DTEND:20260605T160000",
            "END:VEVENT",
        ])

        (component,) = parse_calendar(text, "work.ics", tz)

        assert component.kind is ComponentKind.OVERRIDE
        assert component.recurrence_id == "2026-06-05T09:00:00.000Z"

    def test_event_keeps_raw_rule_start_and_alarms(self, tz):
        text = ics(standup("BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER:-PT5M", "END:VALARM"))

        event = parse_calendar(text, "work.ics", tz)[0]

        assert isinstance(event.rrule, vRecur)
        assert event.rule_start == datetime(2026, 6, 1, 11, 0)
        assert [type(alarm) for alarm in event.alarms] == [VAlarm]

    def test_missing_dtstart_is_a_parse_error(self, tz):
        text = ics(["BEGIN:VEVENT", "UID:broken", "SUMMARY:No start", "END:VEVENT"])

        with pytest.raises(CalendarParseError) as excinfo:
            parse_calendar(text, "broken.ics", tz)

        assert excinfo.value.source == "broken.ics"

    def test_missing_uid_is_a_parse_error(self, tz):
        text = ics(["BEGIN:VEVENT", "DTSTART:20260601T110000", "END:VEVENT"])

        with pytest.raises(CalendarParseError):
            parse_calendar(text, "broken.ics", tz)

    def test_garbage_is_a_parse_error(self, tz):
        with pytest.raises(CalendarParseError):
            parse_calendar("this is not a calendar", "garbage.ics", tz)


class TestEventNormalizer:
    """Test cases for EventNormalizer.normalize."""

    def test_single_event_keeps_bare_uid(self, normalizer, tz, now):
        text = ics(single("S1", "20260602T180000", "20260602T200000", "Dinner"))

        (event,) = normalizer.normalize([text], now)

        assert event.uid == "S1"
        assert event.summary == "Dinner"
        assert event.description == ""
        assert event.start == tz.localize(datetime(2026, 6, 2, 18, 0))
        assert event.end == tz.localize(datetime(2026, 6, 2, 20, 0))
        assert event.alarms == ()

    def test_utc_times_are_converted_to_local_zone(self, normalizer, tz, now):
        text = ics(single("U1", "20260602T160000Z", "20260602T170000Z"))

        (event,) = normalizer.normalize([text], now)

        assert event.start.hour == 18
        assert event.start.utcoffset() == timedelta(hours=2)

    def test_all_day_event_without_end_lasts_one_day(self, normalizer, tz, now):
        text = ics([
            "BEGIN:VEVENT",
            "UID:D1",
            "SUMMARY:Holiday",
            "DTSTART;VALUE=DATE:20260604",
            "END:VEVENT",
        ])

        (event,) = normalizer.normalize([text], now)

        assert event.start == tz.localize(datetime(2026, 6, 4))
        assert event.end == tz.localize(datetime(2026, 6, 5))

    def test_duration_is_used_when_dtend_is_missing(self, normalizer, tz, now):
        text = ics([
            "BEGIN:VEVENT",
            "UID:D2",
            "DTSTART:20260602T100000",
            "DURATION:PT45M",
            "END:VEVENT",
        ])

        (event,) = normalizer.normalize([text], now)

        assert event.summary == "No Title"
        assert event.end - event.start == timedelta(minutes=45)

    def test_events_are_sorted_across_files(self, normalizer, now):
        late = ics(single("late", "20260610T090000", "20260610T100000"))
        early = ics(single("early", "20260602T090000", "20260602T100000"))
        middle = ics(single("middle", "20260605T090000", "20260605T100000"))

        events = normalizer.normalize({"a.ics": late, "b.ics": early, "c.ics": middle}, now)

        assert [e.uid for e in events] == ["early", "middle", "late"]
        assert all(a.start <= b.start for a, b in zip(events, events[1:]))

    def test_duplicate_uids_are_dropped(self, normalizer, now):
        first = ics(single("dup", "20260602T090000", "20260602T100000", "First"))
        second = ics(single("dup", "20260603T090000", "20260603T100000", "Second"))

        events = normalizer.normalize([first, second], now)

        assert len(events) == 1
        assert events[0].summary == "First"

    def test_recurring_occurrences_get_instant_suffixed_uids(self, normalizer, tz, now):
        events = normalizer.normalize([ics(standup())], now)

        assert len(events) == 21
        assert events[0].uid == "E12026-06-01T09:00:00.000Z"
        assert len({e.uid for e in events}) == len(events)
        for event in events:
            assert event.end - event.start == timedelta(minutes=30)
            assert event.summary == "Standup"
            assert event.description == "Daily sync"

    def test_occurrences_before_now_are_not_expanded(self, normalizer, tz):
        later = tz.localize(datetime(2026, 6, 1, 12, 0))

        events = normalizer.normalize([ics(standup())], later)

        assert events[0].start == tz.localize(datetime(2026, 6, 2, 11, 0))

    def test_window_end_is_inclusive(self, tz):
        normalizer = EventNormalizer(tz=tz, lookahead=timedelta(days=2))
        exact = tz.localize(datetime(2026, 6, 1, 11, 0))

        events = normalizer.normalize([ics(standup())], exact)

        assert [e.start.day for e in events] == [1, 2, 3]

    def test_until_in_utc_limits_occurrences(self, normalizer, now):
        text = ics([
            "BEGIN:VEVENT",
            "UID:U2",
            "DTSTART:20260601T110000",
            "DTEND:20260601T120000",
            "RRULE:FREQ=DAILY;UNTIL=20260603T235959Z",
            "END:VEVENT",
        ])

        events = normalizer.normalize([text], now)

        assert [e.start.day for e in events] == [1, 2, 3]

    def test_exception_dates_remove_exactly_the_matching_occurrences(self, tz):
        normalizer = EventNormalizer(tz=tz, lookahead=timedelta(days=2))
        start = tz.localize(datetime(2026, 6, 1, 11, 0))

        events = normalizer.normalize([ics(standup("EXDATE:20260602T110000"))], start)

        assert [e.start.day for e in events] == [1, 3]

    def test_exceptions_from_another_file_apply(self, tz):
        normalizer = EventNormalizer(tz=tz, lookahead=timedelta(days=2))
        start = tz.localize(datetime(2026, 6, 1, 11, 0))
        exceptions = ics(standup("EXDATE:20260603T110000"))

        events = normalizer.normalize({"a.ics": ics(standup()), "b.ics": exceptions}, start)

        # Same UIDs from the second file are dropped, its exception still counts
        assert [e.start.day for e in events] == [1, 2]

    def test_override_replaces_only_its_occurrence(self, normalizer, tz, now):
        override = [
            "BEGIN:VEVENT",
            "UID:E1",
            "RECURRENCE-ID:20260605T110000",
            "SUMMARY:Moved",
            "DESCRIPTION:Different room",
            "DTSTART:20260605T110000",
            "DTEND:20260605T130000",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "TRIGGER:-PT10M",
            "END:VALARM",
            "END:VEVENT",
        ]

        events = normalizer.normalize([ics(standup(), override)], now)
        by_day = {e.start.day: e for e in events}

        moved = by_day[5]
        assert moved.summary == "Moved"
        assert moved.description == "Different room"
        assert moved.end == tz.localize(datetime(2026, 6, 5, 13, 0))
        assert moved.alarms[0].trigger == RelativeBeforeStart(timedelta(minutes=10))
        for day in (4, 6):
            assert by_day[day].summary == "Standup"
            assert by_day[day].description == "Daily sync"
            assert by_day[day].alarms == ()

    def test_override_end_before_occurrence_is_clamped(self, normalizer, tz, now):
        override = [
            "BEGIN:VEVENT",
            "UID:E1",
            "RECURRENCE-ID:20260605T110000",
            "SUMMARY:Earlier",
            "DTSTART:20260605T080000",
            "DTEND:20260605T090000",
            "END:VEVENT",
        ]

        events = normalizer.normalize([ics(standup(), override)], now)
        moved = next(e for e in events if e.summary == "Earlier")

        assert moved.end == moved.start

    def test_daily_event_with_exception_and_override_end_to_end(self, normalizer, tz, now):
        override = [
            "BEGIN:VEVENT",
            "UID:E1",
            "RECURRENCE-ID:20260605T110000",
            "SUMMARY:Moved",
            "DTSTART:20260605T110000",
            "DTEND:20260605T113000",
            "END:VEVENT",
        ]
        text = ics(standup("EXDATE:20260603T110000"), override)

        events = normalizer.normalize([text], now)

        assert len(events) == 21 - 1
        assert all(e.uid.startswith("E1") for e in events)
        assert 3 not in {e.start.day for e in events}
        day5 = next(e for e in events if e.start.day == 5)
        assert day5.summary == "Moved"
        assert day5.uid == "E12026-06-05T09:00:00.000Z"

    def test_same_input_and_now_is_deterministic(self, normalizer, now):
        text = ics(standup("EXDATE:20260603T110000"), single("S1", "20260602T180000", "20260602T200000"))

        assert normalizer.normalize([text], now) == normalizer.normalize([text], now)

    def test_alarm_trigger_variants(self, normalizer, tz, now):
        text = ics(single(
            "A1", "20260602T180000", "20260602T200000", "Alarmed",
            "BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER:-PT15M", "END:VALARM",
            "BEGIN:VALARM", "ACTION:AUDIO", "TRIGGER:PT5M", "END:VALARM",
            "BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER;RELATED=END:-PT30M", "END:VALARM",
            "BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER;VALUE=DATE-TIME:20260602T120000Z", "END:VALARM",
        ))

        (event,) = normalizer.normalize([text], now)
        triggers = [alarm.trigger for alarm in event.alarms]

        assert triggers[0] == RelativeBeforeStart(timedelta(minutes=15))
        assert triggers[1] == RelativeAfterStart(timedelta(minutes=5))
        assert event.alarms[1].action == "AUDIO"
        # 30 minutes before a 2 hour event's end is 90 minutes after its start
        assert triggers[2] == RelativeAfterStart(timedelta(minutes=90))
        assert isinstance(triggers[3], Absolute)
        assert triggers[3].instant == tz.localize(datetime(2026, 6, 2, 14, 0))

    def test_malformed_file_aborts_the_pass(self, normalizer, now):
        good = ics(single("S1", "20260602T180000", "20260602T200000"))
        bad = ics(["BEGIN:VEVENT", "UID:broken", "END:VEVENT"])

        with pytest.raises(CalendarParseError):
            normalizer.normalize({"good.ics": good, "bad.ics": bad}, now)

    def test_malformed_file_can_be_skipped(self, tz, now):
        normalizer = EventNormalizer(tz=tz, skip_malformed=True)
        good = ics(single("S1", "20260602T180000", "20260602T200000"))
        bad = ics(["BEGIN:VEVENT", "UID:broken", "END:VEVENT"])

        events = normalizer.normalize({"good.ics": good, "bad.ics": bad}, now)

        assert [e.uid for e in events] == ["S1"]

    def test_utc_series_keeps_its_utc_hour_across_dst_change(self, normalizer, tz):
        override = [
            "BEGIN:VEVENT",
            "UID:W1",
            "RECURRENCE-ID:20261029T090000Z",
            "SUMMARY:Moved",
            "DTSTART:20261029T090000Z",
            "DTEND:20261029T100000Z",
            "END:VEVENT",
        ]
        series = [
            "BEGIN:VEVENT",
            "UID:W1",
            "SUMMARY:Weekly sync",
            "DTSTART:20261020T090000Z",
            "DTEND:20261020T093000Z",
            "RRULE:FREQ=DAILY;COUNT=10",
            "EXDATE:20261027T090000Z",
            "END:VEVENT",
        ]

        events = normalizer.normalize([ics(series, override)], tz.localize(datetime(2026, 10, 20, 8, 0)))

        assert len(events) == 9
        assert all(e.uid.endswith("T09:00:00.000Z") for e in events)
        assert "W12026-10-27T09:00:00.000Z" not in {e.uid for e in events}
        # Local wall clock moves when Warsaw leaves summer time on October 25
        assert events[0].start.hour == 11
        assert events[-1].start.hour == 10
        assert next(e for e in events if e.summary == "Moved").uid == "W12026-10-29T09:00:00.000Z"

    def test_floating_series_keeps_its_local_hour_across_dst_change(self, normalizer, tz):
        text = ics([
            "BEGIN:VEVENT",
            "UID:F1",
            "DTSTART:20261020T110000",
            "DTEND:20261020T113000",
            "RRULE:FREQ=DAILY;COUNT=10",
            "END:VEVENT",
        ])

        events = normalizer.normalize([text], tz.localize(datetime(2026, 10, 20, 8, 0)))

        assert len(events) == 10
        assert {e.start.hour for e in events} == {11}

    def test_absolute_alarm_of_a_series_goes_to_one_occurrence(self, normalizer, tz, now):
        text = ics(standup(
            "BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER;VALUE=DATE-TIME:20260603T083000Z", "END:VALARM",
            "BEGIN:VALARM", "ACTION:DISPLAY", "TRIGGER:-PT5M", "END:VALARM",
        ))

        events = normalizer.normalize([text], now)
        with_absolute = [
            e for e in events
            if any(isinstance(alarm.trigger, Absolute) for alarm in e.alarms)
        ]

        assert [e.start.day for e in with_absolute] == [3]
        assert with_absolute[0].alarms[0].trigger.instant == tz.localize(datetime(2026, 6, 3, 10, 30))
        assert all(len(e.alarms) >= 1 for e in events)
