# core/normalizer.py
"""
Turns raw ``.ics`` file contents into the canonical event list.

Every pass parses all files, splits the VEVENTs into base events, recurrence
overrides and exception-date sets, expands recurring events inside a forward
window and returns a deduplicated list sorted by start time.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import pytz
from dateutil.rrule import rrulestr
from icalendar import Calendar, vRecur

from core.errors import CalendarParseError
from core.events import (
    Absolute,
    Alarm,
    ComponentKind,
    NormalizedEvent,
    RawCalendarComponent,
    relative_trigger,
)
from core.timezone_util import get_current_time, get_timezone, iso_instant, localize, to_local

log = logging.getLogger("calbot.normalizer")

DEFAULT_LOOKAHEAD = timedelta(days=21)

# Properties whose parse errors make a VEVENT unusable
_CRITICAL_PROPERTIES = {"DTSTART", "DTEND", "DURATION", "RRULE", "EXDATE", "RECURRENCE-ID"}

CalendarSources = Union[Mapping[str, str], Iterable[str]]


def parse_calendar(text: str, source: str = "<calendar>",
                   tz: Optional[pytz.BaseTzInfo] = None) -> List[RawCalendarComponent]:
    """Parse one calendar file into tagged raw components"""
    tz = tz or get_timezone()
    try:
        calendars = Calendar.from_ical(text, multiple=True)
    except (ValueError, IndexError, KeyError) as e:
        raise CalendarParseError(f"invalid iCalendar data: {e}", source) from e

    if not calendars:
        raise CalendarParseError("no VCALENDAR block found", source)

    components: List[RawCalendarComponent] = []
    for calendar in calendars:
        for vevent in calendar.walk("VEVENT"):
            components.extend(_split_vevent(vevent, source, tz))
    return components


def _split_vevent(vevent, source: str, tz: pytz.BaseTzInfo) -> List[RawCalendarComponent]:
    broken = [name for name, _ in getattr(vevent, "errors", []) if name in _CRITICAL_PROPERTIES]
    if broken:
        raise CalendarParseError(f"malformed {', '.join(sorted(set(broken)))} in VEVENT", source)

    uid = vevent.get("UID")
    if not uid:
        raise CalendarParseError("VEVENT without UID", source)
    uid = str(uid)

    dtstart = vevent.get("DTSTART")
    if dtstart is None:
        raise CalendarParseError(f"VEVENT {uid} without DTSTART", source)

    start = to_local(dtstart.dt, tz)
    fields = dict(
        uid=uid,
        source=source,
        summary=str(vevent.get("SUMMARY", "No Title")),
        description=str(vevent.get("DESCRIPTION", "")),
        start=start,
        end=_resolve_end(vevent, dtstart.dt, start, tz),
        alarms=tuple(vevent.walk("VALARM")),
    )

    recurrence_id = vevent.get("RECURRENCE-ID")
    if recurrence_id is not None:
        return [RawCalendarComponent(
            kind=ComponentKind.OVERRIDE,
            recurrence_id=iso_instant(to_local(recurrence_id.dt, tz)),
            **fields,
        )]

    components = [RawCalendarComponent(
        kind=ComponentKind.EVENT,
        rrule=vevent.get("RRULE"),
        rule_start=dtstart.dt,
        **fields,
    )]
    excluded = _collect_exdates(vevent, tz)
    if excluded:
        components.append(RawCalendarComponent(
            kind=ComponentKind.EXCEPTIONS,
            uid=uid,
            source=source,
            excluded=frozenset(excluded),
        ))
    return components


def _resolve_end(vevent, raw_start, start: datetime, tz: pytz.BaseTzInfo) -> datetime:
    dtend = vevent.get("DTEND")
    duration = vevent.get("DURATION")
    if dtend is not None:
        end = to_local(dtend.dt, tz)
    elif duration is not None:
        end = localize(start + duration.dt, tz)
    elif not isinstance(raw_start, datetime):
        # All-day event without an end lasts the whole day
        end = localize(start + timedelta(days=1), tz)
    else:
        end = start
    return max(end, start)


def _collect_exdates(vevent, tz: pytz.BaseTzInfo) -> Set[str]:
    exdates = vevent.get("EXDATE")
    if exdates is None:
        return set()
    if not isinstance(exdates, list):
        exdates = [exdates]
    return {iso_instant(to_local(item.dt, tz)) for group in exdates for item in group.dts}


def _expansion_zone(rule_start, tz: pytz.BaseTzInfo) -> tzinfo:
    """Zone whose wall clock a recurrence follows: DTSTART's own, else the local one"""
    if not isinstance(rule_start, datetime) or rule_start.tzinfo is None:
        return tz
    zone = rule_start.tzinfo
    # A pytz zone taken from a datetime is pinned to one offset
    name = getattr(zone, "zone", None)
    if name and hasattr(zone, "localize"):
        return pytz.timezone(name)
    return zone


def _attach_zone(naive: datetime, zone: tzinfo) -> datetime:
    if hasattr(zone, "localize"):
        return zone.localize(naive)
    return naive.replace(tzinfo=zone)


def _naive_until(value, zone: tzinfo) -> datetime:
    # dateutil refuses an aware UNTIL with a naive DTSTART, so both use the zone's wall clock
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        return value.astimezone(zone).replace(tzinfo=None)
    return datetime.combine(value, time(23, 59, 59))


def _rrule_text(rrule, zone: tzinfo) -> str:
    rules = rrule if isinstance(rrule, list) else [rrule]
    lines = []
    for rule in rules:
        recur = vRecur(rule)
        if "UNTIL" in recur:
            recur["UNTIL"] = [_naive_until(value, zone) for value in recur["UNTIL"]]
        lines.append("RRULE:" + recur.to_ical().decode())
    return "\n".join(lines)


def resolve_alarms(valarms, start: datetime, end: datetime,
                   tz: Optional[pytz.BaseTzInfo] = None) -> Tuple[Alarm, ...]:
    """Resolve VALARM triggers into start-relative or absolute triggers"""
    tz = tz or get_timezone()
    alarms = []
    for valarm in valarms:
        trigger = valarm.get("TRIGGER")
        if trigger is None:
            log.debug("Ignoring VALARM without TRIGGER")
            continue

        action = str(valarm.get("ACTION", "DISPLAY"))
        value = trigger.dt
        if isinstance(value, timedelta):
            if str(trigger.params.get("RELATED", "START")).upper() == "END":
                value = value + (end - start)
            alarms.append(Alarm(relative_trigger(value), action))
        elif isinstance(value, (datetime, date)):
            alarms.append(Alarm(Absolute(to_local(value, tz)), action))
    return tuple(alarms)


class EventNormalizer:
    """Builds the canonical event list from a full set of calendar files"""

    def __init__(self, tz: Optional[pytz.BaseTzInfo] = None,
                 lookahead: timedelta = DEFAULT_LOOKAHEAD,
                 skip_malformed: bool = False):
        self.tz = tz or get_timezone()
        self.lookahead = lookahead
        self.skip_malformed = skip_malformed

    def parse_all(self, calendars: CalendarSources) -> List[RawCalendarComponent]:
        if isinstance(calendars, Mapping):
            items = list(calendars.items())
        else:
            items = [(f"calendar[{i}]", text) for i, text in enumerate(calendars)]

        components: List[RawCalendarComponent] = []
        for source, text in items:
            try:
                components.extend(parse_calendar(text, source, self.tz))
            except CalendarParseError as e:
                if not self.skip_malformed:
                    raise
                log.warning(f"Skipping malformed calendar {source}: {e}")
        return components

    def normalize(self, calendars: CalendarSources, now: Optional[datetime] = None) -> List[NormalizedEvent]:
        """Parse, expand and sort all events.

        Raises CalendarParseError if any file is malformed (unless malformed
        files are skipped), in which case nothing is returned.
        """
        now = localize(now, self.tz) if now is not None else get_current_time(self.tz)
        window_end = now + self.lookahead

        bases: List[RawCalendarComponent] = []
        overrides: Dict[Tuple[str, str], RawCalendarComponent] = {}
        exceptions: Dict[str, Set[str]] = defaultdict(set)
        for component in self.parse_all(calendars):
            if component.kind is ComponentKind.EVENT:
                bases.append(component)
            elif component.kind is ComponentKind.OVERRIDE:
                overrides[(component.uid, component.recurrence_id)] = component
            else:
                exceptions[component.uid].update(component.excluded)

        events: List[NormalizedEvent] = []
        seen: Set[str] = set()
        for base in bases:
            if base.rrule is None:
                produced = [self._single(base)]
            else:
                produced = self._expand(base, overrides, exceptions.get(base.uid, set()), now, window_end)

            for event in produced:
                if event.uid in seen:
                    log.warning(f"Dropping duplicate event {event.uid} from {base.source}")
                    continue
                seen.add(event.uid)
                events.append(event)

        events.sort(key=lambda e: e.start)
        log.debug(f"Normalized {len(events)} events from {len(bases)} base events")
        return events

    def _single(self, base: RawCalendarComponent) -> NormalizedEvent:
        return NormalizedEvent(
            uid=base.uid,
            summary=base.summary,
            description=base.description,
            start=base.start,
            end=base.end,
            alarms=resolve_alarms(base.alarms, base.start, base.end, self.tz),
        )

    def _occurrences(self, base: RawCalendarComponent, window_start: datetime,
                     window_end: datetime) -> List[datetime]:
        # Occurrences keep DTSTART's wall-clock hour in DTSTART's zone across DST;
        # floating and all-day events follow the local zone
        zone = _expansion_zone(base.rule_start, self.tz)
        if zone is self.tz:
            dtstart = base.start.replace(tzinfo=None)
        else:
            dtstart = base.rule_start.astimezone(zone).replace(tzinfo=None)

        try:
            rule = rrulestr(_rrule_text(base.rrule, zone), dtstart=dtstart, forceset=True)
        except (ValueError, TypeError) as e:
            raise CalendarParseError(f"invalid RRULE for {base.uid}: {e}", base.source) from e

        lower = window_start.astimezone(zone).replace(tzinfo=None)
        upper = window_end.astimezone(zone).replace(tzinfo=None)
        return [
            localize(_attach_zone(dt, zone), self.tz)
            for dt in rule.between(lower, upper, inc=True)
        ]

    def _expand(self, base: RawCalendarComponent,
                overrides: Dict[Tuple[str, str], RawCalendarComponent],
                excluded: Set[str], window_start: datetime,
                window_end: datetime) -> List[NormalizedEvent]:
        duration = base.end - base.start
        # An absolute trigger of the series fires once, on the first occurrence starting at or after it
        claimed: Set[Absolute] = set()
        events = []
        for occurrence in self._occurrences(base, window_start, window_end):
            key = iso_instant(occurrence)
            if key in excluded:
                continue

            override = overrides.get((base.uid, key))
            if override is not None:
                end = max(override.end, occurrence)
                template = override
                alarms = resolve_alarms(override.alarms, occurrence, end, self.tz)
            else:
                end = localize(occurrence + duration, self.tz)
                template = base
                alarms = self._series_alarms(base, occurrence, end, claimed)

            events.append(NormalizedEvent(
                uid=base.uid + key,
                summary=template.summary,
                description=template.description,
                start=occurrence,
                end=end,
                alarms=alarms,
            ))
        return events

    def _series_alarms(self, base: RawCalendarComponent, occurrence: datetime,
                       end: datetime, claimed: Set[Absolute]) -> Tuple[Alarm, ...]:
        alarms = []
        for alarm in resolve_alarms(base.alarms, occurrence, end, self.tz):
            trigger = alarm.trigger
            if isinstance(trigger, Absolute):
                if trigger in claimed or occurrence < trigger.instant:
                    continue
                claimed.add(trigger)
            alarms.append(alarm)
        return tuple(alarms)
