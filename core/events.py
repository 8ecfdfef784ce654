# core/events.py
"""Event and alarm types shared by the normalizer, the store and the scheduler."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple, Union

from icalendar import Alarm as VAlarm
from icalendar import vDuration, vRecur

from core.timezone_util import iso_instant


@dataclass(frozen=True)
class RelativeBeforeStart:
    duration: timedelta

    def fire_time(self, start: datetime) -> datetime:
        return start - self.duration

    @property
    def descriptor(self) -> str:
        return vDuration(-self.duration).to_ical().decode()


@dataclass(frozen=True)
class RelativeAfterStart:
    duration: timedelta

    def fire_time(self, start: datetime) -> datetime:
        return start + self.duration

    @property
    def descriptor(self) -> str:
        return vDuration(self.duration).to_ical().decode()


@dataclass(frozen=True)
class Absolute:
    instant: datetime

    def fire_time(self, start: datetime) -> datetime:
        return self.instant

    @property
    def descriptor(self) -> str:
        return iso_instant(self.instant)


AlarmTrigger = Union[RelativeBeforeStart, RelativeAfterStart, Absolute]


def relative_trigger(offset: timedelta) -> AlarmTrigger:
    """Build the start-relative trigger for a signed offset"""
    if offset < timedelta(0):
        return RelativeBeforeStart(-offset)
    return RelativeAfterStart(offset)


@dataclass(frozen=True)
class Alarm:
    trigger: AlarmTrigger
    action: str = "DISPLAY"


@dataclass(frozen=True)
class NormalizedEvent:
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    alarms: Tuple[Alarm, ...] = ()

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Event {self.uid} ends before it starts")


class ComponentKind(Enum):
    EVENT = "event"
    OVERRIDE = "override"
    EXCEPTIONS = "exceptions"


@dataclass
class RawCalendarComponent:
    """One parsed VEVENT role, consumed during normalization only.

    ``EVENT`` carries the base fields (and ``rrule`` for recurring events),
    ``OVERRIDE`` carries the replacement fields for ``recurrence_id``, and
    ``EXCEPTIONS`` carries the excluded occurrence instants.
    """
    kind: ComponentKind
    uid: str
    source: str
    summary: str = "No Title"
    description: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    rrule: Optional[Union[vRecur, List[vRecur]]] = None
    # DTSTART as written in the file; recurrences expand in its zone
    rule_start: Optional[Union[datetime, date]] = None
    recurrence_id: Optional[str] = None
    excluded: FrozenSet[str] = frozenset()
    # Raw VALARM subcomponents; triggers are resolved per occurrence
    alarms: Tuple[VAlarm, ...] = ()
