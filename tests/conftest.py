"""Shared fixtures for the calendar bot tests."""
from datetime import datetime, timedelta
from typing import List

import pytest
import pytz

from core.event_store import EventStore
from core.events import Alarm, NormalizedEvent, RelativeBeforeStart

WARSAW = pytz.timezone("Europe/Warsaw")


def ics(*vevents: List[str]) -> str:
    """Wrap VEVENT line lists into one VCALENDAR document"""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//calbot tests//EN"]
    for vevent in vevents:
        lines.extend(vevent)
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def make_event(uid: str, start: datetime, minutes: int = 60, summary: str = None,
               alarms=()) -> NormalizedEvent:
    return NormalizedEvent(
        uid=uid,
        summary=summary or f"Event {uid}",
        start=start,
        end=start + timedelta(minutes=minutes),
        alarms=tuple(alarms),
    )


def alarm_before(minutes: int) -> Alarm:
    return Alarm(RelativeBeforeStart(timedelta(minutes=minutes)), "DISPLAY")


class FakeSink:
    """Notification sink that records messages instead of sending them"""

    def __init__(self, result: bool = True, error: Exception = None):
        self.result = result
        self.error = error
        self.messages: List[str] = []

    async def send(self, text: str) -> bool:
        if self.error is not None:
            raise self.error
        self.messages.append(text)
        return self.result


@pytest.fixture
def tz():
    return WARSAW


@pytest.fixture
def now(tz):
    return tz.localize(datetime(2026, 6, 1, 10, 0))


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def sink():
    return FakeSink()
