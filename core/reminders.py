# core/reminders.py
"""
Reminder scheduling.

Two reminder classes read the event store:

* fixed-clock reminders at 08:00 ("today") and 20:00 ("tomorrow") local time,
  matched by calendar date only;
* alarm reminders derived from each event's VALARM triggers, scheduled as
  one-shot tasks once they fall less than an hour ahead. A process-wide set
  of ``uid|trigger`` keys guarantees each one is scheduled at most once.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import List, Optional, Sequence, Set, Tuple

from core.event_store import EventStore
from core.events import Alarm, NormalizedEvent
from core.formatting import format_alarm_reminder, format_day_reminder, format_new_event
from core.notify import NotificationSink

log = logging.getLogger("calbot.reminders")

MORNING_REMINDER = time(8, 0)
EVENING_REMINDER = time(20, 0)
ALARM_WINDOW = timedelta(hours=1)
DAILY_REMINDER_GRACE = timedelta(minutes=30)


@dataclass(frozen=True)
class PendingReminder:
    key: str
    event: NormalizedEvent
    alarm: Alarm
    fire_at: datetime
    delay: timedelta


def reminder_key(event: NormalizedEvent, alarm: Alarm) -> str:
    return f"{event.uid}|{alarm.trigger.descriptor}"


def daily_slot(now: datetime) -> Optional[datetime]:
    """The 08:00 or 20:00 reminder time a daily loop run belongs to.

    The loop may wake early or late (after a reconnect, for example); any run
    within ``DAILY_REMINDER_GRACE`` of a reminder time is snapped onto it.
    """
    for reminder in (MORNING_REMINDER, EVENING_REMINDER):
        slot = now.replace(hour=reminder.hour, minute=reminder.minute, second=0, microsecond=0)
        if abs(now - slot) <= DAILY_REMINDER_GRACE:
            return slot
    return None


class ReminderScheduler:
    def __init__(self, store: EventStore, sink: NotificationSink,
                 mention: str = "@everyone", date_format: Optional[str] = None):
        self.store = store
        self.sink = sink
        self.mention = mention
        self.date_format = date_format
        # Never pruned; a key stays recorded for the life of the process
        self._scheduled: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def scheduled_keys(self) -> frozenset:
        return frozenset(self._scheduled)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    # ─── Fixed-clock reminders ──────────────────────────────────────────────
    def collect_daily(self, now: datetime) -> Tuple[Optional[str], List[NormalizedEvent]]:
        """Return the reminder kind and matching events for this exact minute"""
        now = now.replace(second=0, microsecond=0)
        clock = now.time()

        if clock == EVENING_REMINDER:
            kind, target = "tomorrow", now.date() + timedelta(days=1)
        elif clock == MORNING_REMINDER:
            kind, target = "today", now.date()
        else:
            return None, []

        events = [
            event for event in self.store.events
            if event.start.astimezone(now.tzinfo).date() == target
        ]
        return kind, events

    async def send_daily(self, now: datetime) -> int:
        kind, events = self.collect_daily(now)
        if kind is None:
            return 0

        sent = 0
        for event in events:
            if await self.sink.send(format_day_reminder(event, kind, self.date_format)):
                sent += 1
            else:
                log.error(f"Failed to deliver {kind} reminder for {event.uid}")

        if events:
            log.info(f"📅 Sent {sent}/{len(events)} '{kind}' reminders")
        return sent

    # ─── Alarm reminders ────────────────────────────────────────────────────
    def collect_due_alarms(self, now: datetime) -> List[PendingReminder]:
        """Record and return alarms firing within the next hour that were not seen before"""
        due = []
        for event in self.store.events:
            for alarm in event.alarms:
                fire_at = alarm.trigger.fire_time(event.start)
                delay = fire_at - now
                if not timedelta(0) < delay < ALARM_WINDOW:
                    continue

                key = reminder_key(event, alarm)
                if key in self._scheduled:
                    continue

                self._scheduled.add(key)
                due.append(PendingReminder(key=key, event=event, alarm=alarm, fire_at=fire_at, delay=delay))
        return due

    def scan_alarms(self, now: datetime) -> List[PendingReminder]:
        """Schedule a one-shot delivery for every newly due alarm"""
        due = self.collect_due_alarms(now)
        for reminder in due:
            task = asyncio.create_task(self._deliver_later(reminder))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            log.info(
                f"Scheduled alarm for {reminder.event.summary} "
                f"in {round(reminder.delay.total_seconds())} seconds"
            )
        return due

    async def _deliver_later(self, reminder: PendingReminder):
        await asyncio.sleep(reminder.delay.total_seconds())
        try:
            delivered = await self.sink.send(format_alarm_reminder(reminder.event, self.mention))
        except Exception as e:
            log.error(f"Error delivering alarm {reminder.key}: {e}", exc_info=True)
            return

        if delivered:
            log.info(f"⏰ Delivered alarm for {reminder.event.summary}")
        else:
            # The key stays recorded, so this alarm is not attempted again
            log.error(f"Failed to deliver alarm {reminder.key}")

    # ─── New events ─────────────────────────────────────────────────────────
    async def announce_added(self, events: Sequence[NormalizedEvent]) -> int:
        sent = 0
        for event in events:
            if await self.sink.send(format_new_event(event, self.date_format)):
                sent += 1
            else:
                log.error(f"Failed to announce new event {event.uid}")
        return sent
